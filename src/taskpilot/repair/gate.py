"""Auto-repair gate: eligibility, circuit breaker, then an atomic budget reservation."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol

from taskpilot.config import RepairSettings
from taskpilot.repair.eligibility import ErrorInfo, RepairDecision, coerce_error, should_repair
from taskpilot.repair.tracker import RepairTracker
from taskpilot.templates.models import TaskTemplate

logger = logging.getLogger(__name__)


class RepairBudgetStore(Protocol):
    """Template store operations the gate needs."""

    def get_template(self, template_id: str) -> TaskTemplate | None:
        """Return one template or ``None``."""
        raise NotImplementedError

    def reserve_repair_attempt(self, template_id: str, *, max_attempts: int) -> int | None:
        """Increment the attempt counter if still below ``max_attempts``."""
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class RepairOutcome:
    """What the external repair-and-regenerate collaborator reports back."""

    repaired: bool
    token_cost: int = 0
    detail: str = ""


class TemplateRepairer(Protocol):
    """External collaborator that rewrites a failing template."""

    def repair_template(self, template: TaskTemplate, error: ErrorInfo) -> RepairOutcome:
        """Attempt one repair of ``template`` for ``error``."""
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class RepairRun:
    decision: RepairDecision
    outcome: RepairOutcome | None = None


class AutoRepairGate:
    """Decide and, when allowed, run one bounded auto-repair attempt."""

    def __init__(
        self,
        *,
        store: RepairBudgetStore,
        tracker: RepairTracker | None = None,
        settings: RepairSettings | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or RepairSettings()
        self.tracker = tracker or RepairTracker(
            max_repairs_per_task=self.settings.max_repairs_per_task,
            max_tokens_per_template=self.settings.max_tokens_per_template,
            cooldown_seconds=self.settings.cooldown_seconds,
        )

    def evaluate(
        self,
        error: ErrorInfo | BaseException | Mapping[str, object] | None,
        *,
        template_id: str,
        task_id: str,
    ) -> RepairDecision:
        """Classify the failure and, if repairable, reserve one attempt.

        A positive decision has already consumed one unit of the template's
        repair budget and holds a tracker slot for ``task_id`` until the
        repair is recorded.
        """

        template = self.store.get_template(template_id)
        if template is None:
            return RepairDecision(
                should_repair=False,
                reason=f"Unknown template {template_id}.",
                matched_rule="unknown_template",
            )

        decision = should_repair(
            error,
            template,
            max_repair_attempts=self.settings.max_repair_attempts,
        )
        if not decision.should_repair:
            logger.info(
                "Auto-repair skipped for template %s: %s (%s)",
                template_id,
                decision.reason,
                decision.matched_rule,
            )
            return decision

        allowance = self.tracker.try_acquire(task_id, template_id)
        if not allowance.allowed:
            return RepairDecision(
                should_repair=False,
                reason=allowance.reason or "Repair circuit breaker open.",
                matched_rule="circuit_breaker",
            )

        attempts = self.store.reserve_repair_attempt(
            template_id,
            max_attempts=self.settings.max_repair_attempts,
        )
        if attempts is None:
            self.tracker.release(task_id, template_id)
            return RepairDecision(
                should_repair=False,
                reason=(
                    "Repair attempt budget exhausted "
                    f"({self.settings.max_repair_attempts}/{self.settings.max_repair_attempts})."
                ),
                matched_rule="budget",
            )
        return RepairDecision(
            should_repair=True,
            reason=f"{decision.reason} Attempt {attempts}/{self.settings.max_repair_attempts}.",
            matched_rule=decision.matched_rule,
        )

    def run_template_repair(
        self,
        error: ErrorInfo | BaseException | Mapping[str, object] | None,
        *,
        template_id: str,
        task_id: str,
        repairer: TemplateRepairer,
    ) -> RepairRun:
        """Evaluate, then hand the template to ``repairer`` if allowed.

        Exceptions raised by the repairer propagate; their tracebacks carry
        this frame, so feeding them back into the classifier is refused.
        """

        decision = self.evaluate(error, template_id=template_id, task_id=task_id)
        if not decision.should_repair:
            return RepairRun(decision=decision)

        template = self.store.get_template(template_id)
        if template is None:
            self.tracker.release(task_id, template_id)
            return RepairRun(
                decision=RepairDecision(
                    should_repair=False,
                    reason=f"Template {template_id} disappeared before repair.",
                    matched_rule="unknown_template",
                ),
            )
        token_cost = 0
        try:
            outcome = repairer.repair_template(template, coerce_error(error))
            token_cost = outcome.token_cost
        finally:
            self.tracker.record_repair(task_id, template_id, token_cost)
        logger.info(
            "Auto-repair of template %s finished: repaired=%s tokens=%d",
            template_id,
            outcome.repaired,
            outcome.token_cost,
        )
        return RepairRun(decision=decision, outcome=outcome)
