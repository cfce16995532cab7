"""In-process circuit breaker for auto-repair attempts."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RepairAllowance:
    """Whether another repair may start, with the blocking reason if not."""

    allowed: bool
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class RepairRecord:
    timestamp: float
    template_id: str
    token_cost: int
    pending: bool = False


class RepairTracker:
    """Caps repairs per task, token spend per template, and repair frequency.

    ``try_acquire`` checks the limits and claims a slot under one lock; the
    slot counts against the task until ``record_repair`` settles it or
    ``release`` gives it back.
    """

    def __init__(
        self,
        *,
        max_repairs_per_task: int = 3,
        max_tokens_per_template: int = 1_000_000,
        cooldown_seconds: float = 360.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_repairs_per_task = max_repairs_per_task
        self.max_tokens_per_template = max_tokens_per_template
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._repairs: dict[str, list[RepairRecord]] = {}
        self._costs: dict[str, int] = {}

    def can_repair(self, task_id: str, template_id: str) -> RepairAllowance:
        with self._lock:
            return self._check(task_id, template_id)

    def try_acquire(self, task_id: str, template_id: str) -> RepairAllowance:
        with self._lock:
            allowance = self._check(task_id, template_id)
            if allowance.allowed:
                self._repairs.setdefault(task_id, []).append(
                    RepairRecord(
                        timestamp=self._clock(),
                        template_id=template_id,
                        token_cost=0,
                        pending=True,
                    ),
                )
            return allowance

    def release(self, task_id: str, template_id: str) -> None:
        """Give back a slot claimed by ``try_acquire`` for a repair that never ran."""

        with self._lock:
            records = self._repairs.get(task_id, [])
            index = _pending_index(records, template_id)
            if index is not None:
                del records[index]

    def record_repair(self, task_id: str, template_id: str, token_cost: int) -> None:
        with self._lock:
            records = self._repairs.setdefault(task_id, [])
            record = RepairRecord(
                timestamp=self._clock(),
                template_id=template_id,
                token_cost=token_cost,
            )
            index = _pending_index(records, template_id)
            if index is None:
                records.append(record)
            else:
                records[index] = record
            self._costs[template_id] = self._costs.get(template_id, 0) + token_cost
            logger.info(
                "Repair recorded: task=%s template=%s tokens=%d total_tokens=%d attempts=%d",
                task_id,
                template_id,
                token_cost,
                self._costs[template_id],
                len(records),
            )

    def stats(self, template_id: str | None = None) -> dict[str, int]:
        with self._lock:
            if template_id is not None:
                return {
                    "total_tokens": self._costs.get(template_id, 0),
                    "repair_count": sum(
                        1
                        for records in self._repairs.values()
                        for record in records
                        if record.template_id == template_id
                    ),
                }
            return {
                "total_templates": len(self._costs),
                "total_repairs": sum(len(records) for records in self._repairs.values()),
                "total_tokens": sum(self._costs.values()),
            }

    def reset(self) -> None:
        """Forget all recorded repairs, for daily cleanup."""

        with self._lock:
            self._repairs.clear()
            self._costs.clear()

    def _check(self, task_id: str, template_id: str) -> RepairAllowance:
        task_repairs = self._repairs.get(task_id, [])
        if len(task_repairs) >= self.max_repairs_per_task:
            logger.warning(
                "Max repairs exceeded for task %s (%d attempts)",
                task_id,
                len(task_repairs),
            )
            return RepairAllowance(
                allowed=False,
                reason=f"Maximum {self.max_repairs_per_task} repair attempts reached for task.",
            )

        template_cost = self._costs.get(template_id, 0)
        if template_cost >= self.max_tokens_per_template:
            logger.warning(
                "Repair token budget exceeded for template %s (%d tokens)",
                template_id,
                template_cost,
            )
            return RepairAllowance(
                allowed=False,
                reason="Template repair token budget exceeded.",
            )

        if task_repairs:
            elapsed = self._clock() - task_repairs[-1].timestamp
            if elapsed < self.cooldown_seconds:
                return RepairAllowance(
                    allowed=False,
                    reason=(
                        "Repair cooldown active "
                        f"({int(self.cooldown_seconds - elapsed)}s remaining)."
                    ),
                )
        return RepairAllowance(allowed=True)


def _pending_index(records: list[RepairRecord], template_id: str) -> int | None:
    for index in range(len(records) - 1, -1, -1):
        record = records[index]
        if record.pending and record.template_id == template_id:
            return index
    return None
