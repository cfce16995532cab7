from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import allure
import pytest
from conftest import make_template

from taskpilot.config import RepairSettings
from taskpilot.repair import (
    AutoRepairGate,
    ErrorInfo,
    RepairOutcome,
    RepairTracker,
    should_repair,
)
from taskpilot.templates.models import TaskTemplate

pytestmark = [
    allure.epic("Auto-Repair"),
    allure.feature("Budget Gate and Circuit Breaker"),
]


class _Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class _RecordingRepairer:
    def __init__(self, outcome: RepairOutcome) -> None:
        self.outcome = outcome
        self.calls: list[tuple[str, ErrorInfo]] = []

    def repair_template(self, template: TaskTemplate, error: ErrorInfo) -> RepairOutcome:
        self.calls.append((template.template_id, error))
        return self.outcome


class _BrokenRepairer:
    def repair_template(self, template: TaskTemplate, error: ErrorInfo) -> RepairOutcome:  # noqa: ARG002
        raise TypeError("repair prompt could not be rendered")


def test_tracker_limits_repairs_per_task() -> None:
    clock = _Clock()
    tracker = RepairTracker(max_repairs_per_task=2, cooldown_seconds=0, clock=clock)

    tracker.record_repair("task-1", "tpl", 10)
    tracker.record_repair("task-1", "tpl", 10)

    blocked = tracker.can_repair("task-1", "tpl")
    assert blocked.allowed is False
    assert "Maximum 2 repair attempts" in (blocked.reason or "")
    assert tracker.can_repair("task-2", "tpl").allowed is True


def test_tracker_enforces_cooldown_with_injected_clock() -> None:
    clock = _Clock()
    tracker = RepairTracker(cooldown_seconds=360, clock=clock)
    tracker.record_repair("task-1", "tpl", 10)

    clock.now += 100
    blocked = tracker.can_repair("task-1", "tpl")
    assert blocked.allowed is False
    assert "260s remaining" in (blocked.reason or "")

    clock.now += 261
    assert tracker.can_repair("task-1", "tpl").allowed is True


def test_tracker_caps_token_spend_per_template() -> None:
    tracker = RepairTracker(max_tokens_per_template=1_000, cooldown_seconds=0, clock=_Clock())
    tracker.record_repair("task-1", "tpl", 1_000)

    blocked = tracker.can_repair("task-2", "tpl")
    assert blocked.allowed is False
    assert blocked.reason == "Template repair token budget exceeded."
    assert tracker.stats("tpl") == {"total_tokens": 1_000, "repair_count": 1}
    assert tracker.stats() == {"total_templates": 1, "total_repairs": 1, "total_tokens": 1_000}

    tracker.reset()
    assert tracker.can_repair("task-2", "tpl").allowed is True


def test_tracker_acquire_claims_slot_until_released() -> None:
    tracker = RepairTracker(max_repairs_per_task=1, cooldown_seconds=0, clock=_Clock())

    first = tracker.try_acquire("task-1", "tpl")
    second = tracker.try_acquire("task-1", "tpl")
    tracker.release("task-1", "tpl")
    third = tracker.try_acquire("task-1", "tpl")
    tracker.record_repair("task-1", "tpl", 40)

    assert first.allowed is True
    assert second.allowed is False
    assert third.allowed is True
    assert tracker.stats("tpl") == {"total_tokens": 40, "repair_count": 1}
    assert tracker.can_repair("task-1", "tpl").allowed is False


def test_reservation_increments_until_cap(repository) -> None:
    repository.add_template(make_template("tpl", "Customer report"))

    assert repository.reserve_repair_attempt("tpl", max_attempts=2) == 1
    assert repository.reserve_repair_attempt("tpl", max_attempts=2) == 2
    assert repository.reserve_repair_attempt("tpl", max_attempts=2) is None
    assert repository.reserve_repair_attempt("missing", max_attempts=2) is None
    assert repository.get_template("tpl").repair_attempts == 2


def test_concurrent_reservations_never_exceed_cap(repository) -> None:
    repository.add_template(make_template("tpl", "Customer report"))

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(
            pool.map(
                lambda _: repository.reserve_repair_attempt("tpl", max_attempts=10),
                range(30),
            ),
        )

    granted = [value for value in results if value is not None]
    assert sorted(granted) == list(range(1, 11))
    assert repository.get_template("tpl").repair_attempts == 10


class _BlockingRepairer:
    def __init__(self) -> None:
        self.entered = threading.Event()
        self.proceed = threading.Event()
        self.calls = 0

    def repair_template(self, template: TaskTemplate, error: ErrorInfo) -> RepairOutcome:  # noqa: ARG002
        self.calls += 1
        self.entered.set()
        assert self.proceed.wait(timeout=10)
        return RepairOutcome(repaired=True, token_cost=10)


def test_concurrent_repairs_for_one_task_respect_the_per_task_limit(repository) -> None:
    repository.add_template(make_template("tpl", "Customer report"))
    tracker = RepairTracker(max_repairs_per_task=1, cooldown_seconds=0, clock=_Clock())
    gate = AutoRepairGate(store=repository, tracker=tracker)
    repairer = _BlockingRepairer()
    error = ErrorInfo(name="TypeError", message="x is not a function")

    with ThreadPoolExecutor(max_workers=1) as pool:
        running = pool.submit(
            gate.run_template_repair,
            error,
            template_id="tpl",
            task_id="task-1",
            repairer=repairer,
        )
        assert repairer.entered.wait(timeout=10)
        concurrent = gate.run_template_repair(
            error,
            template_id="tpl",
            task_id="task-1",
            repairer=repairer,
        )
        repairer.proceed.set()
        finished = running.result(timeout=10)

    assert finished.outcome == RepairOutcome(repaired=True, token_cost=10)
    assert concurrent.outcome is None
    assert concurrent.decision.matched_rule == "circuit_breaker"
    assert repairer.calls == 1
    assert repository.get_template("tpl").repair_attempts == 1
    assert tracker.stats("tpl") == {"total_tokens": 10, "repair_count": 1}


class _RaceLostStore:
    """Reports a fresh counter but loses every reservation, as after a concurrent winner."""

    def __init__(self, template: TaskTemplate) -> None:
        self.template = template

    def get_template(self, template_id: str) -> TaskTemplate | None:
        return self.template if template_id == self.template.template_id else None

    def reserve_repair_attempt(self, template_id: str, *, max_attempts: int) -> int | None:  # noqa: ARG002
        return None


def test_lost_reservation_gives_the_tracker_slot_back() -> None:
    tracker = RepairTracker(max_repairs_per_task=1, cooldown_seconds=0, clock=_Clock())
    gate = AutoRepairGate(
        store=_RaceLostStore(make_template("tpl", "Customer report")),
        tracker=tracker,
    )

    decision = gate.evaluate(ErrorInfo(name="TypeError"), template_id="tpl", task_id="task-1")

    assert decision.should_repair is False
    assert decision.matched_rule == "budget"
    assert tracker.can_repair("task-1", "tpl").allowed is True


def test_gate_reserves_attempts_and_reports_budget_exhaustion(repository) -> None:
    repository.add_template(make_template("tpl", "Customer report"))
    gate = AutoRepairGate(
        store=repository,
        settings=RepairSettings(max_repair_attempts=2),
        tracker=RepairTracker(clock=_Clock()),
    )
    error = ErrorInfo(name="TypeError", message="x is not a function")

    first = gate.evaluate(error, template_id="tpl", task_id="task-1")
    second = gate.evaluate(error, template_id="tpl", task_id="task-2")
    third = gate.evaluate(error, template_id="tpl", task_id="task-3")

    assert first.should_repair is True
    assert "Attempt 1/2" in first.reason
    assert second.should_repair is True
    assert third.should_repair is False
    assert third.matched_rule == "budget"
    assert repository.get_template("tpl").repair_attempts == 2


def test_gate_does_not_spend_budget_on_transient_errors(repository) -> None:
    repository.add_template(make_template("tpl", "Customer report"))
    gate = AutoRepairGate(store=repository)

    decision = gate.evaluate(
        {"name": "Error", "message": "Request TIMEOUT OF 30000MS EXCEEDED"},
        template_id="tpl",
        task_id="task-1",
    )

    assert decision.should_repair is False
    assert decision.matched_rule == "transient_message"
    assert repository.get_template("tpl").repair_attempts == 0


def test_gate_rejects_unknown_templates(repository) -> None:
    gate = AutoRepairGate(store=repository)

    decision = gate.evaluate(ErrorInfo(name="TypeError"), template_id="nope", task_id="task-1")

    assert decision.should_repair is False
    assert decision.matched_rule == "unknown_template"


def test_run_records_cost_and_opens_circuit_breaker(repository) -> None:
    repository.add_template(make_template("tpl", "Customer report"))
    tracker = RepairTracker(clock=_Clock())
    gate = AutoRepairGate(store=repository, tracker=tracker)
    repairer = _RecordingRepairer(RepairOutcome(repaired=True, token_cost=1_200))
    error = ErrorInfo(name="ReferenceError", message="total is not defined")

    run = gate.run_template_repair(error, template_id="tpl", task_id="task-1", repairer=repairer)
    again = gate.run_template_repair(error, template_id="tpl", task_id="task-1", repairer=repairer)

    assert run.decision.should_repair is True
    assert run.outcome == RepairOutcome(repaired=True, token_cost=1_200)
    assert repairer.calls == [("tpl", error)]
    assert tracker.stats("tpl")["total_tokens"] == 1_200
    assert again.outcome is None
    assert again.decision.matched_rule == "circuit_breaker"
    assert repository.get_template("tpl").repair_attempts == 1


def test_failures_raised_by_the_repairer_are_not_repaired_again(repository) -> None:
    repository.add_template(make_template("tpl", "Customer report"))
    gate = AutoRepairGate(store=repository, tracker=RepairTracker(clock=_Clock()))

    with pytest.raises(TypeError) as raised:
        gate.run_template_repair(
            ErrorInfo(name="TypeError", message="bad operand"),
            template_id="tpl",
            task_id="task-1",
            repairer=_BrokenRepairer(),
        )

    template = repository.get_template("tpl")
    decision = should_repair(raised.value, template)
    assert decision.should_repair is False
    assert decision.matched_rule == "repair_subsystem"
