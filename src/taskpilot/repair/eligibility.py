"""Deterministic auto-repair eligibility for failed template executions."""

from __future__ import annotations

import math
import re
import traceback
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol

REPAIR_ELIGIBILITY_VERSION = 1
MAX_REPAIR_ATTEMPTS = 50

# Frames that only appear when the failure came out of the repair path itself.
REPAIR_SUBSYSTEM_MARKERS: tuple[str, ...] = (
    "taskpilot/repair/gate.py",
    "run_template_repair",
    "repair_template",
    "repairTemplateWithAI",
)
_TRANSIENT_ERROR_NAMES: frozenset[str] = frozenset(
    {
        "AxiosError",
        "TimeoutError",
        "NetworkError",
        "AuthenticationError",
        "PermissionError",
        "TaskCancelledError",
    },
)
_CODE_DEFECT_ERROR_NAMES: frozenset[str] = frozenset(
    {"ReferenceError", "TypeError", "SyntaxError"},
)
_TRANSIENT_MESSAGE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"timeout.*exceeded", re.IGNORECASE),
    re.compile(r"\btimed\s+out\b", re.IGNORECASE),
    re.compile(r"ETIMEDOUT", re.IGNORECASE),
    re.compile(r"ECONNREFUSED", re.IGNORECASE),
    re.compile(r"ECONNRESET", re.IGNORECASE),
    re.compile(r"\b502\b|bad gateway", re.IGNORECASE),
    re.compile(r"\b503\b|service unavailable", re.IGNORECASE),
    re.compile(r"\b504\b|gateway timeout", re.IGNORECASE),
    re.compile(r"rate\s*limit", re.IGNORECASE),
    re.compile(r"\b429\b|too many requests", re.IGNORECASE),
)


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    """Shape of an execution error as reported by the template runner."""

    name: str | None = None
    message: str | None = None
    stack: str | None = None

    @classmethod
    def from_exception(cls, error: BaseException) -> ErrorInfo:
        """Describe a Python exception in runner terms."""

        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return cls(name=type(error).__name__, message=str(error), stack=stack)


class RepairBudget(Protocol):
    """Anything carrying a repair-attempt counter, usually a task template."""

    repair_attempts: int


@dataclass(frozen=True, slots=True)
class RepairDecision:
    """Decision returned by the eligibility classifier."""

    should_repair: bool
    reason: str
    matched_rule: str = "default"

    def to_event_details(self) -> dict[str, object]:
        """Serialize classifier diagnostics for task events."""

        return {
            "eligibility_version": REPAIR_ELIGIBILITY_VERSION,
            "should_repair": self.should_repair,
            "matched_rule": self.matched_rule,
            "reason": self.reason,
        }


def should_repair(
    error: ErrorInfo | BaseException | Mapping[str, object] | None,
    template: RepairBudget | Mapping[str, object] | None,
    *,
    max_repair_attempts: int = MAX_REPAIR_ATTEMPTS,
) -> RepairDecision:
    """Decide whether a failed execution justifies an automated repair.

    Rules are checked in order and the first match wins: attempt budget,
    repair-subsystem frames in the stack, transient error names, transient
    message vocabulary, known code-defect names, then an optimistic default.
    Never raises.
    """

    info = coerce_error(error)
    attempts = _repair_attempts(template)

    if attempts >= max_repair_attempts:
        return RepairDecision(
            should_repair=False,
            reason=f"Repair attempt budget exhausted ({attempts}/{max_repair_attempts}).",
            matched_rule="budget",
        )

    marker = _first_marker(info.stack)
    if marker is not None:
        return RepairDecision(
            should_repair=False,
            reason=f"Error originated in the repair subsystem ({marker}); refusing to repair the repairer.",
            matched_rule="repair_subsystem",
        )

    name = info.name or ""
    if name in _TRANSIENT_ERROR_NAMES:
        return RepairDecision(
            should_repair=False,
            reason=f"{name} is an infrastructure or transient error.",
            matched_rule="transient_name",
        )

    pattern = _first_transient_pattern(info.message)
    if pattern is not None:
        return RepairDecision(
            should_repair=False,
            reason=f"Error message matches transient failure pattern {pattern!r}.",
            matched_rule="transient_message",
        )

    if name in _CODE_DEFECT_ERROR_NAMES:
        return RepairDecision(
            should_repair=True,
            reason=f"{name} indicates a code defect in the template.",
            matched_rule="code_defect",
        )

    return RepairDecision(
        should_repair=True,
        reason="Unrecognized failure treated as a repairable code defect.",
        matched_rule="default",
    )


def coerce_error(error: object) -> ErrorInfo:
    """Normalise exceptions, mappings and error-like objects to ``ErrorInfo``."""

    if error is None:
        return ErrorInfo()
    if isinstance(error, ErrorInfo):
        return error
    if isinstance(error, BaseException):
        return ErrorInfo.from_exception(error)
    if isinstance(error, Mapping):
        return ErrorInfo(
            name=_optional_text(error.get("name")),
            message=_optional_text(error.get("message")),
            stack=_optional_text(error.get("stack")),
        )
    return ErrorInfo(
        name=_optional_text(getattr(error, "name", None)),
        message=_optional_text(getattr(error, "message", None)),
        stack=_optional_text(getattr(error, "stack", None)),
    )


def _optional_text(value: object) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _repair_attempts(template: object) -> int | float:
    value: object = None
    for field in ("repair_attempts", "repairAttempts"):
        if isinstance(template, Mapping):
            value = template.get(field)
        else:
            value = getattr(template, field, None)
        if value is not None:
            break
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    # NaN and infinities count as an exhausted budget.
    if not math.isfinite(value):
        return math.inf
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _first_marker(stack: str | None) -> str | None:
    if not stack:
        return None
    for marker in REPAIR_SUBSYSTEM_MARKERS:
        if marker in stack:
            return marker
    return None


def _first_transient_pattern(message: str | None) -> str | None:
    if not message:
        return None
    for pattern in _TRANSIENT_MESSAGE_PATTERNS:
        if pattern.search(message):
            return pattern.pattern
    return None
