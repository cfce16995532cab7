"""Auto-repair eligibility and budget gating."""

from taskpilot.repair.eligibility import (
    MAX_REPAIR_ATTEMPTS,
    ErrorInfo,
    RepairDecision,
    should_repair,
)
from taskpilot.repair.gate import AutoRepairGate, RepairOutcome, RepairRun, TemplateRepairer
from taskpilot.repair.tracker import RepairAllowance, RepairTracker

__all__ = [
    "MAX_REPAIR_ATTEMPTS",
    "AutoRepairGate",
    "ErrorInfo",
    "RepairAllowance",
    "RepairDecision",
    "RepairOutcome",
    "RepairRun",
    "RepairTracker",
    "TemplateRepairer",
    "should_repair",
]
