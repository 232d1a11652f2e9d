"""Alert evaluation and trigger-state persistence."""

from stockly.alerts.evaluator import (
    EvaluationResult,
    SkippedAlert,
    SkipReason,
    TriggeredAlert,
    evaluate_alerts,
    is_condition_met,
)
from stockly.alerts.state_store import AlertStateStore

__all__ = [
    "AlertStateStore",
    "EvaluationResult",
    "SkipReason",
    "SkippedAlert",
    "TriggeredAlert",
    "evaluate_alerts",
    "is_condition_met",
]
