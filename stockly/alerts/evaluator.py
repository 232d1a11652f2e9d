"""Alert evaluation — edge-triggered threshold crossing, no I/O."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from enum import StrEnum

from pydantic import BaseModel, Field

from stockly.core.types import Alert, AlertDirection, AlertStateSnapshot, AlertStatus

_DEFAULT_STATE = AlertStateSnapshot()


class SkipReason(StrEnum):
    """Why an examined alert did not fire."""

    INACTIVE = "inactive"
    MISSING_PRICE = "missing-price"
    CONDITION_NOT_MET = "condition-not-met"
    ALREADY_MET = "already-met"


class TriggeredAlert(BaseModel):
    alert: Alert
    price: float


class SkippedAlert(BaseModel):
    alert: Alert
    reason: SkipReason


class EvaluationResult(BaseModel):
    """Outcome of one evaluation pass."""

    notifications: list[TriggeredAlert] = Field(default_factory=list)
    skipped: list[SkippedAlert] = Field(default_factory=list)
    state_updates: dict[str, AlertStateSnapshot] = Field(default_factory=dict)


def _usable_price(price: float) -> bool:
    return isinstance(price, (int, float)) and not isinstance(price, bool) and math.isfinite(price)


def is_condition_met(alert: Alert, price: float) -> bool:
    """Return True if *price* is on the triggering side of the threshold."""
    if alert.direction == AlertDirection.ABOVE:
        return price >= alert.threshold
    return price <= alert.threshold


def evaluate_alerts(
    alerts: Iterable[Alert],
    price_by_symbol: Mapping[str, float | None],
    state_by_alert_id: Mapping[str, AlertStateSnapshot | None] | None = None,
    timestamp: float = 0.0,
) -> EvaluationResult:
    """Decide which alerts fire now and compute their next trigger state.

    An alert fires only on the false -> true transition of its condition.
    While the price stays past the threshold the alert is skipped as
    ``already-met``; it re-arms once a pass sees the condition false again.

    Alerts without a usable price are skipped without a state update, so
    missing data never overwrites the stored condition with "not met".

    Args:
        alerts: Alerts to examine.
        price_by_symbol: Current price per (uppercase) symbol. May be partial.
        state_by_alert_id: Prior snapshots. Missing ids mean default state.
        timestamp: Evaluation time in epoch milliseconds.
    """
    states = state_by_alert_id or {}
    result = EvaluationResult()

    for alert in alerts:
        if alert.status != AlertStatus.ACTIVE:
            result.skipped.append(SkippedAlert(alert=alert, reason=SkipReason.INACTIVE))
            continue

        price = price_by_symbol.get(alert.symbol)
        if price is None or not _usable_price(price):
            result.skipped.append(SkippedAlert(alert=alert, reason=SkipReason.MISSING_PRICE))
            continue

        previous = states.get(alert.id) or _DEFAULT_STATE
        condition_met = is_condition_met(alert, price)
        fired = condition_met and not previous.last_condition_met

        result.state_updates[alert.id] = AlertStateSnapshot(
            last_condition_met=condition_met,
            last_price=float(price),
            last_triggered_at=timestamp if fired else previous.last_triggered_at,
        )

        if fired:
            result.notifications.append(TriggeredAlert(alert=alert, price=float(price)))
        elif condition_met:
            result.skipped.append(SkippedAlert(alert=alert, reason=SkipReason.ALREADY_MET))
        else:
            result.skipped.append(
                SkippedAlert(alert=alert, reason=SkipReason.CONDITION_NOT_MET),
            )

    return result
