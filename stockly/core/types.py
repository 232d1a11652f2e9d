"""Domain types for price alerts, trigger state and push delivery."""

from __future__ import annotations

import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AlertDirection(StrEnum):
    """Which way the price has to cross the threshold."""

    ABOVE = "above"
    BELOW = "below"


class AlertStatus(StrEnum):
    """Alert lifecycle status. Only ACTIVE alerts are evaluated."""

    ACTIVE = "active"
    PAUSED = "paused"


class AlertChannel(StrEnum):
    NOTIFICATION = "notification"


class Alert(BaseModel):
    """A user's price alert, owned by the alert-management store."""

    model_config = ConfigDict(frozen=True)

    id: str
    symbol: str
    direction: AlertDirection
    threshold: float
    status: AlertStatus = AlertStatus.ACTIVE
    channel: AlertChannel = AlertChannel.NOTIFICATION
    target: str = ""  # legacy single push token
    user_id: str | None = None
    notes: str | None = None

    @field_validator("symbol")
    @classmethod
    def _normalize_symbol(cls, v: str) -> str:
        return v.strip().upper()


class AlertStateSnapshot(BaseModel):
    """Per-alert trigger state persisted between cron runs.

    Serialised with camelCase keys (``lastConditionMet``...) so records stay
    readable by anything else sharing the KV namespace.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    last_condition_met: bool = Field(default=False, alias="lastConditionMet")
    last_price: float | None = Field(default=None, alias="lastPrice")
    # Epoch milliseconds.
    last_triggered_at: float | None = Field(default=None, alias="lastTriggeredAt")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, raw: str) -> AlertStateSnapshot:
        return cls.model_validate_json(raw)


class PushTarget(BaseModel):
    """A device token that can receive push notifications for a user."""

    model_config = ConfigDict(frozen=True)

    token: str
    user_id: str | None = None
    device_id: int | None = None


class DeliveryStatus(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"
    ERROR = "error"


def _utc_now_iso() -> str:
    return datetime.datetime.now(datetime.UTC).isoformat(timespec="seconds")


class DeliveryRecord(BaseModel):
    """One row of the notifications log — one dispatch to one destination."""

    id: str
    alert_id: str
    user_id: str | None = None
    symbol: str
    threshold: float
    price: float
    direction: AlertDirection
    push_token: str
    status: DeliveryStatus
    error_message: str | None = None
    error_kind: str | None = None
    attempt_count: int = Field(default=1, ge=0)
    sent_at: str = Field(default_factory=_utc_now_iso)
