"""Pure functions that turn triggered alerts into push message content."""

from __future__ import annotations

from pydantic import BaseModel, Field

from stockly.core.types import Alert, AlertDirection

LEGACY_EXPO_PREFIX = "ExponentPushToken["


class PushContent(BaseModel):
    title: str
    body: str
    data: dict[str, str] = Field(default_factory=dict)


def is_legacy_expo_token(token: str) -> bool:
    """Expo tokens predate the FCM migration and cannot be delivered to."""
    return token.startswith(LEGACY_EXPO_PREFIX)


def format_price_alert(alert: Alert, price: float) -> PushContent:
    """Build the title, body and data payload for a triggered price alert."""
    side = "above" if alert.direction == AlertDirection.ABOVE else "below"
    return PushContent(
        title=f"{alert.symbol} Alert",
        body=(
            f"{alert.symbol} is now ${price:.2f} "
            f"({side} your target of ${alert.threshold:.2f})"
        ),
        data={
            "alertId": alert.id,
            "symbol": alert.symbol,
            "price": str(price),
            "threshold": str(alert.threshold),
            "direction": alert.direction.value,
        },
    )
