"""Core module — config, types, logging."""

from stockly.core.config import Settings, get_settings, load_settings, reset_settings
from stockly.core.logging import setup_logging
from stockly.core.types import (
    Alert,
    AlertChannel,
    AlertDirection,
    AlertStateSnapshot,
    AlertStatus,
    DeliveryRecord,
    DeliveryStatus,
    PushTarget,
)

__all__ = [
    "Alert",
    "AlertChannel",
    "AlertDirection",
    "AlertStateSnapshot",
    "AlertStatus",
    "DeliveryRecord",
    "DeliveryStatus",
    "PushTarget",
    "Settings",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
