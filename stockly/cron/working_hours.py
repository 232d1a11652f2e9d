"""Operating-window gate for the alert cron."""

from __future__ import annotations

import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from stockly.core.config import WorkingHoursConfig

logger = structlog.stdlib.get_logger()


def current_hour(timezone: str, now: datetime.datetime | None = None) -> int:
    """Hour (0-23) of *now* in *timezone*; unknown zones fall back to UTC."""
    moment = now or datetime.datetime.now(datetime.UTC)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=datetime.UTC)
    try:
        tz: datetime.tzinfo = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("working_hours_invalid_timezone", timezone=timezone)
        tz = datetime.UTC
    return moment.astimezone(tz).hour


def is_within_working_hours(
    config: WorkingHoursConfig,
    now: datetime.datetime | None = None,
) -> bool:
    """Return True if the cron may run at *now*.

    Disabled or invalid configurations never block. Both bounds are
    inclusive; ``start_hour > end_hour`` describes a window spanning midnight.
    """
    if not config.enabled:
        return True

    start, end = config.start_hour, config.end_hour
    if not (0 <= start <= 23 and 0 <= end <= 23):
        logger.warning("working_hours_invalid", start_hour=start, end_hour=end)
        return True

    hour = current_hour(config.timezone or "UTC", now)
    if start <= end:
        return start <= hour <= end
    return hour >= start or hour <= end
