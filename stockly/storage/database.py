"""SQLite store for alerts, device push tokens and the notifications log.

This is the alert-management side of the system: the cron only reads alerts
and push targets, appends delivery records and deactivates dead tokens.
"""

from __future__ import annotations

import asyncio
import datetime
import sqlite3
import threading
import uuid
from pathlib import Path
from typing import Any

import structlog

from stockly.core.logging import mask_token
from stockly.core.types import (
    Alert,
    AlertChannel,
    AlertDirection,
    AlertStatus,
    DeliveryRecord,
    PushTarget,
)
from stockly.storage.exceptions import AlertStoreError

logger = structlog.stdlib.get_logger()

_SCHEMA = """
CREATE TABLE IF NOT EXISTS alerts (
    id TEXT PRIMARY KEY,
    symbol TEXT NOT NULL,
    direction TEXT NOT NULL CHECK (direction IN ('above', 'below')),
    threshold REAL NOT NULL,
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'paused')),
    channel TEXT NOT NULL DEFAULT 'notification',
    target TEXT NOT NULL DEFAULT '',
    notes TEXT,
    user_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_alerts_status ON alerts (status);

CREATE TABLE IF NOT EXISTS devices (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    device_info TEXT,
    device_type TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_devices_user_id ON devices (user_id);

CREATE TABLE IF NOT EXISTS device_push_tokens (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    device_id INTEGER NOT NULL REFERENCES devices (id) ON DELETE CASCADE,
    push_token TEXT NOT NULL UNIQUE,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS notifications_log (
    id TEXT PRIMARY KEY,
    alert_id TEXT NOT NULL,
    user_id TEXT,
    symbol TEXT NOT NULL,
    threshold REAL NOT NULL,
    price REAL NOT NULL,
    direction TEXT NOT NULL,
    push_token TEXT NOT NULL,
    status TEXT NOT NULL,
    error_message TEXT,
    error_kind TEXT,
    attempt_count INTEGER NOT NULL DEFAULT 1,
    sent_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_notifications_log_alert_id ON notifications_log (alert_id);
"""

_SELECT_ALERTS = (
    "SELECT id, symbol, direction, threshold, status, channel, target, notes, user_id "
    "FROM alerts"
)


def _now_iso() -> str:
    return datetime.datetime.now(datetime.UTC).isoformat(timespec="seconds")


def _row_to_alert(row: sqlite3.Row) -> Alert:
    return Alert(
        id=row["id"],
        symbol=row["symbol"],
        direction=AlertDirection(row["direction"]),
        threshold=float(row["threshold"]),
        status=AlertStatus(row["status"]),
        channel=AlertChannel(row["channel"]),
        target=row["target"] or "",
        notes=row["notes"],
        user_id=row["user_id"],
    )


class AlertDatabase:
    """Async facade over a SQLite database file.

    Usage::

        db = AlertDatabase("data/stockly.db")
        await db.initialize()
        alerts = await db.list_active_alerts()
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            if str(self._path) != ":memory:":
                self._path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    async def _run(self, fn: Any, *args: Any) -> Any:
        def _locked() -> Any:
            with self._lock:
                return fn(self._connection(), *args)

        try:
            return await asyncio.to_thread(_locked)
        except sqlite3.Error as exc:
            raise AlertStoreError(f"{getattr(fn, '__name__', 'query')} failed: {exc}") from exc

    async def initialize(self) -> None:
        """Create tables if they do not exist."""

        def _init(conn: sqlite3.Connection) -> None:
            conn.executescript(_SCHEMA)
            conn.commit()

        await self._run(_init)

    async def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # ── Alert source ────────────────────────────────────────────

    async def list_active_alerts(self) -> list[Alert]:
        def _list(conn: sqlite3.Connection) -> list[Alert]:
            rows = conn.execute(
                f"{_SELECT_ALERTS} WHERE status = ? ORDER BY created_at DESC",
                (AlertStatus.ACTIVE.value,),
            ).fetchall()
            return [_row_to_alert(r) for r in rows]

        return await self._run(_list)

    async def add_alert(
        self,
        symbol: str,
        direction: AlertDirection,
        threshold: float,
        user_id: str | None = None,
        target: str = "",
        status: AlertStatus = AlertStatus.ACTIVE,
        alert_id: str | None = None,
    ) -> Alert:
        alert = Alert(
            id=alert_id or str(uuid.uuid4()),
            symbol=symbol,
            direction=direction,
            threshold=threshold,
            status=status,
            target=target,
            user_id=user_id,
        )

        def _insert(conn: sqlite3.Connection) -> None:
            now = _now_iso()
            conn.execute(
                "INSERT INTO alerts (id, symbol, direction, threshold, status, channel, "
                "target, notes, user_id, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    alert.id, alert.symbol, alert.direction.value, alert.threshold,
                    alert.status.value, alert.channel.value, alert.target, alert.notes,
                    alert.user_id, now, now,
                ),
            )
            conn.commit()

        await self._run(_insert)
        return alert

    # ── Destination resolution ──────────────────────────────────

    async def list_push_targets(self, alert: Alert) -> list[PushTarget]:
        """Active device tokens of the alert's owner, else the legacy target."""

        def _resolve(conn: sqlite3.Connection) -> list[PushTarget]:
            targets: list[PushTarget] = []
            if alert.user_id:
                rows = conn.execute(
                    """
                    SELECT dpt.push_token, d.id AS device_id, d.user_id
                    FROM device_push_tokens dpt
                    INNER JOIN devices d ON dpt.device_id = d.id
                    WHERE d.user_id = ? AND dpt.is_active = 1 AND d.is_active = 1
                    ORDER BY dpt.id
                    """,
                    (alert.user_id,),
                ).fetchall()
                targets = [
                    PushTarget(
                        token=r["push_token"],
                        user_id=r["user_id"],
                        device_id=r["device_id"],
                    )
                    for r in rows
                ]
            if not targets and alert.target:
                targets = [PushTarget(token=alert.target, user_id=alert.user_id)]
            seen: set[str] = set()
            unique: list[PushTarget] = []
            for t in targets:
                if t.token not in seen:
                    seen.add(t.token)
                    unique.append(t)
            return unique

        return await self._run(_resolve)

    async def register_device_token(
        self,
        user_id: str,
        push_token: str,
        device_info: str | None = None,
        device_type: str = "unknown",
    ) -> int:
        """Create a device for *user_id* holding *push_token*. Returns device id."""

        def _register(conn: sqlite3.Connection) -> int:
            now = _now_iso()
            cur = conn.execute(
                "INSERT INTO devices (user_id, device_info, device_type, is_active, created_at) "
                "VALUES (?, ?, ?, 1, ?)",
                (user_id, device_info, device_type, now),
            )
            device_id = int(cur.lastrowid or 0)
            conn.execute(
                "INSERT INTO device_push_tokens (device_id, push_token, is_active, "
                "created_at, updated_at) VALUES (?, ?, 1, ?, ?)",
                (device_id, push_token, now, now),
            )
            conn.commit()
            return device_id

        return await self._run(_register)

    async def deactivate_push_token(self, push_token: str) -> bool:
        """Mark a token inactive and drop it as a legacy alert target.

        Returns True if any row changed.
        """

        def _deactivate(conn: sqlite3.Connection) -> bool:
            now = _now_iso()
            tokens = conn.execute(
                "UPDATE device_push_tokens SET is_active = 0, updated_at = ? "
                "WHERE push_token = ? AND is_active = 1",
                (now, push_token),
            )
            legacy = conn.execute(
                "UPDATE alerts SET target = '', updated_at = ? WHERE target = ?",
                (now, push_token),
            )
            conn.commit()
            return tokens.rowcount > 0 or legacy.rowcount > 0

        changed = await self._run(_deactivate)
        if changed:
            logger.info("push_token_deactivated", token=mask_token(push_token))
        return changed

    # ── Delivery log ────────────────────────────────────────────

    async def record_delivery_attempt(self, record: DeliveryRecord) -> None:
        def _insert(conn: sqlite3.Connection) -> None:
            conn.execute(
                "INSERT INTO notifications_log (id, alert_id, user_id, symbol, threshold, "
                "price, direction, push_token, status, error_message, error_kind, "
                "attempt_count, sent_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id, record.alert_id, record.user_id, record.symbol,
                    record.threshold, record.price, record.direction.value,
                    record.push_token, record.status.value, record.error_message,
                    record.error_kind, record.attempt_count, record.sent_at,
                ),
            )
            conn.commit()

        await self._run(_insert)

    async def list_delivery_records(self, alert_id: str | None = None) -> list[dict[str, Any]]:
        def _list(conn: sqlite3.Connection) -> list[dict[str, Any]]:
            if alert_id is None:
                rows = conn.execute("SELECT * FROM notifications_log ORDER BY sent_at").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM notifications_log WHERE alert_id = ? ORDER BY sent_at",
                    (alert_id,),
                ).fetchall()
            return [dict(r) for r in rows]

        return await self._run(_list)
