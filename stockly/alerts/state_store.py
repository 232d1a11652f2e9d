"""Alert trigger-state persistence with an in-memory write-coalescing cache.

Every cron pass produces a new snapshot per examined alert. Writing each of
them to the key-value store would cost one write per alert per pass, so
snapshots are buffered in memory and flushed as a group at most once per
``min_flush_interval_secs``. Buffered snapshots are served back to the next
pass in the same process, so a deferred flush only delays durability by at
most one interval; it never loses an update.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable

import structlog
from pydantic import ValidationError

from stockly.core.config import StateStoreConfig
from stockly.core.types import AlertStateSnapshot
from stockly.storage.kv import KeyValueStore

logger = structlog.stdlib.get_logger()

Clock = Callable[[], float]


class AlertStateStore:
    """Owns the state cache and pending write buffer for one process.

    Usage::

        store = AlertStateStore(kv, config)
        states = await store.load_all_states(alert_ids)
        store.update_state_in_cache(alert_id, snapshot)
        await store.flush_pending_writes()
    """

    def __init__(
        self,
        kv: KeyValueStore,
        config: StateStoreConfig | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self._kv = kv
        self._config = config or StateStoreConfig()
        self._clock = clock
        self._cache: dict[str, AlertStateSnapshot] = {}
        self._pending: dict[str, AlertStateSnapshot] = {}
        self._cache_loaded_at: float | None = None
        self._last_flush_at: float | None = None

    @property
    def kv(self) -> KeyValueStore:
        return self._kv

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def key_for(self, alert_id: str) -> str:
        return f"{self._config.key_prefix}{alert_id}:state"

    def _cache_fresh(self) -> bool:
        if self._cache_loaded_at is None:
            return False
        return (self._clock() - self._cache_loaded_at) < self._config.cache_ttl_secs

    # ── Reads ───────────────────────────────────────────────────

    async def load_all_states(
        self, alert_ids: Iterable[str],
    ) -> dict[str, AlertStateSnapshot]:
        """Return the known state for each id; unknown ids are omitted.

        Served from memory while the cache is fresh, otherwise read from the
        key-value store. Unreadable or corrupt records count as absent.
        Pending snapshots always take precedence over stored ones.
        """
        ids = list(dict.fromkeys(alert_ids))

        if not self._cache_fresh():
            loaded = await self._read_from_kv(ids)
            self._cache.update(loaded)
            self._cache_loaded_at = self._clock()
            logger.info("alert_states_loaded", requested=len(ids), found=len(loaded))
        else:
            # Alerts created since the last full load.
            unseen = [i for i in ids if i not in self._cache and i not in self._pending]
            if unseen:
                self._cache.update(await self._read_from_kv(unseen))

        result: dict[str, AlertStateSnapshot] = {}
        for alert_id in ids:
            snapshot = self._pending.get(alert_id) or self._cache.get(alert_id)
            if snapshot is not None:
                result[alert_id] = snapshot
        return result

    async def _read_from_kv(self, ids: list[str]) -> dict[str, AlertStateSnapshot]:
        async def _read_one(alert_id: str) -> tuple[str, AlertStateSnapshot | None]:
            try:
                raw = await self._kv.get(self.key_for(alert_id))
            except Exception:
                logger.warning("alert_state_read_failed", alert_id=alert_id, exc_info=True)
                return alert_id, None
            if not raw:
                return alert_id, None
            try:
                return alert_id, AlertStateSnapshot.from_json(raw)
            except ValidationError:
                logger.warning("alert_state_corrupt", alert_id=alert_id, raw=raw[:200])
                return alert_id, None

        pairs = await asyncio.gather(*(_read_one(i) for i in ids))
        return {alert_id: snap for alert_id, snap in pairs if snap is not None}

    def get_cached_state(self, alert_id: str) -> AlertStateSnapshot | None:
        return self._pending.get(alert_id) or self._cache.get(alert_id)

    # ── Writes ──────────────────────────────────────────────────

    def update_state_in_cache(self, alert_id: str, snapshot: AlertStateSnapshot) -> None:
        """Record *snapshot* in memory and queue it for the next flush."""
        self._cache[alert_id] = snapshot
        self._pending[alert_id] = snapshot

    async def flush_pending_writes(
        self,
        min_interval_secs: float | None = None,
        force: bool = False,
    ) -> int:
        """Write buffered snapshots if the flush interval has elapsed.

        Returns the number of snapshots written. A deferred flush returns 0
        and keeps the buffer for the next call. Snapshots whose write fails
        stay buffered.
        """
        if not self._pending:
            return 0

        interval = (
            self._config.min_flush_interval_secs
            if min_interval_secs is None
            else min_interval_secs
        )
        now = self._clock()
        if not force and self._last_flush_at is not None:
            elapsed = now - self._last_flush_at
            if elapsed < interval:
                logger.info(
                    "state_flush_deferred",
                    pending=len(self._pending),
                    elapsed_secs=round(elapsed, 1),
                    interval_secs=interval,
                )
                return 0

        batch = dict(self._pending)
        self._pending.clear()

        async def _write_one(alert_id: str, snapshot: AlertStateSnapshot) -> str | None:
            try:
                await self._kv.put(self.key_for(alert_id), snapshot.to_json())
                return alert_id
            except Exception:
                logger.exception("alert_state_write_failed", alert_id=alert_id)
                return None

        written = await asyncio.gather(*(_write_one(i, s) for i, s in batch.items()))
        ok = {i for i in written if i is not None}

        for alert_id, snapshot in batch.items():
            # Keep failed writes unless a newer snapshot was queued meanwhile.
            if alert_id not in ok and alert_id not in self._pending:
                self._pending[alert_id] = snapshot

        self._last_flush_at = now
        logger.info("state_flushed", written=len(ok), attempted=len(batch))
        return len(ok)

    # ── Maintenance ─────────────────────────────────────────────

    def invalidate_state(self, alert_id: str) -> None:
        """Forget an alert (e.g. after it was deleted)."""
        self._cache.pop(alert_id, None)
        self._pending.pop(alert_id, None)

    def clear_cache(self) -> None:
        """Reset cache, buffer and timestamps (cold start / test isolation)."""
        self._cache.clear()
        self._pending.clear()
        self._cache_loaded_at = None
        self._last_flush_at = None

    def stats(self) -> dict[str, float | int]:
        now = self._clock()
        return {
            "cached_states": len(self._cache),
            "pending_writes": len(self._pending),
            "cache_age_secs": (
                now - self._cache_loaded_at if self._cache_loaded_at is not None else 0.0
            ),
            "secs_since_last_flush": (
                now - self._last_flush_at if self._last_flush_at is not None else 0.0
            ),
        }
