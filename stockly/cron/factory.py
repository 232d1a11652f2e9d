"""Convenience factory for wiring the alert cron from settings."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from stockly.alerts.state_store import AlertStateStore
from stockly.core.config import Settings, StateStoreConfig
from stockly.cron.alerts_cron import AlertCron
from stockly.cron.scheduler import CronScheduler
from stockly.notifications.fcm import FcmDispatcher
from stockly.prices.fmp import FmpPriceSource
from stockly.storage.database import AlertDatabase
from stockly.storage.kv import KeyValueStore, MemoryKeyValueStore, SqliteKeyValueStore

logger = structlog.stdlib.get_logger()


@dataclass
class AlertCronStack:
    """Everything the entrypoint needs to start, run and shut down."""

    cron: AlertCron
    scheduler: CronScheduler
    database: AlertDatabase
    prices: FmpPriceSource
    kv: KeyValueStore | None
    state_store: AlertStateStore | None

    async def open(self) -> None:
        await self.database.initialize()
        await self.prices.connect()

    async def close(self) -> None:
        """Force-flush pending state, then release every resource."""
        if self.state_store is not None:
            try:
                await self.state_store.flush_pending_writes(force=True)
            except Exception:
                logger.exception("shutdown_state_flush_failed")
        await self.prices.close()
        if self.kv is not None:
            await self.kv.close()
        await self.database.close()


def create_kv_store(config: StateStoreConfig) -> KeyValueStore | None:
    """Build the configured key-value backend, or None when disabled."""
    backend = config.backend.lower()
    if backend == "sqlite":
        return SqliteKeyValueStore(config.path)
    if backend == "memory":
        return MemoryKeyValueStore()
    if backend != "none":
        logger.warning("unknown_state_store_backend", backend=config.backend)
    return None


def create_alert_cron(settings: Settings) -> AlertCronStack:
    """Build the alert cron and its collaborators from *settings*."""
    database = AlertDatabase(settings.database.path)
    prices = FmpPriceSource(settings.prices)

    kv = create_kv_store(settings.state_store)
    state_store = AlertStateStore(kv, settings.state_store) if kv is not None else None

    fcm_config = settings.fcm
    cron = AlertCron(
        alert_source=database,
        price_source=prices,
        state_store=state_store,
        targets=database,
        delivery_log=database,
        dispatcher_factory=lambda: FcmDispatcher(fcm_config),
        config=settings.cron,
        working_hours=settings.working_hours,
        min_flush_interval_secs=settings.state_store.min_flush_interval_secs,
    )
    scheduler = CronScheduler(job=cron.run, interval_secs=settings.cron.interval_secs)

    return AlertCronStack(
        cron=cron,
        scheduler=scheduler,
        database=database,
        prices=prices,
        kv=kv,
        state_store=state_store,
    )
