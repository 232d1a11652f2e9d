"""Alert cron — one scheduled pass of the price-alert pipeline.

load alerts -> fetch prices -> evaluate -> dispatch -> flush state.

Failures while loading alerts, fetching prices or loading state are systemic
and propagate to the scheduler. Failures while delivering are contained per
alert and per destination, and never prevent the state flush.
"""

from __future__ import annotations

import asyncio
import datetime
import itertools
import uuid
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol, TypeVar

import structlog
from pydantic import BaseModel

from stockly.alerts.evaluator import TriggeredAlert, evaluate_alerts
from stockly.alerts.state_store import AlertStateStore
from stockly.core.config import CronConfig, WorkingHoursConfig
from stockly.core.logging import bind_run_context, clear_run_context, mask_token
from stockly.core.types import Alert, DeliveryRecord, DeliveryStatus, PushTarget
from stockly.cron.working_hours import is_within_working_hours
from stockly.notifications.formatters import (
    PushContent,
    format_price_alert,
    is_legacy_expo_token,
)
from stockly.notifications.types import DispatchResult
from stockly.prices.fmp import PriceSource

logger = structlog.stdlib.get_logger()

T = TypeVar("T")


# ── Collaborator contracts ──────────────────────────────────────


class AlertSource(Protocol):
    async def list_active_alerts(self) -> list[Alert]: ...


class PushTargetDirectory(Protocol):
    async def list_push_targets(self, alert: Alert) -> list[PushTarget]: ...

    async def deactivate_push_token(self, push_token: str) -> bool: ...


class DeliveryLog(Protocol):
    async def record_delivery_attempt(self, record: DeliveryRecord) -> None: ...


class Dispatcher(Protocol):
    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: Mapping[str, Any] | None = None,
    ) -> DispatchResult: ...

    async def close(self) -> None: ...


DispatcherFactory = Callable[[], Dispatcher]


class CronRunSummary(BaseModel):
    """What one pass did. Logged at the end of every run."""

    run_id: str
    skipped_reason: str | None = None
    alerts_evaluated: int = 0
    prices_resolved: int = 0
    notifications_triggered: int = 0
    deliveries_sent: int = 0
    deliveries_failed: int = 0
    tokens_cleaned: int = 0
    alert_errors: int = 0
    states_updated: int = 0
    states_flushed: int = 0


async def _best_effort(aw: Awaitable[T], event: str, **fields: object) -> T | None:
    """Await *aw*; log and swallow any failure."""
    try:
        return await aw
    except Exception:
        logger.exception(event, **fields)
        return None


class AlertCron:
    """Runs the alert pipeline once per call to :meth:`run`.

    Usage::

        cron = AlertCron(
            alert_source=db,
            price_source=prices,
            state_store=state_store,
            targets=db,
            delivery_log=db,
            dispatcher_factory=lambda: FcmDispatcher(settings.fcm),
        )
        summary = await cron.run()
    """

    def __init__(
        self,
        alert_source: AlertSource,
        price_source: PriceSource,
        state_store: AlertStateStore | None,
        targets: PushTargetDirectory,
        delivery_log: DeliveryLog,
        dispatcher_factory: DispatcherFactory,
        config: CronConfig | None = None,
        working_hours: WorkingHoursConfig | None = None,
        min_flush_interval_secs: float | None = None,
    ) -> None:
        self._alert_source = alert_source
        self._price_source = price_source
        self._state_store = state_store
        self._targets = targets
        self._delivery_log = delivery_log
        self._dispatcher_factory = dispatcher_factory
        self._config = config or CronConfig()
        self._working_hours = working_hours or WorkingHoursConfig()
        self._min_flush_interval_secs = min_flush_interval_secs
        self._record_seq = itertools.count(1)

    @property
    def state_store(self) -> AlertStateStore | None:
        return self._state_store

    async def run(self, now: datetime.datetime | None = None) -> CronRunSummary:
        """Execute one pass. Systemic failures propagate."""
        moment = now or datetime.datetime.now(datetime.UTC)
        summary = CronRunSummary(run_id=uuid.uuid4().hex[:12])
        bind_run_context(run_id=summary.run_id)
        try:
            await self._run(moment, summary)
            logger.info("alert_cron_finished", **summary.model_dump(exclude={"run_id"}))
            return summary
        finally:
            clear_run_context()

    async def _run(self, moment: datetime.datetime, summary: CronRunSummary) -> None:
        if not self._config.enabled:
            summary.skipped_reason = "disabled"
            return
        if not is_within_working_hours(self._working_hours, moment):
            summary.skipped_reason = "outside-working-hours"
            return

        store = self._state_store
        if store is None:
            logger.warning("alert_state_store_not_configured")
            summary.skipped_reason = "state-store-not-configured"
            return

        alerts = await self._alert_source.list_active_alerts()
        if not alerts:
            summary.skipped_reason = "no-active-alerts"
            return

        symbols = sorted({a.symbol for a in alerts})
        prices = await self._price_source.get_prices(symbols)
        summary.prices_resolved = len(prices)
        if not prices:
            logger.warning("alert_cron_no_prices", symbols=len(symbols))
            summary.skipped_reason = "no-prices"
            return

        states = await store.load_all_states(a.id for a in alerts)
        result = evaluate_alerts(
            alerts,
            prices,
            states,
            timestamp=moment.timestamp() * 1000.0,
        )
        summary.alerts_evaluated = len(alerts)
        summary.notifications_triggered = len(result.notifications)
        summary.states_updated = len(result.state_updates)

        for alert_id, snapshot in result.state_updates.items():
            store.update_state_in_cache(alert_id, snapshot)

        try:
            if result.notifications:
                await self._deliver_all(result.notifications, moment, summary)
        except Exception:
            logger.exception("alert_delivery_phase_failed")
        finally:
            flushed = await _best_effort(
                store.flush_pending_writes(self._min_flush_interval_secs),
                "alert_state_flush_failed",
            )
            summary.states_flushed = flushed or 0

    # ── Delivery ────────────────────────────────────────────────

    async def _deliver_all(
        self,
        notifications: list[TriggeredAlert],
        moment: datetime.datetime,
        summary: CronRunSummary,
    ) -> None:
        dispatcher = self._dispatcher_factory()
        semaphore = asyncio.Semaphore(max(1, self._config.max_concurrent_dispatches))
        try:
            await asyncio.gather(*(
                self._deliver_alert(t, dispatcher, semaphore, moment, summary)
                for t in notifications
            ))
        finally:
            await _best_effort(dispatcher.close(), "dispatcher_close_error")

    async def _deliver_alert(
        self,
        triggered: TriggeredAlert,
        dispatcher: Dispatcher,
        semaphore: asyncio.Semaphore,
        moment: datetime.datetime,
        summary: CronRunSummary,
    ) -> None:
        alert, price = triggered.alert, triggered.price
        logger.info(
            "alert_triggered",
            alert_id=alert.id,
            symbol=alert.symbol,
            price=price,
            direction=alert.direction,
            threshold=alert.threshold,
        )
        try:
            targets = await self._targets.list_push_targets(alert)
            if not targets:
                logger.warning("alert_no_push_targets", alert_id=alert.id, user_id=alert.user_id)
                return
            content = format_price_alert(alert, price)
            await asyncio.gather(*(
                self._deliver_to_target(
                    alert, price, target, content, dispatcher, semaphore, moment, summary,
                )
                for target in targets
            ))
        except Exception:
            summary.alert_errors += 1
            logger.exception("alert_delivery_failed", alert_id=alert.id, symbol=alert.symbol)

    async def _deliver_to_target(
        self,
        alert: Alert,
        price: float,
        target: PushTarget,
        content: PushContent,
        dispatcher: Dispatcher,
        semaphore: asyncio.Semaphore,
        moment: datetime.datetime,
        summary: CronRunSummary,
    ) -> None:
        token = target.token
        if is_legacy_expo_token(token):
            logger.warning("legacy_expo_token_skipped", alert_id=alert.id, token=mask_token(token))
            summary.deliveries_failed += 1
            await self._record(
                alert, price, target, moment,
                status=DeliveryStatus.ERROR,
                error_message="Expo token detected - FCM migration required",
                attempts=0,
            )
            return

        try:
            async with semaphore:
                result = await dispatcher.send(token, content.title, content.body, content.data)
        except Exception as exc:
            summary.deliveries_failed += 1
            logger.exception("push_dispatch_error", alert_id=alert.id, token=mask_token(token))
            await self._record(
                alert, price, target, moment,
                status=DeliveryStatus.ERROR,
                error_message=str(exc) or type(exc).__name__,
                attempts=1,
            )
            return

        if result.success:
            summary.deliveries_sent += 1
            await self._record(
                alert, price, target, moment,
                status=DeliveryStatus.SUCCESS,
                attempts=result.attempts,
            )
        else:
            summary.deliveries_failed += 1
            await self._record(
                alert, price, target, moment,
                status=DeliveryStatus.FAILED,
                error_message=result.error_message,
                error_kind=result.error_kind,
                attempts=result.attempts,
            )

        if result.should_cleanup_token:
            cleaned = await _best_effort(
                self._targets.deactivate_push_token(token),
                "push_token_cleanup_failed",
                token=mask_token(token),
            )
            if cleaned:
                summary.tokens_cleaned += 1

    async def _record(
        self,
        alert: Alert,
        price: float,
        target: PushTarget,
        moment: datetime.datetime,
        status: DeliveryStatus,
        error_message: str | None = None,
        error_kind: str | None = None,
        attempts: int = 1,
    ) -> None:
        stamp = int(moment.timestamp() * 1000)
        record = DeliveryRecord(
            id=f"{alert.id}_{stamp}_{next(self._record_seq)}",
            alert_id=alert.id,
            user_id=target.user_id or alert.user_id,
            symbol=alert.symbol,
            threshold=alert.threshold,
            price=price,
            direction=alert.direction,
            push_token=target.token,
            status=status,
            error_message=error_message,
            error_kind=error_kind,
            attempt_count=attempts,
        )
        await _best_effort(
            self._delivery_log.record_delivery_attempt(record),
            "delivery_log_write_failed",
            alert_id=alert.id,
        )
