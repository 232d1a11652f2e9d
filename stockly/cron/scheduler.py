"""Fixed-interval background runner for the alert cron."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog

logger = structlog.stdlib.get_logger()

CronJob = Callable[[], Awaitable[Any]]


class CronScheduler:
    """Background task that runs *job* every ``interval_secs``.

    A failing run is logged and the next one still happens on schedule.

    Usage::

        scheduler = CronScheduler(job=cron.run, interval_secs=300)
        await scheduler.start()
        # ...
        await scheduler.stop()
    """

    def __init__(self, job: CronJob, interval_secs: float = 300.0) -> None:
        self._job = job
        self._interval_secs = interval_secs
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._runs = 0
        self._failures = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def runs(self) -> int:
        return self._runs

    @property
    def failures(self) -> int:
        return self._failures

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def run_once(self) -> Any:
        """Run the job now. Exceptions propagate to the caller."""
        self._runs += 1
        return await self._job()

    # ── Internal loop ───────────────────────────────────────────

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                return
            except Exception:
                self._failures += 1
                logger.exception("alert_cron_run_error", runs=self._runs)
            await asyncio.sleep(self._interval_secs)
