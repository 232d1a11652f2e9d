"""Alert cron entrypoint — wires all components and runs the schedule.

Usage::

    # Run every cron.interval_secs until interrupted
    stockly-alerts

    # Custom config file
    stockly-alerts --config config/settings.yaml

    # Single pass, then exit (for an external scheduler)
    stockly-alerts --once
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from stockly.core.config import Settings, load_settings
from stockly.core.logging import setup_logging
from stockly.cron.factory import AlertCronStack, create_alert_cron

logger = structlog.stdlib.get_logger()


async def run(args: argparse.Namespace) -> int:
    """Start the alert cron and run until interrupted (or once)."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level)

    if not settings.prices.api_key.get_secret_value():
        logger.error("missing_price_api_key")
        print(
            "No FMP API key configured. Set prices.api_key in config/settings.yaml.",
            file=sys.stderr,
        )
        return 1

    stack = create_alert_cron(settings)
    try:
        return await _serve(stack, settings, args.once)
    finally:
        await stack.close()


async def _serve(stack: AlertCronStack, settings: Settings, once: bool) -> int:
    """Open the stack and run it. The caller always closes the stack."""
    try:
        await stack.open()
    except Exception:
        logger.exception("alert_cron_open_failed")
        return 1

    logger.info(
        "alert_cron_starting",
        interval_secs=settings.cron.interval_secs,
        state_backend=settings.state_store.backend,
        working_hours=settings.working_hours.enabled,
        once=once,
    )

    if once:
        try:
            await stack.scheduler.run_once()
        except Exception:
            logger.exception("alert_cron_run_error")
            return 1
        return 0

    await stack.scheduler.start()

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    logger.info("alert_cron_shutting_down")
    await stack.scheduler.stop()

    logger.info(
        "alert_cron_stopped",
        runs=stack.scheduler.runs,
        failures=stack.scheduler.failures,
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Evaluate Stockly price alerts and deliver push notifications.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single pass and exit",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
