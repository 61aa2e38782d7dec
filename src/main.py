"""ntfy-fetch entry point.

Usage:
    python -m src.main            # run the service until SIGINT/SIGTERM
    python -m src.main test       # start, run every check once, stop
    python -m src.main status     # print persisted event and plugin status
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys

from src.config import Settings
from src.events.scheduler import ShutdownTimeoutError
from src.events.store import EventStore, EventStoreCorruptError
from src.plugins.base import load_plugin_configs
from src.service import AlertService
from src.web.server import AdminServer

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )
    # APScheduler logs every job execution at INFO.
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


async def _run_service(settings: Settings) -> int:
    service = AlertService.from_settings(settings)
    admin = None
    if settings.admin_enabled:
        admin = AdminServer(
            service,
            host=settings.admin_host,
            port=settings.admin_port,
            token=settings.admin_token,
        )

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    await service.start()
    if admin is not None:
        await admin.start()

    await stop_requested.wait()
    logger.info("Shutdown signal received, shutting down gracefully...")

    if admin is not None:
        await admin.stop()
    try:
        await service.stop()
    except ShutdownTimeoutError:
        logger.error("Graceful shutdown timed out, forcing exit")
        logging.shutdown()
        os._exit(1)
    return 0


async def _run_test(settings: Settings) -> int:
    service = AlertService.from_settings(settings)
    await service.start()
    try:
        delivered = await service.execute_now()
    finally:
        await service.stop()
    logger.info("Test run complete: %d notification(s) delivered", delivered)
    return 0


async def _show_status(settings: Settings) -> int:
    store = EventStore(settings.events_path)
    status = {
        "events_path": str(settings.events_path),
        "events": await store.get_stats(),
        "upcoming": [
            event.to_dict() for event in await store.query(status=("pending", "scheduled"))
        ][:20],
        "plugins": [
            config.model_dump() for config in load_plugin_configs(settings.plugins_config_path)
        ],
    }
    print(json.dumps(status, indent=2, default=str))
    return 0


COMMANDS = {
    "start": _run_service,
    "test": _run_test,
    "status": _show_status,
}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="ntfy-fetch alert service")
    parser.add_argument(
        "command",
        nargs="?",
        default="start",
        choices=sorted(COMMANDS),
        help="What to do (default: start)",
    )
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    args = parser.parse_args(argv)

    settings = Settings()
    _configure_logging(args.log_level or settings.log_level)

    try:
        return asyncio.run(COMMANDS[args.command](settings))
    except EventStoreCorruptError as exc:
        logger.error("%s", exc)
        return 1
    except ValueError as exc:
        logger.error("Configuration error: %s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
