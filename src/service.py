"""AlertService — wires the gateway, event store, schedulers and plugins."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from src.events.scheduler import EventScheduler
from src.events.store import EventStore
from src.notifications.models import NotificationRequest
from src.notifications.ntfy import NtfyGateway
from src.plugins.base import EventSchedulingPlugin, load_plugin_configs
from src.plugins.manager import PluginManager
from src.scheduler.engine import TaskScheduler

if TYPE_CHECKING:
    from src.config import Settings
    from src.notifications.channels import NotificationGateway
    from src.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)


class AlertService:
    """Composition root with an explicit start/stop lifecycle.

    Use :meth:`from_settings` in production; tests pass the parts directly.
    """

    def __init__(
        self,
        *,
        gateway: NotificationGateway,
        event_scheduler: EventScheduler,
        plugin_manager: PluginManager,
        task_scheduler: TaskScheduler,
        startup_notification: bool = True,
    ) -> None:
        self.gateway = gateway
        self.event_scheduler = event_scheduler
        self.plugin_manager = plugin_manager
        self.task_scheduler = task_scheduler
        self._startup_notification = startup_notification
        self._running = False
        self._started_at: float | None = None

    @classmethod
    def from_settings(
        cls, settings: Settings, registry: PluginRegistry | None = None
    ) -> AlertService:
        """Build every component from *settings*.

        Raises:
            ValueError: If required settings are missing or the plugin
                config file is invalid.
        """
        missing = settings.missing_required()
        if missing:
            msg = f"Missing required settings: {', '.join(missing)}"
            raise ValueError(msg)

        gateway = NtfyGateway(
            settings.ntfy_url,
            settings.ntfy_topic,
            auth=settings.get_ntfy_auth(),
            timeout=settings.notification_timeout_seconds,
            bulk_delay=settings.notification_bulk_delay_seconds,
        )
        store = EventStore(
            settings.events_path,
            max_retries=settings.event_max_retries,
            retention_hours=settings.event_retention_hours,
            cleanup_interval_hours=settings.event_cleanup_interval_hours,
            save_debounce_seconds=settings.event_save_debounce_seconds,
        )
        event_scheduler = EventScheduler(
            store,
            gateway,
            check_interval=settings.event_check_interval_seconds,
            horizon_hours=settings.event_schedule_horizon_hours,
            shutdown_timeout=settings.shutdown_timeout_seconds,
        )
        plugin_manager = PluginManager(
            load_plugin_configs(settings.plugins_config_path), registry
        )
        task_scheduler = TaskScheduler(
            plugin_manager, gateway, timezone=settings.scheduler_timezone
        )
        return cls(
            gateway=gateway,
            event_scheduler=event_scheduler,
            plugin_manager=plugin_manager,
            task_scheduler=task_scheduler,
            startup_notification=settings.startup_notification,
        )

    @property
    def running(self) -> bool:
        return self._running

    @property
    def store(self) -> EventStore:
        return self.event_scheduler.store

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            logger.warning("Service is already running")
            return

        logger.info("Starting ntfy-fetch service...")
        try:
            if not await self.gateway.test_connection():
                logger.warning(
                    "ntfy connection test failed; continuing, but notifications may fail"
                )
            await self.plugin_manager.initialize_plugins()
            await self.event_scheduler.start()
            await self._connect_event_plugins()
            await self.task_scheduler.start()
        except Exception:
            logger.exception("Failed to start service")
            await self._abort_start()
            raise

        self._running = True
        self._started_at = time.monotonic()
        logger.info("ntfy-fetch service started")

        if self._startup_notification:
            await self._send_startup_notification()

    async def stop(self) -> None:
        """Stop schedulers and clean up plugins.

        Raises:
            ShutdownTimeoutError: If the event scheduler misses its deadline.
        """
        if not self._running:
            logger.info("Service is already stopped")
            return

        logger.info("Stopping ntfy-fetch service...")
        self._running = False
        await self.task_scheduler.stop()
        try:
            await self.event_scheduler.stop()
        finally:
            await self.plugin_manager.cleanup_plugins()
        logger.info("Service stopped")

    async def restart(self) -> None:
        logger.info("Restarting service...")
        await self.stop()
        await self.start()

    # -- Operations ------------------------------------------------------------

    async def execute_now(self, plugin_name: str | None = None) -> int:
        """Run plugin checks immediately. Returns notifications delivered."""
        if not self._running:
            msg = "Service is not running"
            raise RuntimeError(msg)
        return await self.task_scheduler.execute_once_now(plugin_name)

    def toggle_task(self, name: str) -> bool:
        return self.task_scheduler.toggle(name)

    async def toggle_plugin(self, name: str) -> bool:
        """Enable/disable a plugin and rebuild cron tasks. False if unknown."""
        if not await self.plugin_manager.toggle_plugin(name):
            return False
        if self._running:
            await self.task_scheduler.reload()
            await self._connect_event_plugins()
        return True

    async def list_events(
        self, *, status: str | None = None, plugin_name: str | None = None
    ) -> list[dict[str, Any]]:
        events = await self.store.query(status=status, plugin_name=plugin_name)
        return [event.to_dict() for event in events]

    async def get_status(self) -> dict[str, Any]:
        uptime = time.monotonic() - self._started_at if self._running and self._started_at else 0.0
        return {
            "running": self._running,
            "uptime_seconds": round(uptime, 1),
            "plugins": self.plugin_manager.get_plugin_status(),
            "tasks": self.task_scheduler.get_scheduled_tasks(),
            "events": await self.event_scheduler.get_stats(),
            "armed_events": self.event_scheduler.get_scheduled_events(),
        }

    # -- Internal --------------------------------------------------------------

    async def _connect_event_plugins(self) -> None:
        for plugin in self.plugin_manager.get_all_plugins():
            if not isinstance(plugin, EventSchedulingPlugin):
                continue
            if plugin.event_scheduler is self.event_scheduler:
                continue
            try:
                await plugin.set_event_scheduler(self.event_scheduler)
            except Exception:
                logger.exception("Failed to connect event scheduler to plugin %s", plugin.name)

    async def _abort_start(self) -> None:
        await self.task_scheduler.stop()
        try:
            await self.event_scheduler.stop()
        except Exception:
            logger.exception("Event scheduler failed to stop after aborted start")
        await self.plugin_manager.cleanup_plugins()

    async def _send_startup_notification(self) -> None:
        plugins = len(self.plugin_manager.get_enabled_plugins())
        tasks = len(self.task_scheduler.get_scheduled_tasks())
        sent = await self.gateway.send_notification(
            NotificationRequest(
                title="ntfy-fetch Started",
                message=f"Service started with {plugins} plugins and {tasks} scheduled tasks",
                priority="low",
                tags=["startup", "service"],
            )
        )
        if not sent:
            logger.warning("Failed to send startup notification")
