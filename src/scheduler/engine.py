"""TaskScheduler — cron jobs that run plugin condition checks."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.plugins.base import MANUAL_CONTEXT, CheckContext, normalize_description
from src.scheduler.models import CUSTOM_PLUGIN, ScheduledTask

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from src.notifications.channels import NotificationGateway
    from src.plugins.base import ScheduleConfig
    from src.plugins.manager import PluginManager

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Pacific/Rarotonga"


def task_name_for(plugin_name: str, schedule: ScheduleConfig) -> str:
    return f"{plugin_name}-{normalize_description(schedule.description)}"


# Crontab weekday numbers: 0 and 7 are both Sunday.
_CRONTAB_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _crontab_day_of_week(field: str) -> str:
    """Rewrite a crontab weekday field using APScheduler weekday names.

    APScheduler numbers weekdays from Monday (0), so numeric values and
    ranges are expanded to names. Named values pass through unchanged.
    """
    if field == "*":
        return field
    names: list[str] = []
    for part in field.split(","):
        spec, slash, step_text = part.partition("/")
        if spec == "*":
            first, last = 0, 6
        elif spec.replace("-", "").isdigit():
            first_text, _, last_text = spec.partition("-")
            first = int(first_text)
            last = int(last_text) if last_text else (6 if slash else first)
        else:
            names.append(part)
            continue
        step = int(step_text) if slash else 1
        if not 0 <= first <= last <= 7 or step < 1:
            msg = f"Invalid day-of-week value {part!r}"
            raise ValueError(msg)
        for value in range(first, last + 1, step):
            name = _CRONTAB_WEEKDAYS[value % 7]
            if name not in names:
                names.append(name)
    return ",".join(names)


def crontab_trigger(expression: str, timezone: str) -> CronTrigger:
    """Build a CronTrigger from a standard 5-field crontab expression.

    Raises:
        ValueError: If the expression is malformed.
    """
    values = expression.split()
    if len(values) != 5:
        msg = f"Wrong number of fields; got {len(values)}, expected 5"
        raise ValueError(msg)
    minute, hour, day, month, day_of_week = values
    return CronTrigger(
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=_crontab_day_of_week(day_of_week),
        timezone=timezone,
    )


class TaskScheduler:
    """Maps every enabled plugin schedule to an APScheduler cron job.

    Args:
        plugin_manager: Source of the plugins to schedule.
        gateway: Where notifications returned by plugins are sent.
        timezone: IANA timezone the cron expressions are interpreted in.
    """

    def __init__(
        self,
        plugin_manager: PluginManager,
        gateway: NotificationGateway,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> None:
        self._plugin_manager = plugin_manager
        self._gateway = gateway
        self._timezone = timezone
        self._scheduler: AsyncIOScheduler | None = None
        self._tasks: dict[str, ScheduledTask] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def timezone(self) -> str:
        return self._timezone

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Create one job per enabled plugin schedule and start the scheduler."""
        if self._running:
            return
        self._ensure_scheduler()
        self._schedule_plugin_tasks()
        self._scheduler.start()
        self._running = True
        logger.info(
            "Task scheduler started with %d task(s) (tz=%s)",
            len(self._tasks),
            self._timezone,
        )

    async def stop(self) -> None:
        """Shut down the scheduler and forget every task."""
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None
        self._tasks.clear()
        if self._running:
            self._running = False
            logger.info("Task scheduler stopped")

    async def restart(self) -> None:
        await self.stop()
        await self.start()

    async def reload(self) -> None:
        """Rebuild plugin tasks from the current plugin list.

        Custom schedules are kept.
        """
        self._ensure_scheduler()
        for name in [n for n, t in self._tasks.items() if not t.is_custom]:
            self._remove_job(name)
            del self._tasks[name]
        self._schedule_plugin_tasks()
        logger.info("Reloaded task scheduler: %d task(s)", len(self._tasks))

    # -- Task control ----------------------------------------------------------

    def pause(self, task_name: str) -> bool:
        task = self._tasks.get(task_name)
        if task is None:
            return False
        self._scheduler.pause_job(task_name)
        task.paused = True
        logger.info("Paused task: %s", task_name)
        return True

    def resume(self, task_name: str) -> bool:
        task = self._tasks.get(task_name)
        if task is None:
            return False
        self._scheduler.resume_job(task_name)
        task.paused = False
        logger.info("Resumed task: %s", task_name)
        return True

    def toggle(self, task_name: str) -> bool:
        """Pause a running task or resume a paused one. False if unknown."""
        task = self._tasks.get(task_name)
        if task is None:
            return False
        return self.resume(task_name) if task.paused else self.pause(task_name)

    async def execute_once_now(self, plugin_name: str | None = None) -> int:
        """Run checks immediately for one plugin or all enabled ones.

        Returns the number of notifications delivered.
        """
        if plugin_name:
            plugin = self._plugin_manager.get_plugin(plugin_name)
            if plugin is None:
                logger.warning("Cannot execute unknown plugin: %s", plugin_name)
                return 0
            plugins = [plugin]
        else:
            plugins = self._plugin_manager.get_enabled_plugins()

        logger.info("Executing immediate check for %d plugin(s)", len(plugins))
        delivered = 0
        for plugin in plugins:
            delivered += await self._execute_plugin_task(plugin.name, MANUAL_CONTEXT)
        return delivered

    # -- Custom schedules ------------------------------------------------------

    def add_custom_schedule(
        self,
        name: str,
        expression: str,
        description: str,
        callback: Callable[[], Awaitable[None]],
    ) -> ScheduledTask:
        """Schedule an ad-hoc coroutine not owned by any plugin.

        Raises:
            ValueError: If the name is taken or the expression is invalid.
        """
        if name in self._tasks:
            msg = f"Task {name!r} already exists"
            raise ValueError(msg)
        try:
            trigger = crontab_trigger(expression, self._timezone)
        except ValueError as exc:
            msg = f"Invalid cron expression {expression!r}: {exc}"
            raise ValueError(msg) from exc

        self._ensure_scheduler()
        job = self._scheduler.add_job(
            self._run_custom,
            trigger=trigger,
            id=name,
            name=name,
            args=[name, callback],
            misfire_grace_time=None,
            replace_existing=True,
        )
        task = ScheduledTask(
            name=name,
            plugin_name=CUSTOM_PLUGIN,
            expression=expression,
            description=description,
            schedule_id=name,
            job=job,
        )
        self._tasks[name] = task
        logger.info("Added custom scheduled task: %s (%s)", name, expression)
        return task

    def remove_scheduled_task(self, name: str) -> bool:
        if self._tasks.pop(name, None) is None:
            return False
        self._remove_job(name)
        logger.info("Removed scheduled task: %s", name)
        return True

    # -- Queries ---------------------------------------------------------------

    def get_task(self, name: str) -> ScheduledTask | None:
        return self._tasks.get(name)

    def get_scheduled_tasks(self) -> list[dict]:
        return [task.to_dict() for task in self._tasks.values()]

    # -- Internal --------------------------------------------------------------

    def _ensure_scheduler(self) -> None:
        # A shut-down AsyncIOScheduler can't be restarted cleanly; use a new one.
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(timezone=self._timezone)

    def _schedule_plugin_tasks(self) -> None:
        for plugin in self._plugin_manager.get_enabled_plugins():
            try:
                schedules = plugin.get_schedules()
            except Exception:
                logger.exception("Failed to read schedules for plugin %s", plugin.name)
                continue
            for schedule in schedules:
                if not schedule.enabled:
                    logger.debug(
                        "Skipping disabled schedule %r for plugin %s",
                        schedule.description,
                        plugin.name,
                    )
                    continue
                self._schedule_task(plugin.name, schedule)

    def _schedule_task(self, plugin_name: str, schedule: ScheduleConfig) -> ScheduledTask | None:
        name = task_name_for(plugin_name, schedule)
        if name in self._tasks:
            logger.warning("Task %s already scheduled, skipping", name)
            return None

        try:
            trigger = crontab_trigger(schedule.expression, self._timezone)
        except ValueError as exc:
            logger.error("Invalid cron expression for %s: %r (%s)", name, schedule.expression, exc)
            return None

        job = self._scheduler.add_job(
            self._execute_plugin_task,
            trigger=trigger,
            id=name,
            name=name,
            args=[plugin_name, CheckContext.for_schedule(schedule)],
            misfire_grace_time=None,
            replace_existing=True,
        )
        task = ScheduledTask(
            name=name,
            plugin_name=plugin_name,
            expression=schedule.expression,
            description=schedule.description,
            schedule_id=schedule.schedule_id,
            job=job,
        )
        self._tasks[name] = task
        logger.info("Scheduled task: %s with expression %r", name, schedule.expression)
        return task

    def _remove_job(self, name: str) -> None:
        if self._scheduler is None:
            return
        try:
            self._scheduler.remove_job(name)
        except JobLookupError:
            logger.debug("Job %s not found in scheduler (may already be removed)", name)

    async def _execute_plugin_task(self, plugin_name: str, context: CheckContext) -> int:
        """Run one plugin check and send what it returns. Never raises."""
        start = time.monotonic()
        plugin = self._plugin_manager.get_plugin(plugin_name)
        if plugin is None:
            logger.error("Plugin %s not found for task execution", plugin_name)
            return 0

        try:
            notifications = await plugin.check_conditions(context)
            if not notifications:
                logger.debug("Plugin %s generated no notifications", plugin_name)
                return 0

            logger.info(
                "Plugin %s generated %d notification(s)", plugin_name, len(notifications)
            )
            sent = await self._gateway.send_bulk_notifications(notifications)
            if sent != len(notifications):
                logger.warning(
                    "Only sent %d/%d notifications for plugin %s",
                    sent,
                    len(notifications),
                    plugin_name,
                )
            return sent
        except Exception:
            logger.exception(
                "Error executing %r for plugin %s", context.description, plugin_name
            )
            return 0
        finally:
            logger.debug(
                "Task %r for %s finished in %.2fs",
                context.description,
                plugin_name,
                time.monotonic() - start,
            )

    async def _run_custom(self, name: str, callback: Callable[[], Awaitable[None]]) -> None:
        try:
            logger.debug("Executing custom task: %s", name)
            await callback()
        except Exception:
            logger.exception("Error executing custom task %s", name)
