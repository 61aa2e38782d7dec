"""Plugin contract — configuration, schedules, and the BasePlugin ABC."""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, TypeAdapter, model_validator

if TYPE_CHECKING:
    from src.events.scheduler import EventScheduler
    from src.notifications.models import NotificationRequest

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_description(description: str) -> str:
    """``"High Tide  Alert"`` -> ``"high-tide-alert"``."""
    return _WHITESPACE.sub("-", description.strip()).lower()


@dataclass(frozen=True)
class ScheduleConfig:
    """One periodic check a plugin wants run.

    Attributes:
        expression: Five-field cron expression.
        description: Human-readable label, also passed back on firing.
        enabled: Disabled schedules are not turned into tasks.
        id: Stable identifier handed back as ``CheckContext.schedule_id``.
            Defaults to the normalized description.
    """

    expression: str
    description: str
    enabled: bool = True
    id: str = ""

    @property
    def schedule_id(self) -> str:
        return self.id or normalize_description(self.description)


@dataclass(frozen=True)
class CheckContext:
    """Tells ``check_conditions`` which schedule fired."""

    description: str
    schedule_id: str = ""

    @classmethod
    def for_schedule(cls, schedule: ScheduleConfig) -> CheckContext:
        return cls(description=schedule.description, schedule_id=schedule.schedule_id)


MANUAL_CONTEXT = CheckContext(description="manual execution", schedule_id="manual")


class PluginConfig(BaseModel):
    """One entry of the plugins config file."""

    name: str = Field(min_length=1)
    type: str = ""
    enabled: bool = True
    provider: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _default_type(self) -> PluginConfig:
        if not self.type:
            self.type = self.name
        return self


_plugin_configs_adapter = TypeAdapter(list[PluginConfig])


def load_plugin_configs(path: Path | str) -> list[PluginConfig]:
    """Read a JSON array of plugin configs. A missing file means no plugins.

    Raises:
        ValueError: If the file is not valid JSON or fails validation.
    """
    path = Path(path)
    if not path.exists():
        logger.info("No plugin config at %s, running without plugins", path)
        return []
    raw = json.loads(path.read_text(encoding="utf-8"))
    configs = _plugin_configs_adapter.validate_python(raw)
    logger.info("Loaded %d plugin config(s) from %s", len(configs), path)
    return configs


class BasePlugin(ABC):
    """Base class for alert plugins.

    Subclasses declare their cron schedules and evaluate conditions when
    one fires. ``on_initialize``/``on_cleanup`` are optional hooks.
    """

    version = "1.0.0"

    def __init__(self, config: PluginConfig) -> None:
        self.config = config
        self.logger = logging.getLogger(f"src.plugins.{config.name}")

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def settings(self) -> dict[str, Any]:
        """Plugin-specific options from the ``config`` block."""
        return self.config.config

    async def initialize(self) -> None:
        logger.info("Initializing plugin: %s v%s", self.name, self.version)
        await self.on_initialize()

    async def cleanup(self) -> None:
        logger.info("Cleaning up plugin: %s", self.name)
        await self.on_cleanup()

    async def on_initialize(self) -> None:
        pass

    async def on_cleanup(self) -> None:
        pass

    @abstractmethod
    def get_schedules(self) -> list[ScheduleConfig]:
        """Cron schedules this plugin wants to be checked on."""

    @abstractmethod
    async def check_conditions(self, context: CheckContext) -> list[NotificationRequest]:
        """Evaluate conditions and return notifications to send right away."""


class EventSchedulingPlugin(BasePlugin):
    """A plugin that also registers future-dated events.

    The service hands over the event scheduler after it starts; until then
    :attr:`event_scheduler` is None.
    """

    def __init__(self, config: PluginConfig) -> None:
        super().__init__(config)
        self.event_scheduler: EventScheduler | None = None

    async def set_event_scheduler(self, scheduler: EventScheduler) -> None:
        self.event_scheduler = scheduler
        self.logger.info("Event scheduler connected")
        await self.on_event_scheduler_connected()

    async def on_event_scheduler_connected(self) -> None:
        pass
