"""ScheduledTask data model."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

CUSTOM_PLUGIN = "custom"


@dataclass
class ScheduledTask:
    """A cron job in the live scheduler. Never persisted.

    Attributes:
        name: ``{plugin}-{normalized description}`` or a custom name.
        plugin_name: Owning plugin, ``"custom"`` for ad-hoc schedules.
        expression: Five-field cron expression.
        description: Schedule description passed to the plugin on firing.
        schedule_id: Stable schedule identifier passed alongside it.
        paused: Whether the job is paused.
        job: The APScheduler job backing this task.
    """

    name: str
    plugin_name: str
    expression: str
    description: str = ""
    schedule_id: str = ""
    paused: bool = False
    job: Any = None

    @property
    def is_custom(self) -> bool:
        return self.plugin_name == CUSTOM_PLUGIN

    @property
    def next_run_time(self):
        # Missing until the scheduler has started, None while paused.
        return getattr(self.job, "next_run_time", None) if self.job else None

    def to_dict(self) -> dict[str, Any]:
        next_run = self.next_run_time
        return {
            "name": self.name,
            "plugin_name": self.plugin_name,
            "expression": self.expression,
            "description": self.description,
            "schedule_id": self.schedule_id,
            "paused": self.paused,
            "next_run": next_run.isoformat() if next_run else None,
        }
