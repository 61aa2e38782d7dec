"""Cron task scheduler — runs plugin condition checks on their schedules."""

from src.scheduler.engine import TaskScheduler, task_name_for
from src.scheduler.models import ScheduledTask

__all__ = [
    "ScheduledTask",
    "TaskScheduler",
    "task_name_for",
]
