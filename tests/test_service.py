"""Tests for AlertService — wiring and lifecycle."""

import json
from datetime import timedelta
from pathlib import Path

import pytest

from src.config import Settings
from src.events.models import SENT, ScheduledEvent
from src.events.scheduler import EventScheduler
from src.events.store import DuplicateEventError
from src.notifications.models import NotificationRequest
from src.notifications.ntfy import NtfyGateway
from src.plugins.base import EventSchedulingPlugin, PluginConfig, ScheduleConfig
from src.plugins.manager import PluginManager
from src.plugins.registry import PluginRegistry
from src.scheduler.engine import TaskScheduler
from src.service import AlertService


class _TidePlugin(EventSchedulingPlugin):
    """Registers one future event as soon as the scheduler is connected."""

    async def on_event_scheduler_connected(self) -> None:
        event = ScheduledEvent(
            id="tide-high-1",
            plugin_name=self.name,
            event_type="high-tide-advance",
            scheduled_for=self.settings["due"],
            payload={"title": "High tide in 30 min", "message": "2.1m at 14:05"},
        )
        try:
            await self.event_scheduler.add_event(event)
        except DuplicateEventError:
            pass

    def get_schedules(self) -> list[ScheduleConfig]:
        return [ScheduleConfig("0 6 * * *", "Daily tide report", id="daily")]

    async def check_conditions(self, context):
        return [NotificationRequest(title="Tide report", message="Two highs today")]


@pytest.fixture
def registry() -> PluginRegistry:
    reg = PluginRegistry()
    reg.register("tide", _TidePlugin)
    return reg


@pytest.fixture
async def service(store, gateway, clock, registry):
    configs = [PluginConfig(name="tide", config={"due": clock.now + timedelta(hours=1)})]
    manager = PluginManager(configs, registry)
    svc = AlertService(
        gateway=gateway,
        event_scheduler=EventScheduler(store, gateway, clock=clock),
        plugin_manager=manager,
        task_scheduler=TaskScheduler(manager, gateway, timezone="Pacific/Rarotonga"),
    )
    yield svc
    if svc.running:
        await svc.stop()


# -- Construction --------------------------------------------------------------


def test_from_settings_requires_ntfy() -> None:
    with pytest.raises(ValueError, match="NTFY_URL, NTFY_TOPIC"):
        AlertService.from_settings(Settings())


def test_from_settings_builds_components(tmp_path: Path, registry: PluginRegistry) -> None:
    plugins_path = tmp_path / "plugins.json"
    plugins_path.write_text(json.dumps([{"name": "tide", "enabled": False}]))
    settings = Settings(
        ntfy_url="https://ntfy.example.com",
        ntfy_topic="alerts",
        ntfy_token="tk",
        events_path=tmp_path / "events.json",
        plugins_config_path=plugins_path,
        scheduler_timezone="UTC",
    )

    svc = AlertService.from_settings(settings, registry)

    assert isinstance(svc.gateway, NtfyGateway)
    assert svc.gateway.url == "https://ntfy.example.com/alerts"
    assert svc.store.path == tmp_path / "events.json"
    assert svc.task_scheduler.timezone == "UTC"
    assert [p["name"] for p in svc.plugin_manager.get_plugin_status()] == ["tide"]


def test_from_settings_invalid_plugin_file(tmp_path: Path) -> None:
    plugins_path = tmp_path / "plugins.json"
    plugins_path.write_text("[{")
    settings = Settings(
        ntfy_url="https://ntfy.example.com",
        ntfy_topic="alerts",
        plugins_config_path=plugins_path,
    )
    with pytest.raises(ValueError):
        AlertService.from_settings(settings)


# -- Lifecycle -----------------------------------------------------------------


async def test_start_wires_everything(service: AlertService, store, gateway) -> None:
    await service.start()

    assert service.running is True
    gateway.test_connection.assert_awaited_once()
    assert [t["name"] for t in service.task_scheduler.get_scheduled_tasks()] == [
        "tide-daily-tide-report"
    ]
    plugin = service.plugin_manager.get_plugin("tide")
    assert plugin.event_scheduler is service.event_scheduler
    assert (await store.get("tide-high-1")) is not None

    startup = gateway.send_notification.call_args.args[0]
    assert startup.title == "ntfy-fetch Started"
    assert "1 plugins and 1 scheduled tasks" in startup.message


async def test_start_continues_when_connection_test_fails(service: AlertService, gateway) -> None:
    gateway.test_connection.return_value = False
    await service.start()
    assert service.running is True


async def test_start_twice_is_noop(service: AlertService, gateway) -> None:
    await service.start()
    await service.start()
    gateway.test_connection.assert_awaited_once()


async def test_stop_cleans_up(service: AlertService) -> None:
    await service.start()
    plugin = service.plugin_manager.get_plugin("tide")

    await service.stop()

    assert service.running is False
    assert service.event_scheduler.running is False
    assert service.task_scheduler.running is False
    assert service.plugin_manager.get_all_plugins() == []
    assert plugin.event_scheduler is not None


async def test_start_failure_tears_down(service: AlertService, events_path: Path) -> None:
    events_path.parent.mkdir(parents=True, exist_ok=True)
    events_path.write_text("not json")

    with pytest.raises(Exception, match="Cannot load scheduled events"):
        await service.start()

    assert service.running is False
    assert service.plugin_manager.get_all_plugins() == []


async def test_restart(service: AlertService) -> None:
    await service.start()
    await service.restart()
    assert service.running is True
    assert service.event_scheduler.running is True


# -- Operations ----------------------------------------------------------------


async def test_execute_now(service: AlertService, gateway) -> None:
    await service.start()
    assert await service.execute_now() == 1
    assert await service.execute_now("tide") == 1


async def test_execute_now_requires_running(service: AlertService) -> None:
    with pytest.raises(RuntimeError, match="not running"):
        await service.execute_now()


async def test_toggle_task(service: AlertService) -> None:
    await service.start()
    assert service.toggle_task("tide-daily-tide-report") is True
    assert service.task_scheduler.get_task("tide-daily-tide-report").paused is True
    assert service.toggle_task("nope") is False


async def test_toggle_plugin_reloads_tasks(service: AlertService) -> None:
    await service.start()

    assert await service.toggle_plugin("tide") is True
    assert service.task_scheduler.get_scheduled_tasks() == []

    assert await service.toggle_plugin("tide") is True
    assert len(service.task_scheduler.get_scheduled_tasks()) == 1
    plugin = service.plugin_manager.get_plugin("tide")
    assert plugin.event_scheduler is service.event_scheduler

    assert await service.toggle_plugin("nope") is False


async def test_get_status(service: AlertService, store, clock) -> None:
    await service.start()
    await store.mark_as_sent("tide-high-1")

    status = await service.get_status()

    assert status["running"] is True
    assert status["plugins"][0]["name"] == "tide"
    assert status["tasks"][0]["schedule_id"] == "daily"
    assert status["events"]["sent"] == 1
    assert status["uptime_seconds"] >= 0


async def test_list_events(service: AlertService) -> None:
    await service.start()

    events = await service.list_events(plugin_name="tide")

    assert [e["id"] for e in events] == ["tide-high-1"]
    assert events[0]["status"] == "scheduled"
    assert await service.list_events(status=SENT) == []
