"""Tests for the admin HTTP API."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp.test_utils import TestClient, TestServer

from src.web.server import create_admin_app

TEST_TOKEN = "admin-token-123"


# -- Helpers -----------------------------------------------------------------


def _fake_service(running: bool = True) -> MagicMock:
    service = MagicMock()
    service.running = running
    service.get_status = AsyncMock(return_value={"running": running, "plugins": [], "tasks": []})
    service.list_events = AsyncMock(return_value=[{"id": "e1", "status": "pending"}])
    service.toggle_task = MagicMock(side_effect=lambda name: name == "tide-check")
    service.toggle_plugin = AsyncMock(side_effect=lambda name: name == "tide")
    service.execute_now = AsyncMock(return_value=2)
    service.task_scheduler.get_task.return_value.to_dict.return_value = {
        "name": "tide-check",
        "paused": True,
    }
    service.plugin_manager.get_plugin_status.return_value = [
        {"name": "tide", "enabled": False}
    ]
    service.plugin_manager.get_plugin.side_effect = lambda name: (
        object() if name == "tide" else None
    )
    return service


async def _make_client(service=None, token: str = ""):
    """Create a TestClient for the admin app."""
    app = create_admin_app(service or _fake_service(), token)
    client = TestClient(TestServer(app))
    await client.start_server()
    return client


@pytest.fixture
async def client():
    c = await _make_client()
    yield c
    await c.close()


# -- Read endpoints ----------------------------------------------------------


async def test_health(client) -> None:
    resp = await client.get("/health")
    assert resp.status == 200
    assert (await resp.json()) == {"status": "ok", "running": True}


async def test_status(client) -> None:
    resp = await client.get("/api/status")
    assert resp.status == 200
    assert (await resp.json())["running"] is True


async def test_events_passes_filters() -> None:
    service = _fake_service()
    c = await _make_client(service)
    try:
        resp = await c.get("/api/events", params={"status": "pending", "plugin": "tide"})
        assert resp.status == 200
        data = await resp.json()
        assert data["count"] == 1
        service.list_events.assert_awaited_once_with(status="pending", plugin_name="tide")
    finally:
        await c.close()


async def test_events_bad_status_is_400() -> None:
    service = _fake_service()
    service.list_events.side_effect = ValueError("Unknown event status: queued")
    c = await _make_client(service)
    try:
        resp = await c.get("/api/events", params={"status": "queued"})
        assert resp.status == 400
    finally:
        await c.close()


# -- Toggles -----------------------------------------------------------------


async def test_toggle_task(client) -> None:
    resp = await client.post("/api/tasks/tide-check/toggle")
    assert resp.status == 200
    data = await resp.json()
    assert data["task"]["paused"] is True


async def test_toggle_unknown_task_is_404(client) -> None:
    resp = await client.post("/api/tasks/nope/toggle")
    assert resp.status == 404


async def test_toggle_plugin(client) -> None:
    resp = await client.post("/api/plugins/tide/toggle")
    assert resp.status == 200
    assert (await resp.json())["plugin"] == {"name": "tide", "enabled": False}


async def test_toggle_unknown_plugin_is_404(client) -> None:
    resp = await client.post("/api/plugins/nope/toggle")
    assert resp.status == 404


# -- Execute -----------------------------------------------------------------


async def test_execute_all() -> None:
    service = _fake_service()
    c = await _make_client(service)
    try:
        resp = await c.post("/api/execute")
        assert resp.status == 200
        assert (await resp.json())["delivered"] == 2
        service.execute_now.assert_awaited_once_with(None)
    finally:
        await c.close()


async def test_execute_one_plugin() -> None:
    service = _fake_service()
    c = await _make_client(service)
    try:
        resp = await c.post("/api/execute", json={"plugin": "tide"})
        assert resp.status == 200
        service.execute_now.assert_awaited_once_with("tide")
    finally:
        await c.close()


async def test_execute_unknown_plugin_is_404(client) -> None:
    resp = await client.post("/api/execute", json={"plugin": "nope"})
    assert resp.status == 404


async def test_execute_invalid_json_is_400(client) -> None:
    resp = await client.post(
        "/api/execute", data="{nope", headers={"Content-Type": "application/json"}
    )
    assert resp.status == 400


async def test_execute_when_stopped_is_409() -> None:
    c = await _make_client(_fake_service(running=False))
    try:
        resp = await c.post("/api/execute")
        assert resp.status == 409
    finally:
        await c.close()


# -- Auth --------------------------------------------------------------------


async def test_token_required_when_configured() -> None:
    c = await _make_client(token=TEST_TOKEN)
    try:
        assert (await c.get("/api/status")).status == 401
        assert (await c.get("/api/status", headers={"X-Admin-Token": "wrong"})).status == 401
        resp = await c.get("/api/status", headers={"X-Admin-Token": TEST_TOKEN})
        assert resp.status == 200
    finally:
        await c.close()


async def test_health_is_public_with_token() -> None:
    c = await _make_client(token=TEST_TOKEN)
    try:
        assert (await c.get("/health")).status == 200
    finally:
        await c.close()
