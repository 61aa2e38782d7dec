"""Small JSON admin API for status, event listing and task/plugin toggles.

Runs in the service's asyncio event loop using aiohttp's AppRunner/TCPSite.
Disabled unless ADMIN_ENABLED is set; binds to localhost by default.
"""

from __future__ import annotations

import hmac
import logging
from typing import TYPE_CHECKING, Any

from aiohttp import web

if TYPE_CHECKING:
    from src.service import AlertService

logger = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("service")
TOKEN_KEY = web.AppKey("admin_token")

TOKEN_HEADER = "X-Admin-Token"
_PUBLIC_PATHS = frozenset({"/health"})


@web.middleware
async def _require_token(request: web.Request, handler):
    token = request.app[TOKEN_KEY]
    if token and request.path not in _PUBLIC_PATHS:
        supplied = request.headers.get(TOKEN_HEADER, "")
        if not hmac.compare_digest(supplied.encode(), token.encode()):
            logger.warning("Admin request rejected: invalid token (path=%s)", request.path)
            return web.json_response({"error": "unauthorized"}, status=401)
    return await handler(request)


def _service(request: web.Request) -> AlertService:
    return request.app[SERVICE_KEY]


async def _health(request: web.Request) -> web.Response:
    """GET /health — basic liveness check."""
    return web.json_response({"status": "ok", "running": _service(request).running})


async def _status(request: web.Request) -> web.Response:
    """GET /api/status — full service snapshot."""
    return web.json_response(await _service(request).get_status())


async def _events(request: web.Request) -> web.Response:
    """GET /api/events?status=&plugin= — persisted events, earliest first."""
    status = request.query.get("status") or None
    plugin = request.query.get("plugin") or None
    try:
        events = await _service(request).list_events(status=status, plugin_name=plugin)
    except ValueError as exc:
        return web.json_response({"error": str(exc)}, status=400)
    return web.json_response({"events": events, "count": len(events)})


async def _toggle_task(request: web.Request) -> web.Response:
    """POST /api/tasks/{name}/toggle — pause or resume a cron task."""
    service = _service(request)
    name = request.match_info["name"]
    if not service.toggle_task(name):
        return web.json_response({"error": f"unknown task: {name}"}, status=404)
    task = service.task_scheduler.get_task(name)
    return web.json_response({"ok": True, "task": task.to_dict() if task else None})


async def _toggle_plugin(request: web.Request) -> web.Response:
    """POST /api/plugins/{name}/toggle — enable or disable a plugin."""
    service = _service(request)
    name = request.match_info["name"]
    if not await service.toggle_plugin(name):
        return web.json_response({"error": f"unknown plugin: {name}"}, status=404)
    plugin = next(
        (p for p in service.plugin_manager.get_plugin_status() if p["name"] == name),
        None,
    )
    return web.json_response({"ok": True, "plugin": plugin})


async def _execute(request: web.Request) -> web.Response:
    """POST /api/execute — run plugin checks now. Body: ``{"plugin": name}``."""
    service = _service(request)
    body: dict[str, Any] = {}
    if request.can_read_body:
        try:
            body = await request.json()
        except ValueError:
            return web.json_response({"error": "invalid JSON"}, status=400)
        if not isinstance(body, dict):
            return web.json_response({"error": "expected a JSON object"}, status=400)

    plugin = body.get("plugin") or None
    if plugin and service.plugin_manager.get_plugin(plugin) is None:
        return web.json_response({"error": f"unknown plugin: {plugin}"}, status=404)
    if not service.running:
        return web.json_response({"error": "service is not running"}, status=409)

    delivered = await service.execute_now(plugin)
    return web.json_response({"ok": True, "delivered": delivered})


def create_admin_app(service: AlertService, token: str = "") -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application(middlewares=[_require_token])
    app[SERVICE_KEY] = service
    app[TOKEN_KEY] = token
    app.router.add_get("/health", _health)
    app.router.add_get("/api/status", _status)
    app.router.add_get("/api/events", _events)
    app.router.add_post("/api/tasks/{name}/toggle", _toggle_task)
    app.router.add_post("/api/plugins/{name}/toggle", _toggle_plugin)
    app.router.add_post("/api/execute", _execute)
    return app


class AdminServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(
        self,
        service: AlertService,
        *,
        host: str = "127.0.0.1",
        port: int = 8080,
        token: str = "",
    ) -> None:
        self.service = service
        self.host = host
        self.port = port
        self._token = token
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        if not self._token:
            logger.warning("ADMIN_TOKEN empty — admin API is unauthenticated")
        app = create_admin_app(self.service, self._token)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Admin API listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Admin API stopped")
