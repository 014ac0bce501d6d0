"""Local HTTP messaging endpoint for the UI.

Runs in the same asyncio event loop as the timers.  Uses aiohttp's
AppRunner/TCPSite for non-blocking start/stop.  Every request maps onto a
``UserRequest`` event and answers with ``{"success": ..., "message"|"error"}``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from aiohttp import web

from chronotab.config import settings
from chronotab.scheduler.events import EventDispatcher, UserRequest
from chronotab.scheduler.store import ScheduleStore
from chronotab.store import StorageError

if TYPE_CHECKING:
    from chronotab.scheduler.models import RequestResult

logger = logging.getLogger(__name__)

DISPATCHER_KEY = web.AppKey("dispatcher", EventDispatcher)
STORE_KEY = web.AppKey("store", ScheduleStore)

SECRET_HEADER = "X-Chronotab-Secret"


@web.middleware
async def _require_secret(request: web.Request, handler):
    """Reject requests without the shared secret, when one is configured."""
    if settings.server_secret and request.path != "/health":
        if request.headers.get(SECRET_HEADER, "") != settings.server_secret:
            logger.warning("Request rejected: invalid secret (path=%s)", request.path)
            return web.json_response({"success": False, "error": "unauthorized"}, status=401)
    return await handler(request)


async def _json_body(request: web.Request) -> dict[str, Any] | None:
    if not request.can_read_body:
        return {}
    try:
        payload = await request.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def _respond(result: RequestResult) -> web.Response:
    return web.json_response(result.to_dict())


async def _dispatch(request: web.Request, action: str, payload: dict[str, Any]) -> web.Response:
    dispatcher = request.app[DISPATCHER_KEY]
    result = await dispatcher.dispatch(UserRequest(action, payload))
    logger.info("Request %s -> success=%s", action, result.success)
    return _respond(result)


async def _health(request: web.Request) -> web.Response:
    """GET /health — basic liveness check."""
    return web.json_response({"status": "ok"})


async def _list_missed(request: web.Request) -> web.Response:
    """GET /missed — the pending missed occurrences."""
    try:
        entries = await request.app[STORE_KEY].list_missed()
    except StorageError as exc:
        logger.exception("Failed to read missed occurrences")
        return web.json_response({"success": False, "error": str(exc)}, status=503)
    return web.json_response({"success": True, "missed": [m.to_dict() for m in entries]})


async def _run_missed(request: web.Request) -> web.Response:
    """POST /missed/run — ``{scheduleId, missedRunTime?}``."""
    payload = await _json_body(request)
    if payload is None:
        return web.json_response({"success": False, "error": "invalid JSON"}, status=400)
    return await _dispatch(request, "runMissedOccurrence", payload)


async def _clear_missed(request: web.Request) -> web.Response:
    """POST /missed/clear — ``{scheduleId, missedRunTime}``."""
    payload = await _json_body(request)
    if payload is None:
        return web.json_response({"success": False, "error": "invalid JSON"}, status=400)
    return await _dispatch(request, "clearMissedOccurrence", payload)


async def _clear_all_missed(request: web.Request) -> web.Response:
    """POST /missed/clear-all."""
    return await _dispatch(request, "clearAllMissedOccurrences", {})


async def _run_now(request: web.Request) -> web.Response:
    """POST /schedules/{schedule_id}/run."""
    payload = {"scheduleId": request.match_info["schedule_id"]}
    return await _dispatch(request, "runNow", payload)


async def _add_url(request: web.Request) -> web.Response:
    """POST /schedules/{schedule_id}/urls — ``{url}``."""
    payload = await _json_body(request)
    if payload is None:
        return web.json_response({"success": False, "error": "invalid JSON"}, status=400)
    payload = {**payload, "scheduleId": request.match_info["schedule_id"]}
    return await _dispatch(request, "addUrl", payload)


async def _export_schedules(request: web.Request) -> web.Response:
    """GET /schedules/export and /schedules/{schedule_id}/export."""
    schedule_id = request.match_info.get("schedule_id")
    payload = {"scheduleId": schedule_id} if schedule_id else {}
    return await _dispatch(request, "exportSchedules", payload)


async def _import_schedules(request: web.Request) -> web.Response:
    """POST /schedules/import — raw schedule JSON; ``?replace=true`` replaces all."""
    payload = {
        "json": await request.text(),
        "replaceAll": request.query.get("replace", "").lower() in ("1", "true", "yes"),
    }
    return await _dispatch(request, "importSchedules", payload)


def _create_web_app(dispatcher: EventDispatcher, store: ScheduleStore) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application(middlewares=[_require_secret])
    app[DISPATCHER_KEY] = dispatcher
    app[STORE_KEY] = store
    app.router.add_get("/health", _health)
    app.router.add_get("/missed", _list_missed)
    app.router.add_post("/missed/run", _run_missed)
    app.router.add_post("/missed/clear", _clear_missed)
    app.router.add_post("/missed/clear-all", _clear_all_missed)
    app.router.add_post("/schedules/{schedule_id}/run", _run_now)
    app.router.add_post("/schedules/{schedule_id}/urls", _add_url)
    app.router.add_get("/schedules/export", _export_schedules)
    app.router.add_get("/schedules/{schedule_id}/export", _export_schedules)
    app.router.add_post("/schedules/import", _import_schedules)
    return app


class MessagingServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(
        self,
        dispatcher: EventDispatcher,
        store: ScheduleStore,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._store = store
        self.host = host or settings.server_host
        self.port = port if port is not None else settings.server_port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening for UI requests."""
        app = _create_web_app(self._dispatcher, self._store)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Messaging server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Messaging server stopped")
