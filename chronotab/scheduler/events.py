"""Event types and the dispatcher that routes them to scheduler components."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from chronotab.scheduler.executor import NOT_FOUND
from chronotab.scheduler.models import RequestResult, parse_instant
from chronotab.scheduler.store import SCHEDULES_KEY
from chronotab.scheduler.transfer import export_all, export_schedule, import_all, import_schedule
from chronotab.store import SYNC_AREA, StorageError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from chronotab.scheduler.engine import TimerRegistrar
    from chronotab.scheduler.executor import RunExecutor
    from chronotab.scheduler.missed import MissedOccurrenceReconciler
    from chronotab.scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)

RESUME_STARTUP = "startup"
RESUME_INSTALL = "install"
RESUME_UPDATE = "update"

# Actions that act on one schedule and so need a scheduleId.
_SCHEDULE_ACTIONS = frozenset({"runMissedOccurrence", "clearMissedOccurrence", "runNow", "addUrl"})


@dataclass(frozen=True)
class TimerFired:
    name: str


@dataclass(frozen=True)
class ProcessResumed:
    reason: str = RESUME_STARTUP


@dataclass(frozen=True)
class StoreChanged:
    keys: tuple[str, ...]
    area: str


@dataclass(frozen=True)
class UserRequest:
    action: str
    payload: dict[str, Any] = field(default_factory=dict)


Event = TimerFired | ProcessResumed | StoreChanged | UserRequest


class EventDispatcher:
    """Routes each event to the component that owns it.

    Every handler returns a ``RequestResult``; nothing is fire-and-forget.

    User request actions:

    - ``runMissedOccurrence``: ``{scheduleId, missedRunTime?}``
    - ``clearMissedOccurrence``: ``{scheduleId, missedRunTime}``
    - ``clearAllMissedOccurrences``: ``{}``
    - ``runNow``: ``{scheduleId}``
    - ``addUrl``: ``{scheduleId, url}``
    - ``exportSchedules``: ``{scheduleId?}``; the message is the JSON export
    - ``importSchedules``: ``{json, replaceAll?}``
    """

    def __init__(
        self,
        store: ScheduleStore,
        registrar: TimerRegistrar,
        reconciler: MissedOccurrenceReconciler,
        executor: RunExecutor,
    ) -> None:
        self._store = store
        self._registrar = registrar
        self._reconciler = reconciler
        self._executor = executor
        self._requests: dict[str, Callable[[dict[str, Any]], Awaitable[RequestResult]]] = {
            "runMissedOccurrence": self._run_missed,
            "clearMissedOccurrence": self._clear_missed,
            "clearAllMissedOccurrences": self._clear_all,
            "runNow": self._run_now,
            "addUrl": self._add_url,
            "exportSchedules": self._export,
            "importSchedules": self._import,
        }

    @property
    def actions(self) -> list[str]:
        return list(self._requests)

    async def dispatch(self, event: Event) -> RequestResult:
        """Handle one event and return its result."""
        if isinstance(event, TimerFired):
            return await self._executor.handle_timer(event.name)
        if isinstance(event, ProcessResumed):
            return await self._on_resume(event)
        if isinstance(event, StoreChanged):
            return await self._on_store_changed(event)
        if isinstance(event, UserRequest):
            return await self._on_request(event)
        msg = f"Unknown event type: {type(event).__name__}"
        raise TypeError(msg)

    # -- Adapters for external callbacks ---------------------------------------

    async def on_timer(self, name: str) -> None:
        """TimerService callback."""
        await self.dispatch(TimerFired(name))

    async def on_store_change(self, keys: list[str], area: str) -> None:
        """KeyValueStore change-feed listener."""
        await self.dispatch(StoreChanged(tuple(keys), area))

    # -- Handlers --------------------------------------------------------------

    async def _on_resume(self, event: ProcessResumed) -> RequestResult:
        logger.info("Process resumed (%s)", event.reason)
        if event.reason in (RESUME_INSTALL, RESUME_UPDATE):
            try:
                await self._store.ensure_defaults()
            except StorageError:
                logger.exception("Could not initialise default settings")
            await self._registrar.register_all()
        result = await self._reconciler.check_missed()
        if result.failed:
            return RequestResult.fail("Missed-occurrence check failed")
        if result.skipped:
            return RequestResult.ok("Missed-occurrence check disabled")
        return RequestResult.ok(f"{len(result.pending)} missed occurrence(s) pending")

    async def _on_store_changed(self, event: StoreChanged) -> RequestResult:
        if event.area == SYNC_AREA and SCHEDULES_KEY in event.keys:
            specs = await self._registrar.register_all()
            return RequestResult.ok(f"{len(specs)} timer(s) registered")
        return RequestResult.ok()

    async def _on_request(self, event: UserRequest) -> RequestResult:
        handler = self._requests.get(event.action)
        if handler is None:
            logger.warning("Unknown request action: %s", event.action)
            return RequestResult.fail(f"Unknown action: {event.action}")
        if event.action in _SCHEDULE_ACTIONS and not event.payload.get("scheduleId"):
            return RequestResult.fail("scheduleId is required")
        try:
            return await handler(event.payload)
        except (TypeError, ValueError) as exc:
            logger.warning("Bad %s request: %s", event.action, exc)
            return RequestResult.fail(str(exc))

    async def _run_missed(self, payload: dict[str, Any]) -> RequestResult:
        return await self._executor.run_missed(
            payload["scheduleId"], parse_instant(payload.get("missedRunTime"))
        )

    async def _clear_missed(self, payload: dict[str, Any]) -> RequestResult:
        missed_run_time = parse_instant(payload.get("missedRunTime"))
        if missed_run_time is None:
            return RequestResult.fail("missedRunTime is required")
        return await self._executor.clear_missed(payload["scheduleId"], missed_run_time)

    async def _clear_all(self, payload: dict[str, Any]) -> RequestResult:
        return await self._executor.clear_all_missed()

    async def _run_now(self, payload: dict[str, Any]) -> RequestResult:
        return await self._executor.run_schedule(payload["scheduleId"])

    async def _add_url(self, payload: dict[str, Any]) -> RequestResult:
        url = payload.get("url")
        if not isinstance(url, str):
            return RequestResult.fail("url is required")
        return await self._executor.add_url(payload["scheduleId"], url)

    async def _export(self, payload: dict[str, Any]) -> RequestResult:
        schedule_id = payload.get("scheduleId")
        try:
            if schedule_id:
                exported = await export_schedule(self._store, schedule_id)
            else:
                exported = await export_all(self._store)
        except StorageError as exc:
            logger.exception("Schedule export failed")
            return RequestResult.fail(str(exc))
        if exported is None:
            return RequestResult.fail(NOT_FOUND)
        return RequestResult.ok(exported)

    async def _import(self, payload: dict[str, Any]) -> RequestResult:
        data = payload.get("json")
        if not isinstance(data, str):
            return RequestResult.fail("json is required")
        try:
            if payload.get("replaceAll"):
                imported = await import_all(self._store, data)
                if imported is None:
                    return RequestResult.fail("Expected a JSON array of schedules")
                return RequestResult.ok(f"Imported {len(imported)} schedule(s).")
            schedule = await import_schedule(self._store, data)
        except StorageError as exc:
            logger.exception("Schedule import failed")
            return RequestResult.fail(str(exc))
        if schedule is None:
            return RequestResult.fail("Invalid schedule")
        return RequestResult.ok(f"Imported schedule {schedule.id}.")
