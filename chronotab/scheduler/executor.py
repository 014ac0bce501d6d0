"""RunExecutor — runs schedules and keeps run history."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from chronotab.actions import is_openable
from chronotab.notifications.channels import Notification
from chronotab.scheduler.engine import resolve_timer_name
from chronotab.scheduler.missed import MISSED_NOTIFICATION_ID
from chronotab.scheduler.models import ClearedTombstone, RequestResult
from chronotab.store import StorageError

if TYPE_CHECKING:
    from chronotab.actions import ResourceOpener
    from chronotab.notifications.router import NotificationRouter
    from chronotab.scheduler.models import MissedOccurrence, Schedule
    from chronotab.scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)

NOT_FOUND = "Schedule not found"


def _now() -> datetime:
    return datetime.now().astimezone()


class RunExecutor:
    """Performs schedule actions and the bookkeeping around them.

    Args:
        store: ScheduleStore for schedules and pending missed occurrences.
        opener: ResourceOpener that opens each URL.
        router: NotificationRouter for "schedule triggered" notices.
    """

    def __init__(
        self,
        store: ScheduleStore,
        opener: ResourceOpener,
        router: NotificationRouter,
    ) -> None:
        self._store = store
        self._opener = opener
        self._router = router

    # -- Running ---------------------------------------------------------------

    async def run_schedule(self, schedule_id: str, now: datetime | None = None) -> RequestResult:
        """Open every URL, record the run, and delete the schedule if it was ``once``."""
        try:
            schedule = await self._store.get_schedule(schedule_id)
        except StorageError as exc:
            logger.exception("Could not load schedule %s", schedule_id)
            return RequestResult.fail(str(exc))
        if schedule is None:
            logger.warning("Schedule not found: %s", schedule_id)
            return RequestResult.fail(NOT_FOUND)

        logger.info(
            "Running schedule '%s' (%s): %d url(s)", schedule.name, schedule_id, len(schedule.urls)
        )
        await self._open_all(schedule)

        ran_at = now or _now()

        def _record(schedules: list[Schedule]) -> list[Schedule]:
            kept = []
            for s in schedules:
                if s.id == schedule_id:
                    if s.is_once:
                        continue
                    s.advance_last_run(ran_at)
                kept.append(s)
            return kept

        try:
            await self._store.update_schedules(_record)
        except StorageError as exc:
            logger.exception("Ran schedule %s but could not record the run", schedule_id)
            return RequestResult.fail(str(exc))

        if schedule.is_once:
            logger.info("Removed one-time schedule after run: %s", schedule_id)
        return RequestResult.ok("Schedule run")

    async def handle_timer(self, name: str, now: datetime | None = None) -> RequestResult:
        """React to a fired timer: notify, then run the owning schedule."""
        try:
            schedules = await self._store.list_schedules()
        except StorageError as exc:
            logger.exception("Timer %s fired but schedules are unreadable", name)
            return RequestResult.fail(str(exc))

        schedule_id = resolve_timer_name(name, (s.id for s in schedules))
        if schedule_id is None:
            logger.warning("Timer %s has no matching schedule", name)
            return RequestResult.fail(NOT_FOUND)

        schedule = next(s for s in schedules if s.id == schedule_id)
        await self._router.create_notification(
            Notification(
                title="Chronotab Schedule Triggered",
                message=f"Opening {len(schedule.urls)} tab(s) for: {schedule.name}",
                priority=2,
            )
        )
        return await self.run_schedule(schedule_id, now=now)

    async def run_missed(
        self,
        schedule_id: str,
        missed_run_time: datetime | None = None,
        now: datetime | None = None,
    ) -> RequestResult:
        """Run a schedule from the missed list and drop its pending entry.

        Without *missed_run_time* every pending entry of the schedule is
        dropped, since the run moves ``last_run`` past all of them.
        """
        result = await self.run_schedule(schedule_id, now=now)
        if not result.success:
            return result

        def _matches(entry: MissedOccurrence) -> bool:
            if entry.schedule_id != schedule_id:
                return False
            return missed_run_time is None or entry.missed_run_time == missed_run_time

        try:
            pending = await self._store.list_missed()
            remaining = [m for m in pending if not _matches(m)]
            if len(remaining) != len(pending):
                await self._save_pending(remaining)
        except StorageError:
            logger.exception("Ran missed schedule %s but could not update the list", schedule_id)
            return RequestResult.ok("Schedule run, but the missed entry could not be removed.")
        return RequestResult.ok("Missed schedule run.")

    # -- Clearing --------------------------------------------------------------

    async def clear_missed(
        self,
        schedule_id: str,
        missed_run_time: datetime,
        now: datetime | None = None,
    ) -> RequestResult:
        """Dismiss one missed occurrence without running it."""
        cleared_at = now or _now()
        found = False
        advanced = False

        def _advance(schedules: list[Schedule]) -> list[Schedule] | None:
            nonlocal found, advanced
            for s in schedules:
                if s.id == schedule_id:
                    found = True
                    advanced = s.advance_last_run(missed_run_time)
                    return schedules if advanced else None
            return None

        try:
            await self._store.update_schedules(_advance)
            if not found:
                logger.warning("clear_missed: schedule %s not found", schedule_id)

            pending = await self._store.list_missed()
            remaining = [m for m in pending if m.key != (schedule_id, missed_run_time)]
            removed = len(remaining) < len(pending)
            if removed:
                await self._save_pending(remaining)
            if removed or found:
                await self._store.append_tombstones(
                    [ClearedTombstone(schedule_id, missed_run_time, cleared_at)], cleared_at
                )
        except StorageError as exc:
            logger.exception("Failed to clear missed occurrence for %s", schedule_id)
            return RequestResult.fail(str(exc))

        if removed:
            return RequestResult.ok("Missed alarm entry cleared and schedule updated.")
        if advanced:
            return RequestResult.ok(
                "Schedule lastRun updated, but the entry was not in the missed list"
                " (it may have been cleared already)."
            )
        if found:
            return RequestResult.ok("Entry already cleared; nothing to update.")
        return RequestResult.fail("Missed alarm entry not found, and schedule not updated.")

    async def clear_all_missed(self, now: datetime | None = None) -> RequestResult:
        """Dismiss every pending missed occurrence."""
        cleared_at = now or _now()
        try:
            pending = await self._store.list_missed()
            if not pending:
                return RequestResult.ok("No missed schedules to clear.")

            def _advance(schedules: list[Schedule]) -> list[Schedule] | None:
                changed = False
                by_id = {s.id: s for s in schedules}
                for entry in pending:
                    schedule = by_id.get(entry.schedule_id)
                    if schedule is None:
                        logger.warning(
                            "clear_all_missed: schedule %s not found (missed %s)",
                            entry.schedule_id,
                            entry.missed_run_time.isoformat(),
                        )
                        continue
                    if schedule.advance_last_run(entry.missed_run_time):
                        changed = True
                return schedules if changed else None

            await self._store.update_schedules(_advance)
            await self._save_pending([])
            await self._store.append_tombstones(
                [ClearedTombstone(m.schedule_id, m.missed_run_time, cleared_at) for m in pending],
                cleared_at,
            )
        except StorageError as exc:
            logger.exception("Failed to clear all missed occurrences")
            return RequestResult.fail(str(exc))
        logger.info("Cleared %d missed occurrence(s)", len(pending))
        return RequestResult.ok("All missed schedules cleared and schedules updated.")

    # -- Editing ---------------------------------------------------------------

    async def add_url(self, schedule_id: str, url: str) -> RequestResult:
        """Append *url* to a schedule unless it is already there."""
        if not is_openable(url):
            return RequestResult.fail(f"Cannot add {url!r} to a schedule.")

        outcome = ""

        def _append(schedules: list[Schedule]) -> list[Schedule] | None:
            nonlocal outcome
            for s in schedules:
                if s.id == schedule_id:
                    if url in s.urls:
                        outcome = "duplicate"
                        return None
                    s.urls.append(url)
                    outcome = "added"
                    return schedules
            return None

        try:
            await self._store.update_schedules(_append)
        except StorageError as exc:
            logger.exception("Failed to add url to schedule %s", schedule_id)
            return RequestResult.fail(str(exc))

        if outcome == "added":
            return RequestResult.ok("Added to schedule.")
        if outcome == "duplicate":
            return RequestResult.ok("This page is already in the selected schedule.")
        return RequestResult.fail(NOT_FOUND)

    # -- Internal --------------------------------------------------------------

    async def _save_pending(self, entries: list[MissedOccurrence]) -> None:
        """Persist the pending list; the grouped notice goes once it is empty."""
        await self._store.save_missed(entries)
        if not entries:
            self._router.clear_notification(MISSED_NOTIFICATION_ID)

    async def _open_all(self, schedule: Schedule) -> None:
        if not schedule.urls:
            logger.warning("Schedule %s has no urls to open", schedule.id)
            return
        for url in schedule.urls:
            if not await self._opener.open_resource(url):
                logger.warning("Failed to open %s for schedule %s", url, schedule.id)
