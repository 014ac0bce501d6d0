"""Missed-occurrence reconciliation — detect runs that never happened, notify once."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from chronotab.notifications.channels import Notification
from chronotab.scheduler.models import MissedOccurrence
from chronotab.scheduler.occurrence import next_daily, next_weekly, once_anchor
from chronotab.scheduler.store import prune_tombstones
from chronotab.store import StorageError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import tzinfo

    from chronotab.notifications.router import NotificationRouter
    from chronotab.scheduler.models import ClearedTombstone, Schedule
    from chronotab.scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

# Every daily or weekly rule fires at least once in any 8-day span, so a
# walk starting further back only revisits occurrences it would discard.
_WALK_WINDOW = timedelta(days=8)

MISSED_NOTIFICATION_ID = "missedAlarmsNotification"


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""

    pending: list[MissedOccurrence] = field(default_factory=list)
    notified: list[MissedOccurrence] = field(default_factory=list)
    notification_id: str | None = None
    skipped: bool = False
    failed: bool = False


def latest_missed(
    schedule: Schedule,
    now: datetime,
    tz: tzinfo | None = None,
) -> datetime | None:
    """The most recent occurrence of *schedule* before *now* with no confirming run."""
    if schedule.is_once:
        anchor = schedule.calculated_when or once_anchor(schedule.time, tz)
        if anchor is None or anchor > now:
            return None
        if schedule.last_run is not None and schedule.last_run >= anchor:
            return None
        return anchor

    if schedule.is_weekly and not schedule.day_of_week:
        return None
    if not (schedule.is_daily or schedule.is_weekly):
        return None

    potential = schedule.last_run or EPOCH
    potential = max(potential, now - _WALK_WINDOW)
    latest: datetime | None = None
    while True:
        if schedule.is_daily:
            candidate = next_daily(schedule.time, potential, tz)
        else:
            candidate = next_weekly(schedule.time, schedule.day_of_week, potential, tz)
        if candidate is None or candidate >= now or candidate <= potential:
            break
        latest = candidate
        potential = candidate
    return latest


def detect_missed(
    schedules: Iterable[Schedule],
    now: datetime,
    tz: tzinfo | None = None,
) -> list[MissedOccurrence]:
    """One entry per schedule that has a missed occurrence (the latest one)."""
    found = []
    for schedule in schedules:
        if not schedule.id:
            continue
        missed_at = latest_missed(schedule, now, tz)
        if missed_at is not None:
            found.append(MissedOccurrence(schedule.id, schedule.name, missed_at))
    return found


def merge_missed(
    detected: Iterable[MissedOccurrence],
    previous: Iterable[MissedOccurrence],
    tombstones: Iterable[ClearedTombstone],
) -> list[MissedOccurrence]:
    """Dedupe *detected*, drop cleared keys, and carry notified flags forward."""
    unique: dict[tuple[str, datetime], MissedOccurrence] = {}
    for entry in detected:
        unique.setdefault(entry.key, entry)

    cleared = {t.key for t in tombstones}
    prior = {m.key: m for m in previous}

    merged = []
    for key, entry in unique.items():
        if key in cleared:
            continue
        earlier = prior.get(key)
        merged.append(
            MissedOccurrence(
                schedule_id=entry.schedule_id,
                schedule_name=entry.schedule_name,
                missed_run_time=entry.missed_run_time,
                has_been_notified=earlier.has_been_notified if earlier else False,
            )
        )
    return merged


class MissedOccurrenceReconciler:
    """Rebuilds the pending missed list from run history on every resume.

    Only one pass runs at a time: a call made while a pass is in flight
    waits for and returns that pass's result.

    Args:
        store: ScheduleStore holding schedules, pending entries and tombstones.
        router: NotificationRouter for the grouped "missed schedules" notice.
        timezone: Wall-clock zone for occurrence math (None = host zone).
    """

    def __init__(
        self,
        store: ScheduleStore,
        router: NotificationRouter,
        timezone: tzinfo | None = None,
    ) -> None:
        self._store = store
        self._router = router
        self._timezone = timezone
        self._inflight: asyncio.Task[ReconcileResult] | None = None

    async def check_missed(self, now: datetime | None = None) -> ReconcileResult:
        """Run a reconciliation pass, or join the one already running."""
        if self._inflight is None or self._inflight.done():
            task = asyncio.create_task(self._run_pass(now or datetime.now().astimezone()))
            self._inflight = task
            task.add_done_callback(self._release)
        else:
            logger.info("Reconciliation already in flight; waiting for it")
        return await asyncio.shield(self._inflight)

    def _release(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _run_pass(self, now: datetime) -> ReconcileResult:
        try:
            if not await self._store.missed_check_enabled():
                logger.info("Missed-occurrence check skipped (disabled)")
                return ReconcileResult(skipped=True)

            schedules = await self._store.list_schedules()
            if not schedules:
                await self._store.save_missed([])
                self._router.clear_notification(MISSED_NOTIFICATION_ID)
                return ReconcileResult()

            detected = detect_missed(schedules, now, self._timezone)

            stored_log = await self._store.list_tombstones()
            tombstones = prune_tombstones(stored_log, now)
            if len(tombstones) != len(stored_log):
                await self._store.save_tombstones(tombstones)
                logger.info("Pruned %d expired tombstone(s)", len(stored_log) - len(tombstones))

            previous = await self._store.list_missed()
            merged = merge_missed(detected, previous, tombstones)

            fresh = [m for m in merged if not m.has_been_notified]
            notification_id = None
            if fresh:
                notification_id = await self._notify(fresh)
                for entry in fresh:
                    entry.has_been_notified = True

            await self._store.save_missed(merged)
            if not merged:
                self._router.clear_notification(MISSED_NOTIFICATION_ID)
        except StorageError:
            logger.exception("Missed-occurrence reconciliation failed; state left unchanged")
            return ReconcileResult(failed=True)

        if merged:
            logger.info("%d missed occurrence(s) pending, %d new", len(merged), len(fresh))
        return ReconcileResult(pending=merged, notified=fresh, notification_id=notification_id)

    async def _notify(self, fresh: list[MissedOccurrence]) -> str | None:
        """Send the single grouped notification for newly detected misses."""
        notification = Notification(
            id=MISSED_NOTIFICATION_ID,
            title="Chronotab: Missed Schedules",
            message=f"You have {len(fresh)} new missed schedule(s). Click to review.",
            buttons=[{"text": "Review Missed Schedules"}],
            priority=1,
        )
        notification_id = await self._router.create_notification(notification)
        if notification_id is None:
            logger.warning("Missed-schedules notification was not delivered")
        return notification_id
