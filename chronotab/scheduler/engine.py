"""TimerRegistrar — reconciles the schedule set against the timer service."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from chronotab.scheduler.occurrence import next_daily, next_weekly, once_anchor
from chronotab.scheduler.timers import TimerSpec
from chronotab.store import StorageError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import tzinfo

    from chronotab.scheduler.models import Schedule
    from chronotab.scheduler.store import ScheduleStore
    from chronotab.scheduler.timers import TimerService

logger = logging.getLogger(__name__)

DAILY_PERIOD_MINUTES = 24 * 60
WEEKLY_PERIOD_MINUTES = 7 * 24 * 60


def timer_name(schedule_id: str, day_of_week: int | None = None) -> str:
    """Timer name for a schedule; weekly rules get one timer per weekday."""
    if day_of_week is None:
        return schedule_id
    return f"{schedule_id}-{day_of_week}"


def resolve_timer_name(name: str, schedule_ids: Iterable[str]) -> str | None:
    """Map a fired timer name back to the schedule that owns it."""
    ids = set(schedule_ids)
    if name in ids:
        return name
    prefix, sep, suffix = name.rpartition("-")
    if sep and suffix.isdigit() and prefix in ids:
        return prefix
    return None


def refresh_calculated_when(schedule: Schedule, now: datetime, tz: tzinfo | None = None) -> bool:
    """Recompute ``calculated_when`` in place. Returns True if it changed.

    Only ``once`` rules carry a value: their anchor, when it is still ahead
    of both *now* and ``last_run``.  A past anchor is cleared, never advanced.
    """
    previous = schedule.calculated_when
    if schedule.is_once:
        anchor = once_anchor(schedule.time, tz)
        if anchor is None or anchor <= now:
            schedule.calculated_when = None
        elif schedule.last_run is not None and schedule.last_run >= anchor:
            schedule.calculated_when = None
        else:
            schedule.calculated_when = anchor
    else:
        schedule.calculated_when = None
    return schedule.calculated_when != previous


def desired_timers(
    schedules: Iterable[Schedule],
    now: datetime,
    tz: tzinfo | None = None,
) -> list[TimerSpec]:
    """The full timer set that should exist for *schedules* at *now*."""
    specs: list[TimerSpec] = []
    for schedule in schedules:
        if schedule.is_once:
            when = schedule.calculated_when
            if when is None or when <= now:
                continue
            if schedule.last_run is not None and schedule.last_run >= when:
                continue
            specs.append(TimerSpec(timer_name(schedule.id), when))
        elif schedule.is_daily:
            when = next_daily(schedule.time, now, tz)
            if when is None:
                logger.warning("Skipping timer for schedule %s: bad time", schedule.id)
                continue
            specs.append(TimerSpec(timer_name(schedule.id), when, DAILY_PERIOD_MINUTES))
        elif schedule.is_weekly:
            if not schedule.day_of_week:
                logger.warning("Skipping weekly schedule %s: no days of week", schedule.id)
                continue
            for dow in sorted(set(schedule.day_of_week)):
                when = next_weekly(schedule.time, [dow], now, tz)
                if when is None:
                    logger.warning(
                        "Skipping timer for schedule %s day %s: bad time or day",
                        schedule.id,
                        dow,
                    )
                    continue
                specs.append(
                    TimerSpec(timer_name(schedule.id, dow), when, WEEKLY_PERIOD_MINUTES)
                )
        else:
            logger.warning(
                "Skipping schedule %s: unknown repeat %r", schedule.id, schedule.repeat
            )
    return specs


class TimerRegistrar:
    """Maps the persisted schedule set onto timers.

    Every call to ``register_all`` clears all timers and recreates the full
    desired set, so repeated calls never accumulate duplicates.  Calls are
    serialized by a lock.

    Args:
        store: ScheduleStore for reading and updating schedules.
        timers: TimerService that owns the live timers.
        timezone: Wall-clock zone for occurrence math (None = host zone).
    """

    def __init__(
        self,
        store: ScheduleStore,
        timers: TimerService,
        timezone: tzinfo | None = None,
    ) -> None:
        self._store = store
        self._timers = timers
        self._timezone = timezone
        self._lock = asyncio.Lock()

    @property
    def timers(self) -> TimerService:
        return self._timers

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Register timers for the stored schedules and start the timer service."""
        await self.register_all()
        await self._timers.start()

    async def stop(self) -> None:
        await self._timers.stop()

    # -- Registration ----------------------------------------------------------

    async def register_all(self, now: datetime | None = None) -> list[TimerSpec]:
        """Refresh cached fire instants and rebuild every timer.

        Returns the timers created.  If the schedules cannot be read, the
        existing timers are left as they are.
        """
        async with self._lock:
            now = now or datetime.now().astimezone()
            refreshed: list[Schedule] = []

            def _refresh(schedules: list[Schedule]) -> list[Schedule] | None:
                changed = False
                for schedule in schedules:
                    if refresh_calculated_when(schedule, now, self._timezone):
                        changed = True
                refreshed.extend(schedules)
                return schedules if changed else None

            try:
                updated = await self._store.update_schedules(_refresh)
            except StorageError:
                if not refreshed:
                    logger.exception("Timer registration skipped: schedules unreadable")
                    return []
                logger.exception("Failed to persist recalculated one-time instants")
                updated = None

            if updated is not None:
                logger.info("Persisted recalculated one-time instants")

            self._timers.clear_all()
            specs = desired_timers(refreshed, now, self._timezone)
            for spec in specs:
                self._timers.create(spec)
            logger.info(
                "Registered %d timer(s) for %d schedule(s)", len(specs), len(refreshed)
            )
            return specs
