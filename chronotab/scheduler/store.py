"""ScheduleStore — typed access to schedules, missed occurrences and tombstones."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, TypeVar

from chronotab.config import settings
from chronotab.scheduler.models import ClearedTombstone, MissedOccurrence, Schedule
from chronotab.store import LOCAL_AREA, SYNC_AREA, KeyValueStore

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Sync area: user-owned configuration.
SCHEDULES_KEY = "schedules"
MISSED_ENABLED_KEY = "chronotab_missed_alarms_enabled"
# Local area: reconciliation state.
MISSED_DATA_KEY = "chronotab_missed_alarms_data"
CLEARED_KEY = "chronotab_cleared_missed_alarms"


def prune_tombstones(
    entries: Iterable[ClearedTombstone],
    now: datetime,
    retention_days: int | None = None,
) -> list[ClearedTombstone]:
    """Drop tombstones cleared at least *retention_days* before *now*."""
    days = settings.tombstone_retention_days if retention_days is None else retention_days
    window = timedelta(days=days)
    return [t for t in entries if now - t.cleared_at < window]


def _parse_entries(raw: Any, parse: Callable[[Any], T], label: str) -> list[T]:
    """Parse a stored list, skipping (and logging) malformed entries."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        logger.warning("Ignoring stored %s: expected a list, got %s", label, type(raw).__name__)
        return []
    parsed = []
    for item in raw:
        try:
            parsed.append(parse(item))
        except (KeyError, TypeError, ValueError, AttributeError):
            logger.warning("Skipping malformed %s entry: %r", label, item)
    return parsed


class ScheduleStore:
    """Reads and writes the four persisted scheduling keys.

    Singleton accessed via ``ScheduleStore.get()``.  Pass explicit stores for
    test isolation.  Every mutating helper re-reads before it writes, since
    another reaction may have changed the data since the caller last looked.
    """

    _instance: ScheduleStore | None = None

    def __init__(
        self,
        sync: KeyValueStore | None = None,
        local: KeyValueStore | None = None,
    ) -> None:
        self.sync = sync or KeyValueStore.for_area(SYNC_AREA)
        self.local = local or KeyValueStore.for_area(LOCAL_AREA)

    @classmethod
    def get(cls) -> ScheduleStore:
        """Return the shared ScheduleStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Schedules -------------------------------------------------------------

    async def list_schedules(self) -> list[Schedule]:
        """Return every stored schedule, skipping malformed entries."""
        result = await self.sync.get(SCHEDULES_KEY)
        return _parse_entries(result.get(SCHEDULES_KEY), Schedule.from_dict, "schedule")

    async def get_schedule(self, schedule_id: str) -> Schedule | None:
        """Fetch a schedule by ID, or None if not found."""
        for schedule in await self.list_schedules():
            if schedule.id == schedule_id:
                return schedule
        return None

    async def save_schedules(self, schedules: list[Schedule]) -> None:
        await self.sync.set({SCHEDULES_KEY: [s.to_dict() for s in schedules]})

    async def update_schedules(
        self,
        mutate: Callable[[list[Schedule]], list[Schedule] | None],
    ) -> list[Schedule] | None:
        """Read the current schedules, apply *mutate*, and write the result.

        *mutate* returns the new list to persist, or None to leave storage
        untouched.  Returns whatever *mutate* returned.
        """
        schedules = await self.list_schedules()
        updated = mutate(schedules)
        if updated is not None:
            await self.save_schedules(updated)
        return updated

    async def add_schedule(self, schedule: Schedule) -> Schedule:
        """Append a schedule. Raises ValueError on a duplicate ID."""

        def _append(schedules: list[Schedule]) -> list[Schedule]:
            if any(s.id == schedule.id for s in schedules):
                msg = f"Schedule '{schedule.id}' already exists"
                raise ValueError(msg)
            return [*schedules, schedule]

        await self.update_schedules(_append)
        logger.info("Added schedule: %s (%s)", schedule.name, schedule.id)
        return schedule

    async def delete_schedule(self, schedule_id: str) -> bool:
        """Remove a schedule. Returns True if it existed."""

        def _drop(schedules: list[Schedule]) -> list[Schedule] | None:
            remaining = [s for s in schedules if s.id != schedule_id]
            return remaining if len(remaining) != len(schedules) else None

        deleted = await self.update_schedules(_drop) is not None
        if deleted:
            logger.info("Deleted schedule: %s", schedule_id)
        return deleted

    # -- Settings --------------------------------------------------------------

    async def missed_check_enabled(self) -> bool:
        """Whether missed-occurrence detection is on (default from settings)."""
        result = await self.sync.get(MISSED_ENABLED_KEY)
        value = result.get(MISSED_ENABLED_KEY)
        if value is None:
            return settings.missed_check_default
        return value is not False

    async def set_missed_check_enabled(self, enabled: bool) -> None:
        await self.sync.set({MISSED_ENABLED_KEY: bool(enabled)})

    async def ensure_defaults(self) -> None:
        """Persist the default enable flag if it has never been set."""
        result = await self.sync.get(MISSED_ENABLED_KEY)
        if MISSED_ENABLED_KEY not in result:
            await self.set_missed_check_enabled(settings.missed_check_default)

    # -- Missed occurrences ----------------------------------------------------

    async def list_missed(self) -> list[MissedOccurrence]:
        """Return the pending missed occurrences, skipping malformed entries."""
        result = await self.local.get(MISSED_DATA_KEY)
        return _parse_entries(
            result.get(MISSED_DATA_KEY), MissedOccurrence.from_dict, "missed occurrence"
        )

    async def save_missed(self, entries: list[MissedOccurrence]) -> None:
        """Persist the pending list, removing the key entirely when empty."""
        if entries:
            await self.local.set({MISSED_DATA_KEY: [m.to_dict() for m in entries]})
        else:
            await self.local.remove(MISSED_DATA_KEY)

    # -- Tombstones ------------------------------------------------------------

    async def list_tombstones(self) -> list[ClearedTombstone]:
        """Return the tombstone log, skipping malformed entries."""
        result = await self.local.get(CLEARED_KEY)
        return _parse_entries(result.get(CLEARED_KEY), ClearedTombstone.from_dict, "tombstone")

    async def save_tombstones(self, entries: list[ClearedTombstone]) -> None:
        await self.local.set({CLEARED_KEY: [t.to_dict() for t in entries]})

    async def append_tombstones(
        self,
        entries: Iterable[ClearedTombstone],
        now: datetime,
    ) -> list[ClearedTombstone]:
        """Add tombstones to the log, pruning expired ones. Returns the new log."""
        log = prune_tombstones([*await self.list_tombstones(), *entries], now)
        await self.save_tombstones(log)
        return log
