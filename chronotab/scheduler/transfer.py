"""Schedule import/export as JSON strings."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from chronotab.scheduler.models import Schedule, make_schedule_id
from chronotab.scheduler.occurrence import once_anchor, parse_time_of_day

if TYPE_CHECKING:
    from chronotab.scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)


class ScheduleImport(BaseModel):
    """Validated shape of an imported schedule.

    Runtime state (``lastRun``, ``calculatedWhen``) and the old ID are
    ignored: an imported schedule starts with no history.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(min_length=1)
    urls: list[str] = Field(min_length=1)
    time: str = Field(min_length=1)
    repeat: Literal["once", "daily", "weekly"]
    day_of_week: list[int] = Field(default_factory=list, alias="dayOfWeek")

    @model_validator(mode="after")
    def _weekly_needs_days(self) -> ScheduleImport:
        if self.repeat == "weekly" and not self.day_of_week:
            msg = "weekly schedules need at least one dayOfWeek"
            raise ValueError(msg)
        if any(not 1 <= d <= 7 for d in self.day_of_week):
            msg = "dayOfWeek values must be 1 (Monday) to 7 (Sunday)"
            raise ValueError(msg)
        if self.repeat == "once":
            if once_anchor(self.time) is None:
                msg = "once schedules need a full date and time"
                raise ValueError(msg)
        elif parse_time_of_day(self.time) is None:
            msg = f"invalid time of day: {self.time!r}"
            raise ValueError(msg)
        return self

    def to_schedule(self) -> Schedule:
        return Schedule(
            id=make_schedule_id(),
            name=self.name,
            urls=list(self.urls),
            time=self.time,
            repeat=self.repeat,
            day_of_week=list(self.day_of_week) if self.repeat == "weekly" else [],
        )


def parse_schedule(data: Any) -> Schedule | None:
    """Validate one imported schedule dict. Returns None if it is invalid."""
    try:
        return ScheduleImport.model_validate(data).to_schedule()
    except ValidationError as exc:
        logger.warning("Invalid schedule for import: %s", exc.errors(include_url=False))
        return None


async def export_schedule(store: ScheduleStore, schedule_id: str) -> str | None:
    """Serialize one schedule, or None if it does not exist."""
    schedule = await store.get_schedule(schedule_id)
    if schedule is None:
        return None
    return json.dumps(schedule.to_dict())


async def export_all(store: ScheduleStore) -> str:
    """Serialize every schedule as a JSON array."""
    return json.dumps([s.to_dict() for s in await store.list_schedules()])


async def import_schedule(store: ScheduleStore, schedule_json: str) -> Schedule | None:
    """Append one schedule from JSON under a fresh ID. None if it is invalid."""
    try:
        data = json.loads(schedule_json)
    except json.JSONDecodeError:
        logger.warning("Schedule import is not valid JSON")
        return None
    schedule = parse_schedule(data)
    if schedule is None:
        return None
    await store.add_schedule(schedule)
    return schedule


async def import_all(store: ScheduleStore, schedules_json: str) -> list[Schedule] | None:
    """Replace every schedule with the valid entries of a JSON array.

    Invalid entries are skipped.  Returns None if the input is not a JSON
    array, leaving the stored schedules untouched.
    """
    try:
        data = json.loads(schedules_json)
    except json.JSONDecodeError:
        logger.warning("Bulk schedule import is not valid JSON")
        return None
    if not isinstance(data, list):
        logger.warning("Bulk schedule import expected an array, got %s", type(data).__name__)
        return None

    imported = []
    for raw in data:
        schedule = parse_schedule(raw)
        if schedule is None:
            logger.warning("Skipping invalid schedule during bulk import")
            continue
        imported.append(schedule)

    await store.save_schedules(imported)
    logger.info("Imported %d of %d schedule(s)", len(imported), len(data))
    return imported
