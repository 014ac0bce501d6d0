"""Schedule, MissedOccurrence and ClearedTombstone data models."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

REPEAT_ONCE = "once"
REPEAT_DAILY = "daily"
REPEAT_WEEKLY = "weekly"
REPEAT_KINDS = (REPEAT_ONCE, REPEAT_DAILY, REPEAT_WEEKLY)


def format_instant(value: datetime | None) -> str | None:
    """Serialize an aware datetime to ISO 8601 (None passes through)."""
    return value.isoformat() if value is not None else None


def parse_instant(value: Any) -> datetime | None:
    """Deserialize a persisted instant.

    Accepts ISO 8601 strings and epoch milliseconds (the format older
    exports used).  Naive strings are interpreted in the host's local zone.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000).astimezone()
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def _required_instant(data: dict[str, Any], key: str) -> datetime:
    value = parse_instant(data[key])
    if value is None:
        msg = f"{key} is required"
        raise ValueError(msg)
    return value


@dataclass
class Schedule:
    """A set of resources to open on a recurrence rule.

    Attributes:
        id: Unique identifier, immutable after creation.
        name: Human-readable name.
        urls: Resources to open, in order.
        time: Local date-time string (``YYYY-MM-DDTHH:MM``) or bare ``HH:MM``.
            Only the hour and minute matter for daily and weekly rules.
        repeat: ``"once"``, ``"daily"`` or ``"weekly"``.
        day_of_week: ISO weekdays (Monday=1 .. Sunday=7) for weekly rules.
        last_run: Last confirmed completion.
        calculated_when: Cached fire instant for ``once`` rules.
    """

    id: str
    name: str
    urls: list[str]
    time: str
    repeat: str = REPEAT_DAILY
    day_of_week: list[int] = field(default_factory=list)
    last_run: datetime | None = None
    calculated_when: datetime | None = None

    @property
    def is_once(self) -> bool:
        return self.repeat == REPEAT_ONCE

    @property
    def is_daily(self) -> bool:
        return self.repeat == REPEAT_DAILY

    @property
    def is_weekly(self) -> bool:
        return self.repeat == REPEAT_WEEKLY

    def advance_last_run(self, when: datetime) -> bool:
        """Move ``last_run`` forward to *when*. Returns False if that would regress it."""
        if self.last_run is not None and when <= self.last_run:
            return False
        self.last_run = when
        return True

    # -- Serialization ---------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "urls": list(self.urls),
            "time": self.time,
            "repeat": self.repeat,
        }
        if self.day_of_week:
            data["dayOfWeek"] = sorted(self.day_of_week)
        if self.last_run is not None:
            data["lastRun"] = format_instant(self.last_run)
        if self.calculated_when is not None:
            data["calculatedWhen"] = format_instant(self.calculated_when)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Schedule:
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            urls=list(data.get("urls") or []),
            time=data.get("time", ""),
            repeat=data.get("repeat", REPEAT_DAILY),
            day_of_week=[int(d) for d in data.get("dayOfWeek") or []],
            last_run=parse_instant(data.get("lastRun")),
            calculated_when=parse_instant(data.get("calculatedWhen")),
        )


@dataclass
class MissedOccurrence:
    """An occurrence that should have fired while the process was inactive."""

    schedule_id: str
    schedule_name: str
    missed_run_time: datetime
    has_been_notified: bool = False

    @property
    def key(self) -> tuple[str, datetime]:
        return (self.schedule_id, self.missed_run_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scheduleId": self.schedule_id,
            "scheduleName": self.schedule_name,
            "missedRunTime": format_instant(self.missed_run_time),
            "hasBeenNotified": self.has_been_notified,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MissedOccurrence:
        return cls(
            schedule_id=str(data["scheduleId"]),
            schedule_name=data.get("scheduleName", ""),
            missed_run_time=_required_instant(data, "missedRunTime"),
            has_been_notified=bool(data.get("hasBeenNotified", False)),
        )


@dataclass
class ClearedTombstone:
    """Record of a missed occurrence the user dismissed."""

    schedule_id: str
    missed_run_time: datetime
    cleared_at: datetime

    @property
    def key(self) -> tuple[str, datetime]:
        return (self.schedule_id, self.missed_run_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scheduleId": self.schedule_id,
            "missedRunTime": format_instant(self.missed_run_time),
            "clearedAt": format_instant(self.cleared_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClearedTombstone:
        return cls(
            schedule_id=str(data["scheduleId"]),
            missed_run_time=_required_instant(data, "missedRunTime"),
            cleared_at=_required_instant(data, "clearedAt"),
        )


@dataclass
class RequestResult:
    """Outcome of a UI-facing request.

    Every run/clear request returns one of these; the messaging layer
    serializes it to ``{"success": ..., "message"?: ..., "error"?: ...}``.
    """

    success: bool
    message: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, message: str | None = None) -> RequestResult:
        return cls(success=True, message=message)

    @classmethod
    def fail(cls, error: str) -> RequestResult:
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.message is not None:
            data["message"] = self.message
        if self.error is not None:
            data["error"] = self.error
        return data


def make_schedule_id() -> str:
    """Generate a new schedule ID."""
    return f"schedule_{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}"
