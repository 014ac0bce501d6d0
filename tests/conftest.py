"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

import pytest

from chronotab.notifications.router import NotificationRouter
from chronotab.scheduler.models import Schedule
from chronotab.scheduler.store import ScheduleStore
from chronotab.store import LOCAL_AREA, SYNC_AREA, KeyValueStore

if TYPE_CHECKING:
    from pathlib import Path

    from chronotab.notifications.channels import Notification

TZ = ZoneInfo("America/Chicago")


def at(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    """An aware instant on the test wall clock."""
    return datetime(year, month, day, hour, minute, tzinfo=TZ)


def make_schedule(
    schedule_id: str = "s1",
    *,
    repeat: str = "daily",
    time: str = "09:00",
    **kwargs,
) -> Schedule:
    defaults = {
        "name": f"Schedule {schedule_id}",
        "urls": ["https://example.com/a", "https://example.com/b"],
    }
    defaults.update(kwargs)
    return Schedule(id=schedule_id, repeat=repeat, time=time, **defaults)


class FakeChannel:
    """Minimal channel implementation for testing."""

    def __init__(self, channel_name: str = "fake", ok: bool = True) -> None:
        self._name = channel_name
        self._ok = ok
        self.sent: list[Notification] = []

    @property
    def name(self) -> str:
        return self._name

    async def send(self, notification: Notification) -> bool:
        self.sent.append(notification)
        return self._ok


class FakeOpener:
    """Records every resource it is asked to open."""

    def __init__(self) -> None:
        self.opened: list[str] = []

    async def open_resource(self, url: str) -> bool:
        self.opened.append(url)
        return True


@pytest.fixture
def sync_kv(tmp_path: Path) -> KeyValueStore:
    return KeyValueStore(db_path=tmp_path / "test.db", area=SYNC_AREA)


@pytest.fixture
def local_kv(tmp_path: Path) -> KeyValueStore:
    return KeyValueStore(db_path=tmp_path / "test.db", area=LOCAL_AREA)


@pytest.fixture
def store(sync_kv: KeyValueStore, local_kv: KeyValueStore) -> ScheduleStore:
    """A ScheduleStore backed by a temp database."""
    return ScheduleStore(sync=sync_kv, local=local_kv)


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def router(channel: FakeChannel) -> NotificationRouter:
    r = NotificationRouter()
    r.register_channel(channel)
    return r


@pytest.fixture
def opener() -> FakeOpener:
    return FakeOpener()
