"""Tests for RunExecutor — running schedules and dismissing missed ones."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from conftest import FakeChannel, FakeOpener, at, make_schedule

from chronotab.notifications.channels import Notification
from chronotab.notifications.router import NotificationRouter
from chronotab.scheduler.executor import NOT_FOUND, RunExecutor
from chronotab.scheduler.missed import MISSED_NOTIFICATION_ID
from chronotab.scheduler.models import ClearedTombstone, MissedOccurrence
from chronotab.scheduler.store import MISSED_DATA_KEY, ScheduleStore, prune_tombstones
from chronotab.store import StorageError

NOW = at(2025, 6, 3, 14)


@pytest.fixture
def executor(
    store: ScheduleStore, opener: FakeOpener, router: NotificationRouter
) -> RunExecutor:
    return RunExecutor(store, opener, router)


# -- run_schedule --------------------------------------------------------------


async def test_run_opens_urls_and_records_run(
    executor: RunExecutor, store: ScheduleStore, opener: FakeOpener
) -> None:
    await store.add_schedule(make_schedule("a"))

    result = await executor.run_schedule("a", now=NOW)

    assert result.success is True
    assert opener.opened == ["https://example.com/a", "https://example.com/b"]
    assert (await store.get_schedule("a")).last_run == NOW


async def test_run_never_moves_last_run_backwards(
    executor: RunExecutor, store: ScheduleStore
) -> None:
    await store.add_schedule(make_schedule("a", last_run=NOW))

    await executor.run_schedule("a", now=NOW - timedelta(hours=1))

    assert (await store.get_schedule("a")).last_run == NOW


async def test_run_once_deletes_schedule(
    executor: RunExecutor, store: ScheduleStore, opener: FakeOpener
) -> None:
    await store.add_schedule(make_schedule("o", repeat="once", time="2025-06-03T09:00"))
    await store.add_schedule(make_schedule("keep"))

    result = await executor.run_schedule("o", now=NOW)

    assert result.success is True
    assert len(opener.opened) == 2
    assert [s.id for s in await store.list_schedules()] == ["keep"]


async def test_run_unknown_schedule(executor: RunExecutor, opener: FakeOpener) -> None:
    result = await executor.run_schedule("nope", now=NOW)

    assert result.success is False
    assert result.error == NOT_FOUND
    assert opener.opened == []


async def test_run_storage_error(executor: RunExecutor, store: ScheduleStore) -> None:
    with patch.object(store, "list_schedules", side_effect=StorageError("locked")):
        result = await executor.run_schedule("a", now=NOW)

    assert result.success is False
    assert "locked" in result.error


# -- handle_timer --------------------------------------------------------------


async def test_timer_fire_notifies_and_runs(
    executor: RunExecutor, store: ScheduleStore, opener: FakeOpener, channel: FakeChannel
) -> None:
    await store.add_schedule(make_schedule("a"))

    result = await executor.handle_timer("a", now=NOW)

    assert result.success is True
    assert len(channel.sent) == 1
    assert channel.sent[0].title == "Chronotab Schedule Triggered"
    assert "2 tab(s)" in channel.sent[0].message
    assert len(opener.opened) == 2


async def test_weekly_timer_name_resolves_to_schedule(
    executor: RunExecutor, store: ScheduleStore
) -> None:
    await store.add_schedule(make_schedule("w", repeat="weekly", day_of_week=[2]))

    result = await executor.handle_timer("w-2", now=NOW)

    assert result.success is True
    assert (await store.get_schedule("w")).last_run == NOW


async def test_timer_for_deleted_schedule(
    executor: RunExecutor, opener: FakeOpener, channel: FakeChannel
) -> None:
    result = await executor.handle_timer("gone-3", now=NOW)

    assert result.success is False
    assert channel.sent == []
    assert opener.opened == []


# -- run_missed ----------------------------------------------------------------


async def test_run_missed_removes_matching_entry(
    executor: RunExecutor, store: ScheduleStore
) -> None:
    await store.add_schedule(make_schedule("a"))
    await store.add_schedule(make_schedule("b"))
    await store.save_missed(
        [
            MissedOccurrence("a", "A", at(2025, 6, 3, 9), True),
            MissedOccurrence("b", "B", at(2025, 6, 3, 9), True),
        ]
    )

    result = await executor.run_missed("a", at(2025, 6, 3, 9), now=NOW)

    assert result.success is True
    assert [m.schedule_id for m in await store.list_missed()] == ["b"]
    assert (await store.get_schedule("a")).last_run == NOW


async def test_run_missed_without_time_removes_all_for_schedule(
    executor: RunExecutor, store: ScheduleStore
) -> None:
    await store.add_schedule(make_schedule("a"))
    await store.save_missed(
        [
            MissedOccurrence("a", "A", at(2025, 6, 2, 9), True),
            MissedOccurrence("a", "A", at(2025, 6, 3, 9), True),
        ]
    )

    await executor.run_missed("a", now=NOW)

    assert await store.list_missed() == []


async def test_run_missed_unknown_schedule_keeps_entry(
    executor: RunExecutor, store: ScheduleStore
) -> None:
    entry = MissedOccurrence("gone", "Gone", at(2025, 6, 3, 9), True)
    await store.save_missed([entry])

    result = await executor.run_missed("gone", entry.missed_run_time, now=NOW)

    assert result.success is False
    assert await store.list_missed() == [entry]


# -- clear_missed --------------------------------------------------------------


async def test_clear_missed_updates_state_and_tombstones(
    executor: RunExecutor, store: ScheduleStore, opener: FakeOpener
) -> None:
    t = at(2025, 6, 3, 9)
    await store.add_schedule(make_schedule("a", last_run=at(2025, 6, 1, 9)))
    await store.save_missed([MissedOccurrence("a", "A", t, True)])

    result = await executor.clear_missed("a", t, now=NOW)

    assert result.success is True
    assert result.message == "Missed alarm entry cleared and schedule updated."
    assert (await store.get_schedule("a")).last_run == t
    assert await store.list_missed() == []
    assert await store.list_tombstones() == [ClearedTombstone("a", t, NOW)]
    assert opener.opened == []

    # The tombstone outlives 29 days but not 30.
    tombs = await store.list_tombstones()
    assert prune_tombstones(tombs, NOW + timedelta(days=29)) == tombs
    assert prune_tombstones(tombs, NOW + timedelta(days=30)) == []


async def test_clear_missed_does_not_regress_last_run(
    executor: RunExecutor, store: ScheduleStore
) -> None:
    await store.add_schedule(make_schedule("a", last_run=NOW))
    await store.save_missed([MissedOccurrence("a", "A", at(2025, 6, 2, 9), True)])

    result = await executor.clear_missed("a", at(2025, 6, 2, 9), now=NOW)

    assert result.success is True
    assert (await store.get_schedule("a")).last_run == NOW
    assert await store.list_missed() == []


async def test_clear_missed_entry_already_gone(
    executor: RunExecutor, store: ScheduleStore
) -> None:
    t = at(2025, 6, 3, 9)
    await store.add_schedule(make_schedule("a", last_run=at(2025, 6, 1, 9)))

    result = await executor.clear_missed("a", t, now=NOW)

    assert result.success is True
    assert "not in the missed list" in result.message
    assert (await store.get_schedule("a")).last_run == t
    assert len(await store.list_tombstones()) == 1


async def test_clear_missed_nothing_to_update(
    executor: RunExecutor, store: ScheduleStore
) -> None:
    await store.add_schedule(make_schedule("a", last_run=NOW))

    result = await executor.clear_missed("a", at(2025, 6, 3, 9), now=NOW)

    assert result.success is True
    assert result.message == "Entry already cleared; nothing to update."


async def test_clear_missed_unknown(executor: RunExecutor, store: ScheduleStore) -> None:
    result = await executor.clear_missed("nope", at(2025, 6, 3, 9), now=NOW)

    assert result.success is False
    assert await store.list_tombstones() == []


async def test_clear_missed_for_deleted_schedule_still_removes_entry(
    executor: RunExecutor, store: ScheduleStore
) -> None:
    t = at(2025, 6, 3, 9)
    await store.save_missed([MissedOccurrence("gone", "Gone", t, True)])

    result = await executor.clear_missed("gone", t, now=NOW)

    assert result.success is True
    assert await store.list_missed() == []
    assert len(await store.list_tombstones()) == 1


# -- clear_all_missed ----------------------------------------------------------


async def test_clear_all_missed(executor: RunExecutor, store: ScheduleStore) -> None:
    await store.add_schedule(make_schedule("a", last_run=at(2025, 6, 1, 9)))
    await store.add_schedule(make_schedule("b", last_run=at(2025, 6, 1, 9)))
    await store.save_missed(
        [
            MissedOccurrence("a", "A", at(2025, 6, 3, 9), True),
            MissedOccurrence("b", "B", at(2025, 6, 2, 9), True),
            MissedOccurrence("gone", "Gone", at(2025, 6, 2, 9), True),
        ]
    )

    result = await executor.clear_all_missed(now=NOW)

    assert result.success is True
    assert await store.list_missed() == []
    assert (await store.get_schedule("a")).last_run == at(2025, 6, 3, 9)
    assert (await store.get_schedule("b")).last_run == at(2025, 6, 2, 9)
    assert len(await store.list_tombstones()) == 3


async def test_clear_all_missed_when_empty(executor: RunExecutor, store: ScheduleStore) -> None:
    result = await executor.clear_all_missed(now=NOW)

    assert result.success is True
    assert result.message == "No missed schedules to clear."
    assert await store.list_tombstones() == []


async def test_clear_all_missed_skips_malformed_entries(
    executor: RunExecutor, store: ScheduleStore
) -> None:
    t = at(2025, 6, 3, 9)
    await store.add_schedule(make_schedule("a", last_run=at(2025, 6, 1, 9)))
    await store.local.set(
        {MISSED_DATA_KEY: [{"scheduleName": "x"}, MissedOccurrence("a", "A", t, True).to_dict()]}
    )

    result = await executor.clear_all_missed(now=NOW)

    assert result.success is True
    assert await store.list_missed() == []
    assert (await store.get_schedule("a")).last_run == t


# -- add_url -------------------------------------------------------------------


async def test_add_url(executor: RunExecutor, store: ScheduleStore) -> None:
    await store.add_schedule(make_schedule("a"))

    result = await executor.add_url("a", "https://example.com/c")

    assert result.message == "Added to schedule."
    assert (await store.get_schedule("a")).urls[-1] == "https://example.com/c"


async def test_add_url_duplicate(executor: RunExecutor, store: ScheduleStore) -> None:
    await store.add_schedule(make_schedule("a"))

    result = await executor.add_url("a", "https://example.com/a")

    assert result.success is True
    assert result.message == "This page is already in the selected schedule."
    assert len((await store.get_schedule("a")).urls) == 2


@pytest.mark.parametrize("url", ["chrome://settings", "about:blank", "  "])
async def test_add_url_rejects_browser_pages(
    executor: RunExecutor, store: ScheduleStore, url: str
) -> None:
    await store.add_schedule(make_schedule("a"))

    result = await executor.add_url("a", url)

    assert result.success is False
    assert len((await store.get_schedule("a")).urls) == 2


async def test_add_url_unknown_schedule(executor: RunExecutor) -> None:
    result = await executor.add_url("nope", "https://example.com/c")
    assert result.error == NOT_FOUND


async def test_clearing_last_entry_dismisses_notice(
    executor: RunExecutor, store: ScheduleStore, router: NotificationRouter
) -> None:
    t = at(2025, 6, 3, 9)
    await store.add_schedule(make_schedule("a"))
    await store.save_missed([MissedOccurrence("a", "A", t, True)])
    await router.create_notification(
        Notification(title="Missed", message="1", id=MISSED_NOTIFICATION_ID)
    )

    await executor.clear_missed("a", t, now=NOW)

    assert router.is_active(MISSED_NOTIFICATION_ID) is False


async def test_notice_kept_while_entries_remain(
    executor: RunExecutor, store: ScheduleStore, router: NotificationRouter
) -> None:
    await store.add_schedule(make_schedule("a"))
    await store.add_schedule(make_schedule("b"))
    await store.save_missed(
        [
            MissedOccurrence("a", "A", at(2025, 6, 3, 9), True),
            MissedOccurrence("b", "B", at(2025, 6, 3, 9), True),
        ]
    )
    await router.create_notification(
        Notification(title="Missed", message="2", id=MISSED_NOTIFICATION_ID)
    )

    await executor.run_missed("a", now=NOW)

    assert router.is_active(MISSED_NOTIFICATION_ID) is True
