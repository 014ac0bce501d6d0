"""Tests for NotificationRouter."""

import pytest
from conftest import FakeChannel

from chronotab.notifications.channels import Notification
from chronotab.notifications.router import NotificationRouter

# -- Fixtures ------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_router():
    """Reset the singleton before and after each test."""
    NotificationRouter._reset()
    yield
    NotificationRouter._reset()


def _note() -> Notification:
    return Notification(title="Hello", message="World", id="n1")


# -- Registration --------------------------------------------------------------


def test_register_and_list() -> None:
    router = NotificationRouter.get()
    ch = FakeChannel("telegram")
    router.register_channel(ch)
    assert router.list_channels() == ["telegram"]
    assert router.get_channel("telegram") is ch


def test_register_duplicate_raises() -> None:
    router = NotificationRouter.get()
    router.register_channel(FakeChannel("telegram"))
    with pytest.raises(ValueError, match="already registered"):
        router.register_channel(FakeChannel("telegram"))


def test_get_channel_missing_returns_none() -> None:
    router = NotificationRouter.get()
    assert router.get_channel("nonexistent") is None


# -- Default channel -----------------------------------------------------------


def test_set_default_channel() -> None:
    router = NotificationRouter.get()
    router.register_channel(FakeChannel("telegram"))
    router.set_default_channel("telegram")
    assert router.default_channel_name == "telegram"


def test_set_default_unregistered_raises() -> None:
    router = NotificationRouter.get()
    with pytest.raises(KeyError, match="not registered"):
        router.set_default_channel("missing")


# -- create_notification -------------------------------------------------------


async def test_create_uses_default_channel() -> None:
    router = NotificationRouter.get()
    log, tg = FakeChannel("log"), FakeChannel("telegram")
    router.register_channel(log)
    router.register_channel(tg)
    router.set_default_channel("telegram")

    assert await router.create_notification(_note()) == "n1"
    assert tg.sent == [_note()]
    assert log.sent == []


async def test_create_explicit_channel() -> None:
    router = NotificationRouter.get()
    log, tg = FakeChannel("log"), FakeChannel("telegram")
    router.register_channel(log)
    router.register_channel(tg)
    router.set_default_channel("telegram")

    await router.create_notification(_note(), channel="log")
    assert len(log.sent) == 1
    assert tg.sent == []


async def test_create_single_channel_without_default() -> None:
    router = NotificationRouter.get()
    ch = FakeChannel("only")
    router.register_channel(ch)

    assert await router.create_notification(_note()) == "n1"
    assert len(ch.sent) == 1


async def test_create_no_channel_returns_none() -> None:
    router = NotificationRouter.get()
    assert await router.create_notification(_note()) is None


async def test_create_ambiguous_without_default_returns_none() -> None:
    router = NotificationRouter.get()
    router.register_channel(FakeChannel("a"))
    router.register_channel(FakeChannel("b"))
    assert await router.create_notification(_note()) is None


async def test_create_failed_delivery_returns_none() -> None:
    router = NotificationRouter.get()
    router.register_channel(FakeChannel("bad", ok=False))
    assert await router.create_notification(_note()) is None


# -- Active notifications ------------------------------------------------------


async def test_delivered_notification_is_active() -> None:
    router = NotificationRouter.get()
    router.register_channel(FakeChannel("log"))

    await router.create_notification(_note())

    assert router.is_active("n1")
    assert router.active_notifications() == [_note()]


async def test_same_id_replaces_active_notification() -> None:
    router = NotificationRouter.get()
    ch = FakeChannel("log")
    router.register_channel(ch)

    await router.create_notification(_note())
    await router.create_notification(Notification(title="Hello", message="again", id="n1"))

    assert len(ch.sent) == 2
    assert [n.message for n in router.active_notifications()] == ["again"]


async def test_undelivered_notification_is_not_active() -> None:
    router = NotificationRouter.get()
    router.register_channel(FakeChannel("bad", ok=False))

    await router.create_notification(_note())
    assert router.is_active("n1") is False


async def test_clear_notification() -> None:
    router = NotificationRouter.get()
    router.register_channel(FakeChannel("log"))
    await router.create_notification(_note())

    assert router.clear_notification("n1") is True
    assert router.clear_notification("n1") is False
    assert router.active_notifications() == []


# -- Singleton -----------------------------------------------------------------


def test_singleton_same_instance() -> None:
    a = NotificationRouter.get()
    b = NotificationRouter.get()
    assert a is b
