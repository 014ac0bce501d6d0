"""Tests for notification channels and protocol conformance."""

from unittest.mock import AsyncMock

from telegram import InlineKeyboardMarkup

from chronotab.notifications.channels import Notification, NotificationChannel
from chronotab.notifications.log_channel import LogChannel
from chronotab.notifications.telegram_channel import TelegramChannel

# -- Helpers -------------------------------------------------------------------


def _make_mock_bot() -> AsyncMock:
    """Create a mock telegram.Bot."""
    bot = AsyncMock()
    bot.send_message = AsyncMock()
    return bot


# -- Notification --------------------------------------------------------------


def test_notification_generates_id() -> None:
    a = Notification(title="t", message="m")
    b = Notification(title="t", message="m")
    assert a.id
    assert a.id != b.id


def test_notification_keeps_explicit_id() -> None:
    assert Notification(title="t", message="m", id="fixed").id == "fixed"


def test_notification_text() -> None:
    assert Notification(title="Title", message="Body").text == "Title\nBody"
    assert Notification(title="", message="Body").text == "Body"


# -- Protocol conformance ------------------------------------------------------


def test_channels_satisfy_protocol() -> None:
    assert isinstance(LogChannel(), NotificationChannel)
    assert isinstance(TelegramChannel(_make_mock_bot(), "1"), NotificationChannel)


def test_names() -> None:
    assert LogChannel().name == "log"
    assert TelegramChannel(_make_mock_bot(), "1").name == "telegram"


# -- LogChannel ----------------------------------------------------------------


async def test_log_channel_logs(caplog) -> None:
    caplog.set_level("INFO")
    ok = await LogChannel().send(Notification(title="Hi", message="there", id="n1"))

    assert ok is True
    assert "[notification n1] Hi: there" in caplog.text


# -- TelegramChannel -----------------------------------------------------------


async def test_telegram_send_calls_bot() -> None:
    bot = _make_mock_bot()
    ch = TelegramChannel(bot, "12345")

    ok = await ch.send(Notification(title="Hi", message="there"))

    assert ok is True
    bot.send_message.assert_awaited_once_with(
        chat_id=12345, text="*Hi*\nthere", parse_mode="Markdown", reply_markup=None
    )


async def test_telegram_url_buttons_become_keyboard() -> None:
    bot = _make_mock_bot()
    ch = TelegramChannel(bot, "12345")

    await ch.send(
        Notification(
            title="Hi",
            message="there",
            buttons=[{"text": "Open", "url": "https://example.com"}, {"text": "No url"}],
        )
    )

    markup = bot.send_message.call_args.kwargs["reply_markup"]
    assert isinstance(markup, InlineKeyboardMarkup)
    assert len(markup.inline_keyboard) == 1
    assert markup.inline_keyboard[0][0].url == "https://example.com"


async def test_telegram_send_returns_false_on_error() -> None:
    bot = _make_mock_bot()
    bot.send_message.side_effect = RuntimeError("network down")
    ch = TelegramChannel(bot, "12345")

    assert await ch.send(Notification(title="Hi", message="there")) is False
