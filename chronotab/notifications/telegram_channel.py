"""Telegram implementation of the NotificationChannel protocol."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import telegram
from telegram import InlineKeyboardButton, InlineKeyboardMarkup

if TYPE_CHECKING:
    from chronotab.notifications.channels import Notification

logger = logging.getLogger(__name__)


class TelegramChannel:
    """Sends notifications to one Telegram chat via the Bot API."""

    def __init__(self, bot: telegram.Bot, chat_id: str) -> None:
        self._bot = bot
        self._chat_id = chat_id

    @property
    def name(self) -> str:
        return "telegram"

    async def send(self, notification: Notification) -> bool:
        """Send the notification, rendering URL buttons as an inline keyboard."""
        try:
            markup = None
            url_buttons = [b for b in notification.buttons if b.get("url")]
            if url_buttons:
                markup = InlineKeyboardMarkup([
                    [InlineKeyboardButton(text=btn["text"], url=btn["url"])]
                    for btn in url_buttons
                ])
            await self._bot.send_message(
                chat_id=int(self._chat_id),
                text=f"*{notification.title}*\n{notification.message}",
                parse_mode="Markdown",
                reply_markup=markup,
            )
            return True
        except Exception:
            logger.exception("TelegramChannel.send failed for chat_id=%s", self._chat_id)
            return False
