"""NotificationRouter — delivers notifications and tracks the ones still showing."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chronotab.notifications.channels import Notification, NotificationChannel

logger = logging.getLogger(__name__)


class NotificationRouter:
    """Sends notifications through named channels.

    A notification stays *active* from delivery until it is cleared.
    Creating a notification with the ID of an active one replaces it, so a
    fixed ID (such as the grouped missed-schedules notice) never stacks up.

    Singleton accessed via ``NotificationRouter.get()``.
    """

    _instance: NotificationRouter | None = None

    def __init__(self) -> None:
        self._channels: dict[str, NotificationChannel] = {}
        self._default: str = ""
        self._active: dict[str, Notification] = {}

    @classmethod
    def get(cls) -> NotificationRouter:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset singleton — for tests only."""
        cls._instance = None

    # -- Channels --------------------------------------------------------------

    def register_channel(self, channel: NotificationChannel) -> None:
        """Add a channel. Raises ValueError if the name is taken."""
        if self.get_channel(channel.name) is not None:
            msg = f"Channel '{channel.name}' is already registered"
            raise ValueError(msg)
        self._channels[channel.name] = channel
        logger.debug("Registered notification channel: %s", channel.name)

    def get_channel(self, name: str) -> NotificationChannel | None:
        return self._channels.get(name)

    def list_channels(self) -> list[str]:
        return list(self._channels)

    def set_default_channel(self, name: str) -> None:
        """Route unaddressed notifications to *name*. Raises KeyError if unknown."""
        if self.get_channel(name) is None:
            msg = f"Channel '{name}' is not registered"
            raise KeyError(msg)
        self._default = name

    @property
    def default_channel_name(self) -> str:
        return self._default

    def channel_for(self, name: str | None = None) -> NotificationChannel | None:
        """The channel a notification addressed to *name* would use.

        With no name: the default channel, else the sole registered one.
        """
        if name:
            return self.get_channel(name)
        if self._default:
            return self.get_channel(self._default)
        only = list(self._channels.values())
        return only[0] if len(only) == 1 else None

    # -- Notifications ---------------------------------------------------------

    async def create_notification(
        self,
        notification: Notification,
        *,
        channel: str | None = None,
    ) -> str | None:
        """Deliver *notification*. Returns its ID, or None if it was not delivered."""
        target = self.channel_for(channel)
        if target is None:
            logger.warning("No channel resolved for notification (requested=%s)", channel)
            return None
        if notification.id in self._active:
            logger.debug("Replacing active notification %s", notification.id)
        if not await target.send(notification):
            logger.warning(
                "Channel %s failed to deliver notification %s", target.name, notification.id
            )
            return None
        self._active[notification.id] = notification
        return notification.id

    def clear_notification(self, notification_id: str) -> bool:
        """Forget an active notification. Returns True if it was showing."""
        cleared = self._active.pop(notification_id, None) is not None
        if cleared:
            logger.debug("Cleared notification %s", notification_id)
        return cleared

    def is_active(self, notification_id: str) -> bool:
        return notification_id in self._active

    def active_notifications(self) -> list[Notification]:
        return list(self._active.values())
