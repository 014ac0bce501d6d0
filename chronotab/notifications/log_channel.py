"""Log-only implementation of the NotificationChannel protocol."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chronotab.notifications.channels import Notification

logger = logging.getLogger(__name__)


class LogChannel:
    """Writes notifications to the application log."""

    @property
    def name(self) -> str:
        return "log"

    async def send(self, notification: Notification) -> bool:
        logger.info(
            "[notification %s] %s: %s", notification.id, notification.title, notification.message
        )
        return True
