"""Notification channel abstraction layer."""

from chronotab.notifications.channels import Notification, NotificationChannel
from chronotab.notifications.log_channel import LogChannel
from chronotab.notifications.router import NotificationRouter

__all__ = [
    "LogChannel",
    "Notification",
    "NotificationChannel",
    "NotificationRouter",
]
