"""Notification payload and the NotificationChannel protocol."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass
class Notification:
    """A user-facing notification.

    Attributes:
        title: Short heading.
        message: Body text.
        buttons: Optional action buttons, each ``{"text": ..., "url"?: ...}``.
        priority: 0 (low) to 2 (high).
        id: Stable identifier; generated when not given.
    """

    title: str
    message: str
    buttons: list[dict[str, str]] = field(default_factory=list)
    priority: int = 0
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = uuid.uuid4().hex

    @property
    def text(self) -> str:
        """Title and message joined for plain-text channels."""
        return f"{self.title}\n{self.message}" if self.title else self.message


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol that all notification channels must satisfy."""

    @property
    def name(self) -> str:
        """Unique channel identifier (e.g. 'log', 'telegram')."""
        ...

    async def send(self, notification: Notification) -> bool:
        """Deliver a notification. Returns True on success."""
        ...
