"""Resource openers — the side-effect half of running a schedule."""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

# Pages a browser will not let an external process open or bookmark.
BLOCKED_PREFIXES = ("chrome://", "about:", "edge://", "file://")


def is_openable(url: str) -> bool:
    """True for URLs a schedule may hold."""
    return bool(url.strip()) and not url.lower().startswith(BLOCKED_PREFIXES)


@runtime_checkable
class ResourceOpener(Protocol):
    """Protocol for anything that can open a schedule's resources."""

    async def open_resource(self, url: str) -> bool:
        """Open *url*. Returns True on success."""
        ...


class BrowserOpener:
    """Opens each resource in a new tab of the default web browser."""

    async def open_resource(self, url: str) -> bool:
        try:
            opened = await asyncio.to_thread(webbrowser.open_new_tab, url)
        except webbrowser.Error:
            logger.exception("Failed to open %s", url)
            return False
        if not opened:
            logger.warning("No browser accepted %s", url)
        return bool(opened)
