"""KeyValueStore — aiosqlite-backed key/value areas with a change feed."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import TYPE_CHECKING, Any

import aiosqlite

from chronotab.config import settings

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable
    from pathlib import Path

    # Listener signature: (changed_keys, area) -> None | Awaitable[None]
    ChangeListener = Callable[[list[str], str], Awaitable[None] | None]

logger = logging.getLogger(__name__)

SYNC_AREA = "sync"
LOCAL_AREA = "local"

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS kv_store (
    area TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    PRIMARY KEY (area, key)
)
"""


class StorageError(Exception):
    """The persistent store rejected a read or write."""


class KeyValueStore:
    """Persists JSON values under string keys in one named area.

    Shared instances are accessed via ``KeyValueStore.for_area(area)``.  Pass
    an explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).

    Every successful ``set``/``remove`` is announced to subscribed listeners
    as ``(changed_keys, area)``.  Listeners run as separate tasks after the
    write has committed, so a listener may itself write to the store.
    """

    _instances: dict[str, KeyValueStore] = {}

    def __init__(self, db_path: Path | None = None, area: str = SYNC_AREA) -> None:
        self._db_path = db_path or settings.database_path
        self._area = area
        self._initialised = False
        self._listeners: list[ChangeListener] = []
        self._pending: set[asyncio.Task] = set()

    @classmethod
    def for_area(cls, area: str) -> KeyValueStore:
        """Return the shared store for *area*."""
        if area not in cls._instances:
            cls._instances[area] = cls(area=area)
        return cls._instances[area]

    @classmethod
    def _reset(cls) -> None:
        """Reset the shared instances (for testing)."""
        cls._instances = {}

    @property
    def area(self) -> str:
        return self._area

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True
        return db

    # -- Key/value API ---------------------------------------------------------

    async def get(self, keys: str | Iterable[str]) -> dict[str, Any]:
        """Return a mapping of the requested keys that exist in this area."""
        wanted = [keys] if isinstance(keys, str) else list(keys)
        if not wanted:
            return {}
        placeholders = ", ".join("?" for _ in wanted)
        try:
            db = await self._connect()
            try:
                cursor = await db.execute(
                    f"SELECT key, value FROM kv_store WHERE area = ? AND key IN ({placeholders})",  # noqa: S608
                    (self._area, *wanted),
                )
                rows = await cursor.fetchall()
            finally:
                await db.close()
        except aiosqlite.Error as exc:
            msg = f"Failed to read {wanted} from '{self._area}': {exc}"
            raise StorageError(msg) from exc
        try:
            return {key: json.loads(value) for key, value in rows}
        except json.JSONDecodeError as exc:
            msg = f"Corrupt value for {wanted} in '{self._area}': {exc}"
            raise StorageError(msg) from exc

    async def set(self, items: dict[str, Any]) -> None:
        """Write every key in *items*, replacing existing values."""
        if not items:
            return
        try:
            rows = [(self._area, key, json.dumps(value)) for key, value in items.items()]
        except (TypeError, ValueError) as exc:
            msg = f"Value for {list(items)} is not JSON serialisable: {exc}"
            raise StorageError(msg) from exc
        try:
            db = await self._connect()
            try:
                await db.executemany(
                    "INSERT OR REPLACE INTO kv_store (area, key, value) VALUES (?, ?, ?)",
                    rows,
                )
                await db.commit()
            finally:
                await db.close()
        except aiosqlite.Error as exc:
            msg = f"Failed to write {list(items)} to '{self._area}': {exc}"
            raise StorageError(msg) from exc
        logger.debug("Stored keys %s in area '%s'", list(items), self._area)
        self._notify(list(items))

    async def remove(self, keys: str | Iterable[str]) -> None:
        """Delete the given keys. Missing keys are ignored."""
        doomed = [keys] if isinstance(keys, str) else list(keys)
        if not doomed:
            return
        try:
            db = await self._connect()
            try:
                cursor = await db.executemany(
                    "DELETE FROM kv_store WHERE area = ? AND key = ?",
                    [(self._area, key) for key in doomed],
                )
                await db.commit()
                removed = cursor.rowcount
            finally:
                await db.close()
        except aiosqlite.Error as exc:
            msg = f"Failed to remove {doomed} from '{self._area}': {exc}"
            raise StorageError(msg) from exc
        if removed:
            self._notify(doomed)

    # -- Change feed -----------------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> None:
        """Register a listener called with ``(changed_keys, area)``."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def wait_idle(self) -> None:
        """Wait until every in-flight change notification has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _notify(self, changed_keys: list[str]) -> None:
        for listener in list(self._listeners):
            task = asyncio.create_task(self._run_listener(listener, changed_keys))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _run_listener(self, listener: ChangeListener, changed_keys: list[str]) -> None:
        try:
            result = listener(changed_keys, self._area)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(
                "Change listener failed: keys=%s area=%s", changed_keys, self._area
            )
