"""TimerService — named one-shot and periodic timers on APScheduler."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import tzinfo

    TimerCallback = Callable[[str], Awaitable[object]]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimerSpec:
    """A timer to create: fire *name* at *when*, then every *period_minutes*."""

    name: str
    when: datetime
    period_minutes: int | None = None

    @property
    def periodic(self) -> bool:
        return self.period_minutes is not None


class TimerService:
    """Wraps an AsyncIOScheduler behind ``create``/``clear_all``.

    Args:
        on_fire: Async callable invoked with the timer name when it fires.
        timezone: Zone for APScheduler's own bookkeeping (None = host zone).
    """

    def __init__(
        self,
        on_fire: TimerCallback | None = None,
        timezone: tzinfo | None = None,
    ) -> None:
        self._on_fire = on_fire
        kwargs = {"timezone": timezone} if timezone is not None else {}
        self._scheduler = AsyncIOScheduler(**kwargs)
        self._specs: dict[str, TimerSpec] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def set_callback(self, on_fire: TimerCallback) -> None:
        self._on_fire = on_fire

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        if not self._running:
            self._scheduler.start()
            self._running = True
            logger.info("Timer service started with %d timer(s)", len(self._specs))

    async def stop(self) -> None:
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Timer service stopped")

    # -- Timer management ------------------------------------------------------

    def create(self, spec: TimerSpec) -> None:
        """Create (or replace) the timer named ``spec.name``."""
        if spec.periodic:
            trigger = IntervalTrigger(minutes=spec.period_minutes, start_date=spec.when)
        else:
            trigger = DateTrigger(run_date=spec.when)
        # replace_existing only applies once the scheduler is running
        if self._scheduler.get_job(spec.name) is not None:
            self._scheduler.remove_job(spec.name)
        self._scheduler.add_job(
            self._fire,
            trigger=trigger,
            id=spec.name,
            name=spec.name,
            args=[spec.name],
            misfire_grace_time=None,
            coalesce=True,
            replace_existing=True,
        )
        self._specs[spec.name] = spec
        logger.debug(
            "Created timer %s at %s (period=%s min)",
            spec.name,
            spec.when.isoformat(),
            spec.period_minutes,
        )

    def clear_all(self) -> None:
        """Remove every timer."""
        self._scheduler.remove_all_jobs()
        self._specs.clear()

    def snapshot(self) -> dict[str, TimerSpec]:
        """Return the timers currently registered, keyed by name."""
        return dict(self._specs)

    # -- Internal --------------------------------------------------------------

    async def _fire(self, name: str) -> None:
        """Callback invoked by APScheduler."""
        spec = self._specs.get(name)
        if spec is not None and not spec.periodic:
            self._specs.pop(name, None)
        if self._on_fire is None:
            logger.warning("Timer %s fired with no callback attached", name)
            return
        logger.info("Timer fired: %s", name)
        await self._on_fire(name)
