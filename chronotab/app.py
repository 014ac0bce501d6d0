"""Application factory — wires stores, timers, reconciler, executor and server."""

from __future__ import annotations

import logging

from chronotab.actions import BrowserOpener, ResourceOpener
from chronotab.config import settings
from chronotab.notifications.log_channel import LogChannel
from chronotab.notifications.router import NotificationRouter
from chronotab.scheduler.engine import TimerRegistrar
from chronotab.scheduler.events import RESUME_STARTUP, EventDispatcher, ProcessResumed
from chronotab.scheduler.executor import RunExecutor
from chronotab.scheduler.missed import MissedOccurrenceReconciler
from chronotab.scheduler.models import RequestResult
from chronotab.scheduler.store import ScheduleStore
from chronotab.scheduler.timers import TimerService
from chronotab.server import MessagingServer

logger = logging.getLogger(__name__)


def _init_notifications() -> NotificationRouter:
    """Register notification channels and set the default."""
    router = NotificationRouter.get()
    if router.get_channel("log") is None:
        router.register_channel(LogChannel())

    if settings.telegram_bot_token and settings.telegram_chat_id:
        if router.get_channel("telegram") is None:
            import telegram

            from chronotab.notifications.telegram_channel import TelegramChannel

            bot = telegram.Bot(settings.telegram_bot_token)
            router.register_channel(TelegramChannel(bot, settings.telegram_chat_id))

    default = settings.default_notification_channel
    if router.get_channel(default) is None:
        logger.warning("Notification channel %r not available; using 'log'", default)
        default = "log"
    router.set_default_channel(default)
    logger.info(
        "Notifications initialized: channels=%s, default=%s",
        router.list_channels(),
        router.default_channel_name,
    )
    return router


class ChronotabApp:
    """Owns the component graph and its lifecycle.

    Args:
        store: ScheduleStore (default: the shared instance).
        opener: ResourceOpener (default: the system web browser).
        router: NotificationRouter (default: configured from settings).
        serve: Whether to run the HTTP messaging server.
    """

    def __init__(
        self,
        store: ScheduleStore | None = None,
        opener: ResourceOpener | None = None,
        router: NotificationRouter | None = None,
        *,
        serve: bool = True,
    ) -> None:
        tz = settings.get_timezone()
        self.store = store or ScheduleStore.get()
        self.router = router or _init_notifications()
        self.timers = TimerService(timezone=tz)
        self.registrar = TimerRegistrar(self.store, self.timers, timezone=tz)
        self.reconciler = MissedOccurrenceReconciler(self.store, self.router, timezone=tz)
        self.executor = RunExecutor(self.store, opener or BrowserOpener(), self.router)
        self.dispatcher = EventDispatcher(
            self.store, self.registrar, self.reconciler, self.executor
        )
        self.timers.set_callback(self.dispatcher.on_timer)
        self.server = MessagingServer(self.dispatcher, self.store) if serve else None
        self._started = False

    async def start(self, reason: str = RESUME_STARTUP) -> RequestResult:
        """Subscribe to store changes, start timers, and run the resume pass."""
        self.store.sync.subscribe(self.dispatcher.on_store_change)
        self.store.local.subscribe(self.dispatcher.on_store_change)
        await self.registrar.start()
        if self.server is not None:
            await self.server.start()
        self._started = True
        result = await self.dispatcher.dispatch(ProcessResumed(reason))
        logger.info("Chronotab started (%s): %s", reason, result.message or result.error)
        return result

    async def stop(self) -> None:
        if not self._started:
            return
        self.store.sync.unsubscribe(self.dispatcher.on_store_change)
        self.store.local.unsubscribe(self.dispatcher.on_store_change)
        if self.server is not None:
            await self.server.stop()
        await self.registrar.stop()
        self._started = False
        logger.info("Chronotab stopped")
