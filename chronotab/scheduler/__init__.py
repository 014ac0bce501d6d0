"""Schedule system — occurrence math, timers, missed-run recovery, and execution."""

from chronotab.scheduler.engine import TimerRegistrar
from chronotab.scheduler.events import EventDispatcher
from chronotab.scheduler.executor import RunExecutor
from chronotab.scheduler.missed import MissedOccurrenceReconciler
from chronotab.scheduler.models import ClearedTombstone, MissedOccurrence, RequestResult, Schedule
from chronotab.scheduler.store import ScheduleStore
from chronotab.scheduler.timers import TimerService, TimerSpec

__all__ = [
    "ClearedTombstone",
    "EventDispatcher",
    "MissedOccurrence",
    "MissedOccurrenceReconciler",
    "RequestResult",
    "RunExecutor",
    "Schedule",
    "ScheduleStore",
    "TimerRegistrar",
    "TimerService",
    "TimerSpec",
]
