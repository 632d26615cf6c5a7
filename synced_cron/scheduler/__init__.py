"""Scheduled job system — occurrences, timers, run ledger, execution and registry."""

from synced_cron.scheduler.engine import SchedulerEngine
from synced_cron.scheduler.executor import JobExecutor
from synced_cron.scheduler.models import JobDefinition, RunRecord, ScheduledEntry, SchedulerState
from synced_cron.scheduler.occurrences import OccurrenceSource, ScheduleParser
from synced_cron.scheduler.store import RunLedger, SQLiteRunLedger
from synced_cron.scheduler.timer import RecurringTimer, TimerState

__all__ = [
    "JobDefinition",
    "RunRecord",
    "ScheduledEntry",
    "SchedulerState",
    "OccurrenceSource",
    "ScheduleParser",
    "RecurringTimer",
    "TimerState",
    "RunLedger",
    "SQLiteRunLedger",
    "JobExecutor",
    "SchedulerEngine",
]
