"""Run named recurring jobs across many processes, at most once per occurrence."""

from synced_cron.config import Settings
from synced_cron.errors import (
    DuplicateOccurrence,
    InitError,
    JobValidationError,
    StoreError,
    SyncedCronError,
)
from synced_cron.scheduler import JobDefinition, RunRecord, SchedulerEngine

__all__ = [
    "SchedulerEngine",
    "JobDefinition",
    "RunRecord",
    "Settings",
    "SyncedCronError",
    "JobValidationError",
    "DuplicateOccurrence",
    "StoreError",
    "InitError",
]
