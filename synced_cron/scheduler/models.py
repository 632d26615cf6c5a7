"""Job definition, run record and scheduler state models."""

from __future__ import annotations

import enum
import json
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from synced_cron.errors import JobValidationError

if TYPE_CHECKING:
    from collections.abc import Callable

    from synced_cron.scheduler.occurrences import OccurrenceSource, ScheduleParser
    from synced_cron.scheduler.timer import RecurringTimer


class SchedulerState(enum.StrEnum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


@dataclass(frozen=True)
class JobDefinition:
    """A named recurring job.

    Attributes:
        name: Unique key within a scheduler.
        schedule: Callable receiving a :class:`ScheduleParser` and returning an
            :class:`OccurrenceSource` (or a bare APScheduler trigger).
        job: The work to perform, called as ``job(intended_at, name)``. May be
            a coroutine function; its return value is stored as the run result.
        persist: Record runs in the ledger and deduplicate across processes.
    """

    name: str
    schedule: Callable[[ScheduleParser], OccurrenceSource | Any]
    job: Callable[[datetime, str], Any]
    persist: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            msg = f"Job name must be a non-empty string, got {self.name!r}"
            raise JobValidationError(msg)
        if not callable(self.schedule):
            msg = f"Job {self.name!r}: schedule must be callable"
            raise JobValidationError(msg)
        if not callable(self.job):
            msg = f"Job {self.name!r}: job must be callable"
            raise JobValidationError(msg)
        if not isinstance(self.persist, bool):
            msg = f"Job {self.name!r}: persist must be a bool, got {self.persist!r}"
            raise JobValidationError(msg)


@dataclass
class ScheduledEntry:
    """A registered job plus its most recent timer (None until first scheduled).

    After ``pause()`` the cancelled timer stays here so a resumed timer can
    wait for a run that is still in flight.
    """

    job: JobDefinition
    timer: RecurringTimer | None = None

    @property
    def name(self) -> str:
        return self.job.name

    @property
    def scheduled(self) -> bool:
        return self.timer is not None and self.timer.active


@dataclass
class RunRecord:
    """One claimed occurrence of a job.

    ``(intended_at, name)`` is unique across the ledger; that constraint is
    what keeps two processes from running the same occurrence.
    """

    id: str
    intended_at: str
    name: str
    started_at: str = ""
    finished_at: str | None = None
    result: Any = None
    error: str | None = None

    def __post_init__(self) -> None:
        if not self.started_at:
            self.started_at = utc_now_iso()

    @property
    def finished(self) -> bool:
        return self.finished_at is not None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ledger column order."""
        return (
            self.id,
            self.intended_at,
            self.name,
            self.started_at,
            self.finished_at,
            encode_result(self.result) if self.result is not None else None,
            self.error,
        )

    @classmethod
    def from_row(cls, row: tuple) -> RunRecord:
        return cls(
            id=row[0],
            intended_at=row[1],
            name=row[2],
            started_at=row[3],
            finished_at=row[4],
            result=json.loads(row[5]) if row[5] is not None else None,
            error=row[6],
        )


def encode_result(value: Any) -> str:
    """JSON-encode a job result; values JSON can't express fall back to ``str``."""
    return json.dumps(value, default=str)


def truncate_to_second(moment: datetime) -> datetime:
    """Drop sub-second precision so scheduling jitter maps to one occurrence."""
    return moment.replace(microsecond=0)


def occurrence_key(moment: datetime) -> str:
    """Canonical ledger form of an intended time: whole-second UTC ISO 8601."""
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return truncate_to_second(moment).astimezone(UTC).isoformat()


def utc_now_iso(now: datetime | None = None) -> str:
    """UTC ISO 8601 with fixed microsecond precision, so stored values sort as text."""
    return (now or datetime.now(UTC)).astimezone(UTC).isoformat(timespec="microseconds")


def make_record_id() -> str:
    """Generate a new run record ID."""
    return uuid.uuid4().hex
