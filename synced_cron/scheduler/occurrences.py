"""Occurrence sources — turn schedule descriptions into concrete fire times.

Occurrence generation is delegated to APScheduler triggers. This module only
adapts them to a "next *k* occurrences strictly after *T*" contract and
exposes a small parser that job definitions use to describe their schedule.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from tzlocal import get_localzone

from synced_cron.errors import JobValidationError

if TYPE_CHECKING:
    from datetime import tzinfo

    from synced_cron.config import Settings

_TICK = timedelta(microseconds=1)
# Interval grids are anchored here so every process derives the same fire times.
_INTERVAL_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

_CRON_FIELDS = ("minute", "hour", "day", "month", "day_of_week", "year")
_FIELD_NAMES = {"year", "month", "day", "week", "day_of_week", "hour", "minute", "second"}
_INTERVAL_NAMES = {"weeks", "days", "hours", "minutes", "seconds"}

# crontab numbers Sunday as 0 (and 7); APScheduler numbers Monday as 0.
_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")
_WEEKDAY_PART = re.compile(r"(\*|\d+)(?:-(\d+))?(?:/(\d+))?")


def resolve_timezone(settings: Settings) -> tzinfo:
    """Pick the zone schedules are evaluated in."""
    if settings.time_mode == "utc":
        return ZoneInfo("UTC")
    if settings.timezone:
        return ZoneInfo(settings.timezone)
    return get_localzone()


class OccurrenceSource:
    """Wraps a trigger and lists its upcoming fire times."""

    def __init__(self, trigger: BaseTrigger, timezone: tzinfo) -> None:
        self.trigger = trigger
        self.timezone = timezone

    def __repr__(self) -> str:
        return f"OccurrenceSource({self.trigger})"

    def next(self, count: int, after: datetime | None = None) -> list[datetime]:
        """Return up to *count* fire times strictly after *after*, ascending.

        An empty list means the schedule is exhausted.
        """
        cursor = after or datetime.now(self.timezone)
        if cursor.tzinfo is None:
            cursor = cursor.replace(tzinfo=self.timezone)
        occurrences: list[datetime] = []
        previous = None
        while len(occurrences) < count:
            fire_time = self.trigger.get_next_fire_time(previous, cursor + _TICK)
            if fire_time is None or fire_time <= cursor:
                break
            occurrences.append(fire_time)
            previous = cursor = fire_time
        return occurrences

    def first(self, after: datetime | None = None) -> datetime | None:
        """Return the next single fire time, or None when exhausted."""
        upcoming = self.next(1, after)
        return upcoming[0] if upcoming else None


class ScheduleParser:
    """Builds occurrence sources in a fixed timezone.

    Handed to each job's ``schedule`` callable::

        JobDefinition(
            name="report",
            schedule=lambda parser: parser.cron("15 10 * * *"),
            job=send_report,
        )
    """

    def __init__(self, timezone: tzinfo) -> None:
        self.timezone = timezone

    def cron(self, expression: str, *, has_seconds: bool = False) -> OccurrenceSource:
        """Crontab expression: ``min hour day month dow [year]``.

        With *has_seconds* a leading seconds column is expected. ``?`` is
        accepted as a synonym for ``*``.
        """
        parts = expression.replace("?", "*").split()
        names = (("second",) if has_seconds else ()) + _CRON_FIELDS
        if not len(names) - 1 <= len(parts) <= len(names):
            msg = f"Wrong number of fields in cron expression: {expression!r}"
            raise JobValidationError(msg)
        fields = dict(zip(names, parts, strict=False))
        fields["day_of_week"] = _crontab_weekdays(fields["day_of_week"], expression)
        if not has_seconds:
            fields["second"] = "0"
        return self.fields(**fields)

    def fields(self, **cron_fields: Any) -> OccurrenceSource:
        """Field-based cron, e.g. ``fields(hour=9, minute=0, day_of_week="mon-fri")``."""
        unknown = set(cron_fields) - _FIELD_NAMES
        if unknown:
            msg = f"Unknown cron field(s): {', '.join(sorted(unknown))}"
            raise JobValidationError(msg)
        try:
            trigger = CronTrigger(timezone=self.timezone, **cron_fields)
        except ValueError as exc:
            raise JobValidationError(str(exc)) from exc
        return OccurrenceSource(trigger, self.timezone)

    def at(self, run_at: datetime | str) -> OccurrenceSource:
        """One-off schedule. Naive values are read in the parser's timezone."""
        try:
            trigger = DateTrigger(run_date=run_at, timezone=self.timezone)
        except ValueError as exc:
            raise JobValidationError(str(exc)) from exc
        return OccurrenceSource(trigger, self.timezone)

    def every(
        self, *, start_date: datetime | str | None = None, **interval: int | float
    ) -> OccurrenceSource:
        """Fixed interval, e.g. ``every(minutes=5)``.

        Fire times lie on a grid anchored at *start_date* (the Unix epoch by
        default), never at the moment the source was built.
        """
        unknown = set(interval) - _INTERVAL_NAMES
        if unknown or not interval:
            msg = f"Interval needs some of {sorted(_INTERVAL_NAMES)}, got {sorted(interval)}"
            raise JobValidationError(msg)
        try:
            trigger = IntervalTrigger(
                timezone=self.timezone, start_date=start_date or _INTERVAL_EPOCH, **interval
            )
        except ValueError as exc:
            raise JobValidationError(str(exc)) from exc
        return OccurrenceSource(trigger, self.timezone)

    def from_dict(self, schedule: dict[str, Any]) -> OccurrenceSource:
        """Build from a plain dict.

        ``{"run_at": "ISO"}`` for one-off, ``{"cron": "* * * * *"}``,
        ``{"every": {"minutes": 5}}`` (optionally with ``"start_date"``) or
        field-based ``{"hour": 9}``.
        """
        if "run_at" in schedule:
            return self.at(schedule["run_at"])
        if "cron" in schedule:
            return self.cron(schedule["cron"], has_seconds=schedule.get("has_seconds", False))
        if "every" in schedule:
            return self.every(**schedule["every"])
        return self.fields(**schedule)

    def wrap(self, value: Any) -> OccurrenceSource:
        """Coerce whatever a ``schedule`` callable returned into a source."""
        if isinstance(value, OccurrenceSource):
            return value
        if isinstance(value, BaseTrigger):
            return OccurrenceSource(value, self.timezone)
        if isinstance(value, dict):
            return self.from_dict(value)
        msg = f"schedule must return an OccurrenceSource or trigger, got {type(value).__name__}"
        raise JobValidationError(msg)


def _crontab_weekdays(field: str, expression: str) -> str:
    """Rewrite numeric crontab weekdays as APScheduler weekday names.

    Numeric parts are expanded to explicit names (``1-5/2`` -> ``mon,wed,fri``)
    so ranges through Sunday keep working. Names pass through unchanged.
    """
    if field == "*":
        return field
    days: list[str] = []
    for part in field.split(","):
        match = _WEEKDAY_PART.fullmatch(part)
        if match is None:
            days.append(part)
            continue
        first, last, step = match.groups()
        if first == "*":
            low, high = 0, 6
        else:
            low = int(first)
            high = int(last) if last is not None else (6 if step else low)
        stride = int(step or 1)
        if high >= len(_WEEKDAYS) or low > high or stride < 1:
            msg = f"Day of week out of range in cron expression: {expression!r}"
            raise JobValidationError(msg)
        days.extend(_WEEKDAYS[day] for day in range(low, high + 1, stride))
    return ",".join(dict.fromkeys(days))
