"""Tests for occurrence sources and the schedule parser."""

import time
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
from apscheduler.triggers.cron import CronTrigger

from synced_cron.config import Settings
from synced_cron.errors import JobValidationError
from synced_cron.scheduler.models import occurrence_key
from synced_cron.scheduler.occurrences import OccurrenceSource, ScheduleParser, resolve_timezone

UTC = ZoneInfo("UTC")

# 2025-06-01 is a Sunday.
SUNDAY_9AM = datetime(2025, 6, 1, 9, 0, tzinfo=UTC)


@pytest.fixture
def parser() -> ScheduleParser:
    return ScheduleParser(UTC)


# -- cron ----------------------------------------------------------------------


def test_cron_next_two(parser: ScheduleParser) -> None:
    source = parser.cron("15 10 * * *")
    assert source.next(2, SUNDAY_9AM) == [
        datetime(2025, 6, 1, 10, 15, tzinfo=UTC),
        datetime(2025, 6, 2, 10, 15, tzinfo=UTC),
    ]


def test_next_is_strictly_after_reference(parser: ScheduleParser) -> None:
    source = parser.cron("15 10 * * *")
    exact = datetime(2025, 6, 1, 10, 15, tzinfo=UTC)
    assert source.first(exact) == datetime(2025, 6, 2, 10, 15, tzinfo=UTC)


def test_cron_with_year_column_and_question_mark(parser: ScheduleParser) -> None:
    source = parser.cron("15 10 * * ? *")
    assert source.first(SUNDAY_9AM) == datetime(2025, 6, 1, 10, 15, tzinfo=UTC)


def test_cron_with_seconds(parser: ScheduleParser) -> None:
    source = parser.cron("30 15 10 * * *", has_seconds=True)
    assert source.first(SUNDAY_9AM) == datetime(2025, 6, 1, 10, 15, 30, tzinfo=UTC)


def test_cron_weekday_numbers_follow_crontab(parser: ScheduleParser) -> None:
    saturday = datetime(2025, 6, 7, 0, 0, tzinfo=UTC)
    weekdays = parser.cron("0 9 * * 1-5")
    sundays = parser.cron("0 9 * * 0")
    assert weekdays.first(saturday) == datetime(2025, 6, 9, 9, 0, tzinfo=UTC)
    assert sundays.first(saturday) == datetime(2025, 6, 8, 9, 0, tzinfo=UTC)


def test_cron_weekday_step(parser: ScheduleParser) -> None:
    source = parser.cron("0 9 * * 1-5/2")
    assert source.next(3, SUNDAY_9AM) == [
        datetime(2025, 6, 2, 9, 0, tzinfo=UTC),
        datetime(2025, 6, 4, 9, 0, tzinfo=UTC),
        datetime(2025, 6, 6, 9, 0, tzinfo=UTC),
    ]


def test_cron_weekday_range_through_sunday(parser: ScheduleParser) -> None:
    source = parser.cron("0 9 * * 0-6")
    assert source.next(2, SUNDAY_9AM) == [
        datetime(2025, 6, 2, 9, 0, tzinfo=UTC),
        datetime(2025, 6, 3, 9, 0, tzinfo=UTC),
    ]


def test_cron_minute_step(parser: ScheduleParser) -> None:
    source = parser.cron("*/30 * * * *")
    assert source.next(2, SUNDAY_9AM) == [
        datetime(2025, 6, 1, 9, 30, tzinfo=UTC),
        datetime(2025, 6, 1, 10, 0, tzinfo=UTC),
    ]


def test_cron_wrong_field_count(parser: ScheduleParser) -> None:
    with pytest.raises(JobValidationError, match="Wrong number of fields"):
        parser.cron("15 10 *")


def test_cron_weekday_out_of_range(parser: ScheduleParser) -> None:
    with pytest.raises(JobValidationError, match="Day of week"):
        parser.cron("0 9 * * 8")


def test_cron_respects_timezone() -> None:
    chicago = ZoneInfo("America/Chicago")
    source = ScheduleParser(chicago).cron("0 9 * * *")
    fire = source.first(SUNDAY_9AM)
    assert fire is not None
    assert fire.astimezone(chicago).hour == 9
    assert fire.astimezone(UTC).hour == 14


# -- fields --------------------------------------------------------------------


def test_fields(parser: ScheduleParser) -> None:
    source = parser.fields(hour=9, minute=30, day_of_week="mon-fri")
    assert source.first(SUNDAY_9AM) == datetime(2025, 6, 2, 9, 30, tzinfo=UTC)


def test_fields_unknown_name(parser: ScheduleParser) -> None:
    with pytest.raises(JobValidationError, match="Unknown cron field"):
        parser.fields(hours=9)


def test_fields_bad_value(parser: ScheduleParser) -> None:
    with pytest.raises(JobValidationError):
        parser.fields(hour=25)


# -- at ------------------------------------------------------------------------


def test_one_off_in_future(parser: ScheduleParser) -> None:
    source = parser.at(datetime(2025, 6, 1, 12, 0, tzinfo=UTC))
    assert source.next(2, SUNDAY_9AM) == [datetime(2025, 6, 1, 12, 0, tzinfo=UTC)]


def test_one_off_in_past_is_exhausted(parser: ScheduleParser) -> None:
    source = parser.at("2025-06-01T08:00:00")
    assert source.next(2, SUNDAY_9AM) == []
    assert source.first(SUNDAY_9AM) is None


def test_one_off_naive_string_uses_parser_zone() -> None:
    chicago = ZoneInfo("America/Chicago")
    source = ScheduleParser(chicago).at("2025-06-01T09:00:00")
    assert source.first(SUNDAY_9AM) == datetime(2025, 6, 1, 14, 0, tzinfo=UTC)


# -- every ---------------------------------------------------------------------


def test_every_spacing(parser: ScheduleParser) -> None:
    now = datetime.now(UTC)
    times = parser.every(minutes=5).next(3, now)
    assert len(times) == 3
    assert times[1] - times[0] == timedelta(minutes=5)
    assert times[2] - times[1] == timedelta(minutes=5)
    assert times[0] > now


def test_every_grid_independent_of_build_time(parser: ScheduleParser) -> None:
    reference = datetime.now(UTC)
    first = parser.every(minutes=5)
    time.sleep(1.1)
    second = parser.every(minutes=5)

    keys_a = [occurrence_key(t) for t in first.next(2, reference)]
    keys_b = [occurrence_key(t) for t in second.next(2, reference)]

    assert keys_a == keys_b
    assert all(t.minute % 5 == 0 and t.second == 0 for t in first.next(2, reference))


def test_every_with_explicit_start(parser: ScheduleParser) -> None:
    source = parser.every(hours=1, start_date=datetime(2025, 1, 1, 0, 20, tzinfo=UTC))
    assert source.first(SUNDAY_9AM) == datetime(2025, 6, 1, 9, 20, tzinfo=UTC)


def test_every_requires_units(parser: ScheduleParser) -> None:
    with pytest.raises(JobValidationError):
        parser.every()
    with pytest.raises(JobValidationError):
        parser.every(fortnights=1)


# -- from_dict / wrap ----------------------------------------------------------


def test_from_dict_variants(parser: ScheduleParser) -> None:
    assert parser.from_dict({"cron": "15 10 * * *"}).first(SUNDAY_9AM) == datetime(
        2025, 6, 1, 10, 15, tzinfo=UTC
    )
    assert parser.from_dict({"run_at": "2025-06-01T12:00:00"}).first(SUNDAY_9AM) == datetime(
        2025, 6, 1, 12, 0, tzinfo=UTC
    )
    assert parser.from_dict({"hour": 11, "minute": 0}).first(SUNDAY_9AM) == datetime(
        2025, 6, 1, 11, 0, tzinfo=UTC
    )
    assert parser.from_dict({"every": {"hours": 1}}).first() is not None
    assert parser.from_dict(
        {"every": {"minutes": 30, "start_date": "2025-06-01T00:10:00"}}
    ).first(SUNDAY_9AM) == datetime(2025, 6, 1, 9, 10, tzinfo=UTC)


def test_wrap_accepts_trigger(parser: ScheduleParser) -> None:
    source = parser.wrap(CronTrigger(hour=10, minute=15, timezone=UTC))
    assert isinstance(source, OccurrenceSource)
    assert source.first(SUNDAY_9AM) == datetime(2025, 6, 1, 10, 15, tzinfo=UTC)


def test_wrap_passes_source_through(parser: ScheduleParser) -> None:
    source = parser.cron("15 10 * * *")
    assert parser.wrap(source) is source


def test_wrap_rejects_other_values(parser: ScheduleParser) -> None:
    with pytest.raises(JobValidationError, match="schedule must return"):
        parser.wrap("15 10 * * *")


# -- timezone resolution -------------------------------------------------------


def test_resolve_utc() -> None:
    assert resolve_timezone(Settings(time_mode="utc", timezone="America/Chicago")) == UTC


def test_resolve_named_zone() -> None:
    zone = resolve_timezone(Settings(timezone="America/Chicago"))
    assert zone == ZoneInfo("America/Chicago")


def test_resolve_host_zone() -> None:
    zone = resolve_timezone(Settings())
    assert datetime.now(zone).utcoffset() is not None
