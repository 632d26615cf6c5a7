"""SchedulerEngine — job registry and scheduler lifecycle."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from typing import TYPE_CHECKING, Any

from synced_cron.config import MIN_RETENTION_SECONDS, Settings
from synced_cron.config import settings as default_settings
from synced_cron.errors import InitError, JobValidationError, StoreError
from synced_cron.logs import configure_logging
from synced_cron.scheduler.executor import JobExecutor
from synced_cron.scheduler.models import JobDefinition, ScheduledEntry, SchedulerState
from synced_cron.scheduler.occurrences import ScheduleParser, resolve_timezone
from synced_cron.scheduler.store import SQLiteRunLedger
from synced_cron.scheduler.timer import RecurringTimer

if TYPE_CHECKING:
    from datetime import datetime, tzinfo

    from synced_cron.scheduler.models import RunRecord
    from synced_cron.scheduler.occurrences import OccurrenceSource
    from synced_cron.scheduler.store import RunLedger

logger = logging.getLogger(__name__)


class SchedulerEngine:
    """Owns the registered jobs, their timers and the run ledger.

    Create one per process, ``await initialize()`` once, then ``start()``::

        engine = SchedulerEngine(time_mode="utc")
        engine.add(JobDefinition(name="report", schedule=..., job=...))
        await engine.initialize()
        await engine.start()

    Args:
        settings: Base configuration (defaults to the env-driven settings).
        ledger: Run store; defaults to a SQLite ledger built from settings.
        **options: Overrides applied on top of *settings*.

    The logging options (``log``, ``log_level``, ``logger``) apply to the whole
    process; the engine constructed or configured last decides them.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        ledger: RunLedger | None = None,
        **options: Any,
    ) -> None:
        self._settings = (settings or default_settings).merged(**options)
        self._owns_ledger = ledger is None
        self._ledger = ledger or self._build_ledger()
        self._executor = JobExecutor(self._ledger)
        self._entries: dict[str, ScheduledEntry] = {}
        # Cancelled timers of removed jobs whose last fire is still running.
        self._draining: dict[str, RecurringTimer] = {}
        self._state = SchedulerState.STOPPED
        self._initialised = False
        self._retention: int | None = None
        self._expiry_task: asyncio.Task | None = None
        self._apply_settings()

    # -- Introspection ---------------------------------------------------------

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def ledger(self) -> RunLedger:
        return self._ledger

    @property
    def executor(self) -> JobExecutor:
        return self._executor

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    @property
    def timezone(self) -> tzinfo:
        return self._timezone

    @property
    def retention_seconds(self) -> int | None:
        """TTL the expiry task enforces; None when expiry is off."""
        return self._retention

    @property
    def job_names(self) -> list[str]:
        return list(self._entries)

    def get_entry(self, name: str) -> ScheduledEntry | None:
        return self._entries.get(name)

    # -- Configuration ---------------------------------------------------------

    def configure(self, **options: Any) -> Settings:
        """Apply option overrides. Not allowed while any job timer is live."""
        if any(entry.scheduled for entry in self._entries.values()):
            msg = "Cannot reconfigure while jobs are scheduled; pause() or stop() first"
            raise InitError(msg)
        previous = self._settings
        self._settings = previous.merged(**options)
        store_changed = (
            self._settings.database_path != previous.database_path
            or self._settings.store_name != previous.store_name
        )
        if self._owns_ledger and store_changed:
            self._ledger = self._build_ledger()
            self._executor = JobExecutor(self._ledger)
            self._initialised = False
        if self._settings.retention_seconds != previous.retention_seconds:
            self._initialised = False
        self._apply_settings()
        return self._settings

    async def initialize(self) -> None:
        """Prepare the run ledger. Call once before ``start()``.

        Raises InitError when the ledger's unique index cannot be created,
        since running without it would allow duplicate executions.
        """
        try:
            await self._ledger.setup()
        except StoreError as exc:
            logger.error("Error creating indexes: %s", exc)
            msg = f"Run ledger setup failed: {exc}"
            raise InitError(msg) from exc

        self._retention = self._settings.effective_retention()
        if self._settings.retention_seconds and self._retention is None:
            logger.warning(
                "Not going to use a TTL that is shorter than: %d", MIN_RETENTION_SECONDS
            )
        self._initialised = True

    # -- Registry --------------------------------------------------------------

    def add(self, job: JobDefinition | None = None, /, **fields: Any) -> ScheduledEntry:
        """Register a job (a JobDefinition or its fields as keywords).

        Re-adding a name that is already registered is a no-op. When the
        scheduler is running the job is scheduled immediately.
        """
        if job is None:
            job = JobDefinition(**fields)
        elif fields:
            msg = "Pass either a JobDefinition or keyword fields, not both"
            raise JobValidationError(msg)
        elif not isinstance(job, JobDefinition):
            msg = f"Expected a JobDefinition, got {type(job).__name__}"
            raise JobValidationError(msg)

        existing = self._entries.get(job.name)
        if existing is not None:
            logger.debug('Job "%s" already registered', job.name)
            return existing

        self._source_for(job)
        entry = ScheduledEntry(job=job)
        self._entries[job.name] = entry
        if self.running:
            self._schedule(entry)
        return entry

    def remove(self, name: str) -> bool:
        """Cancel and forget a job. Returns False if it was not registered."""
        entry = self._entries.pop(name, None)
        if entry is None:
            return False
        if entry.timer is not None:
            entry.timer.cancel()
            self._draining = {n: t for n, t in self._draining.items() if not t.finished}
            if not entry.timer.finished:
                self._draining[name] = entry.timer
        logger.info('Removed "%s"', name)
        return True

    def next_occurrence(self, name: str) -> datetime | None:
        """Next fire time of a registered job, evaluated fresh from its schedule."""
        entry = self._entries.get(name)
        if entry is None:
            return None
        return self._source_for(entry.job).first()

    async def history(self, name: str | None = None, limit: int = 50) -> list[RunRecord]:
        """Recent run records from the ledger, newest first."""
        return await self._ledger.list_runs(name=name, limit=limit)

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Schedule every registered job that is not already scheduled."""
        if not self._initialised:
            await self.initialize()
        for entry in self._entries.values():
            self._schedule(entry)
        self._state = SchedulerState.RUNNING
        self._start_expiry()
        logger.info(
            "Scheduler started with %d job(s) (tz=%s)", len(self._entries), self._timezone
        )

    async def pause(self) -> None:
        """Cancel all timers but keep the jobs; ``start()`` resumes them.

        A run already in flight finishes; the resumed timer waits for it
        before its first fire.
        """
        if not self.running:
            return
        for entry in self._entries.values():
            if entry.timer is not None:
                entry.timer.cancel()
        self._state = SchedulerState.PAUSED
        await self._stop_expiry()
        logger.info("Scheduler paused")

    async def stop(self) -> None:
        """Cancel all timers and remove every job."""
        for name in list(self._entries):
            self.remove(name)
        self._state = SchedulerState.STOPPED
        await self._stop_expiry()
        logger.info("Scheduler stopped")

    async def reset(self) -> None:
        """Stop, forget every job and empty the run ledger. Meant for tests."""
        await self.stop()
        await self._ledger.clear()

    # -- Internal --------------------------------------------------------------

    def _build_ledger(self) -> SQLiteRunLedger:
        return SQLiteRunLedger(
            db_path=self._settings.database_path, table=self._settings.store_name
        )

    def _apply_settings(self) -> None:
        configure_logging(self._settings)
        self._timezone = resolve_timezone(self._settings)
        self._parser = ScheduleParser(self._timezone)

    def _source_for(self, job: JobDefinition) -> OccurrenceSource:
        try:
            return self._parser.wrap(job.schedule(self._parser))
        except JobValidationError:
            raise
        except Exception as exc:
            msg = f"Job {job.name!r}: schedule could not be evaluated: {exc}"
            raise JobValidationError(msg) from exc

    def _schedule(self, entry: ScheduledEntry) -> None:
        if entry.scheduled:
            return
        source = self._source_for(entry.job)
        draining = self._draining.pop(entry.name, None)
        previous = entry.timer or draining
        entry.timer = RecurringTimer(
            source,
            functools.partial(self._executor.execute, entry.job),
            name=entry.name,
            predecessor=previous if previous is not None and not previous.finished else None,
        ).start()
        logger.info('Scheduled "%s" next run @ %s', entry.name, source.first())

    def _start_expiry(self) -> None:
        if self._retention is None:
            return
        if self._expiry_task is not None and not self._expiry_task.done():
            return
        self._expiry_task = asyncio.get_running_loop().create_task(
            self._expiry_loop(self._retention), name="synced-cron:expiry"
        )

    async def _stop_expiry(self) -> None:
        task, self._expiry_task = self._expiry_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _expiry_loop(self, retention: int) -> None:
        while True:
            try:
                await self._ledger.purge_expired(retention)
            except StoreError:
                logger.exception("Failed to expire run records")
            await asyncio.sleep(self._settings.expiry_interval_seconds)
