"""JobExecutor — claims an occurrence, runs the job, records the outcome."""

from __future__ import annotations

import inspect
import logging
import traceback
from typing import TYPE_CHECKING

from synced_cron.errors import DuplicateOccurrence, StoreError
from synced_cron.scheduler.models import occurrence_key, truncate_to_second

if TYPE_CHECKING:
    from collections.abc import Awaitable
    from datetime import datetime

    from synced_cron.scheduler.models import JobDefinition
    from synced_cron.scheduler.store import RunLedger

logger = logging.getLogger(__name__)


class JobExecutor:
    """Runs one occurrence of a job at most once across every process.

    Args:
        ledger: Shared run store; its unique ``(intended_at, name)`` constraint
            is the only cross-process coordination.
    """

    def __init__(self, ledger: RunLedger) -> None:
        self._ledger = ledger

    async def execute(self, job: JobDefinition, intended_at: datetime) -> str | None:
        """Run *job* for the occurrence at *intended_at*.

        Returns the id of the run record that owns the occurrence (the
        existing one when another attempt got there first), or None when
        nothing was recorded. Job failures are recorded, never raised.
        """
        intended_at = truncate_to_second(intended_at)
        if not job.persist:
            await self._run(job, intended_at)
            return None

        key = occurrence_key(intended_at)
        try:
            record_id = await self._ledger.claim(key, job.name)
        except DuplicateOccurrence as dup:
            logger.info('Not running "%s" again.', job.name)
            return dup.record_id
        except StoreError:
            logger.exception('Could not claim "%s" @ %s; skipping this run', job.name, key)
            return None

        try:
            output = await self._run(job, intended_at)
        except Exception:
            await self._record(self._ledger.fail(record_id, traceback.format_exc()), job)
        else:
            await self._record(self._ledger.complete(record_id, output), job)
        return record_id

    async def _run(self, job: JobDefinition, intended_at: datetime) -> object:
        """Invoke the job function, awaiting it if it is async.

        For non-persisted jobs failures are logged and swallowed here; for
        persisted jobs they are re-raised after logging so they can be recorded.
        """
        logger.info('Starting "%s".', job.name)
        try:
            output = job.job(intended_at, job.name)
            if inspect.isawaitable(output):
                output = await output
        except Exception:
            logger.exception('Exception "%s"', job.name)
            if job.persist:
                raise
            return None
        logger.info('Finished "%s".', job.name)
        return output

    @staticmethod
    async def _record(update: Awaitable[bool], job: JobDefinition) -> None:
        """Await a ledger write; the job already ran, so failures are only logged."""
        try:
            await update
        except StoreError:
            logger.exception('Could not record outcome of "%s"', job.name)
