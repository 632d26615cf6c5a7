"""RecurringTimer — fires a callback once per occurrence of a schedule.

The timer is a chain of single-shot waits rather than a fixed-period interval,
because cron-like occurrences are irregularly spaced. Each cycle asks the
occurrence source for the next two fire times, works out one ``TimerStep``
and sleeps for it.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, NamedTuple

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from synced_cron.scheduler.occurrences import OccurrenceSource

logger = logging.getLogger(__name__)

# Largest delay a 32-bit millisecond timer can hold (~24.8 days).
MAX_DELAY_SECONDS = (2**31 - 1) / 1000
# Occurrences closer than this are skipped in favour of the one after.
MIN_FIRE_DELAY_SECONDS = 1.0


class TimerState(enum.StrEnum):
    IDLE = "idle"
    WAITING = "waiting"
    FIRING = "firing"
    CANCELLED = "cancelled"
    EXHAUSTED = "exhausted"


class TimerStep(NamedTuple):
    """One planned wait. ``fire=False`` means wake up and re-plan only."""

    delay: float
    intended_at: datetime
    fire: bool


class RecurringTimer:
    """Cancellable per-job timer chain.

    Args:
        source: Where fire times come from.
        callback: Async callable invoked with the intended occurrence time.
        name: Used in log messages and the asyncio task name.
        clock: Returns the current aware datetime (injectable for tests).
        sleep: Async sleep function (injectable for tests).
        predecessor: A cancelled timer for the same job whose fire may still be
            in flight; this timer does not fire until it has finished.
    """

    def __init__(
        self,
        source: OccurrenceSource,
        callback: Callable[[datetime], Awaitable[Any]],
        *,
        name: str = "",
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        predecessor: RecurringTimer | None = None,
    ) -> None:
        self.source = source
        self.name = name
        self._callback = callback
        self._clock = clock or (lambda: datetime.now(source.timezone))
        self._sleep = sleep
        self._state = TimerState.IDLE
        self._task: asyncio.Task | None = None
        self._next_fire: datetime | None = None
        self._predecessor = predecessor

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state in (TimerState.IDLE, TimerState.WAITING, TimerState.FIRING)

    @property
    def finished(self) -> bool:
        """True once the timer task has ended (or was never started)."""
        return self._task is None or self._task.done()

    @property
    def next_fire(self) -> datetime | None:
        """The occurrence the timer is currently waiting for, if any."""
        return self._next_fire

    # -- Planning --------------------------------------------------------------

    def plan(self, now: datetime, carried: datetime | None = None) -> TimerStep | None:
        """Work out the next wait from *now*. None means the schedule is exhausted.

        *carried* is the occurrence an overflow wake-up was waiting for; it
        fires even when it is now under a second away.
        """
        upcoming = self.source.next(2, now)
        if not upcoming:
            return None

        intended_at = upcoming[0]
        delay = (intended_at - now).total_seconds()
        if delay < MIN_FIRE_DELAY_SECONDS and intended_at != carried:
            if len(upcoming) < 2:
                return None
            intended_at = upcoming[1]
            delay = (intended_at - now).total_seconds()

        if delay >= MAX_DELAY_SECONDS:
            return TimerStep(MAX_DELAY_SECONDS, intended_at, fire=False)
        return TimerStep(delay, intended_at, fire=True)

    # -- Lifecycle -------------------------------------------------------------

    def start(self) -> RecurringTimer:
        """Spawn the timer task. Must be called with a running event loop."""
        if self._task is not None or self._state is TimerState.CANCELLED:
            return self
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"synced-cron:{self.name}"
        )
        return self

    def cancel(self) -> None:
        """Stop all future fires. A fire already in flight runs to completion."""
        if self._state is TimerState.CANCELLED:
            return
        in_flight = self._state is TimerState.FIRING
        self._state = TimerState.CANCELLED
        self._next_fire = None
        if self._task is not None and not in_flight:
            self._task.cancel()

    async def join(self) -> None:
        """Wait for the timer task to finish (after cancel or exhaustion)."""
        if self._task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

    # -- Internal --------------------------------------------------------------

    async def _run(self) -> None:
        carried: datetime | None = None
        while self._state is not TimerState.CANCELLED:
            try:
                step = self.plan(self._clock(), carried)
            except Exception:
                logger.exception("Could not compute next occurrence for %s", self.name)
                step = None
            if step is None:
                logger.debug("No more occurrences for %s", self.name)
                self._state = TimerState.EXHAUSTED
                self._next_fire = None
                return

            self._state = TimerState.WAITING
            self._next_fire = step.intended_at
            await self._sleep(step.delay)
            if not step.fire:
                carried = step.intended_at
                continue
            carried = None

            await self._wait_for_predecessor()
            if self._state is TimerState.CANCELLED:
                return

            self._state = TimerState.FIRING
            try:
                await self._callback(step.intended_at)
            except Exception:
                logger.exception("Exception running scheduled job %s", self.name)

    async def _wait_for_predecessor(self) -> None:
        predecessor, self._predecessor = self._predecessor, None
        if predecessor is None or predecessor.finished:
            return
        logger.debug("Waiting for the previous run of %s to finish", self.name)
        # wait() does not cancel the awaited task when this one is cancelled.
        await asyncio.wait([predecessor._task])
