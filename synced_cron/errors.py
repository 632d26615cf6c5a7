"""Exception types raised by the scheduler."""

from __future__ import annotations


class SyncedCronError(Exception):
    """Base class for all scheduler errors."""


class JobValidationError(SyncedCronError, ValueError):
    """A job definition is malformed and cannot be registered."""


class DuplicateOccurrence(SyncedCronError):  # noqa: N818
    """Another attempt already claimed this ``(intended_at, name)`` occurrence.

    Not a failure: it is the signal that some other process owns the run.
    """

    def __init__(self, name: str, intended_at: str, record_id: str | None = None) -> None:
        self.name = name
        self.intended_at = intended_at
        self.record_id = record_id
        super().__init__(f"Occurrence {intended_at} of {name!r} already claimed")


class StoreError(SyncedCronError):
    """The run ledger failed for a reason other than a uniqueness conflict."""


class InitError(SyncedCronError):
    """The scheduler could not be initialised (e.g. ledger indexes missing)."""
