"""Run ledger — the shared history of claimed occurrences.

Every process in the fleet writes to the same ledger. A unique index on
``(intended_at, name)`` turns "N processes about to run this occurrence" into
"one insert succeeds, the rest get DuplicateOccurrence".
"""

from __future__ import annotations

import contextlib
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import aiosqlite

from synced_cron.config import settings
from synced_cron.errors import DuplicateOccurrence, StoreError
from synced_cron.scheduler.models import (
    RunRecord,
    encode_result,
    make_record_id,
    utc_now_iso,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS {table} (
        id TEXT PRIMARY KEY,
        intended_at TEXT NOT NULL,
        name TEXT NOT NULL,
        started_at TEXT NOT NULL,
        finished_at TEXT,
        result TEXT,
        error TEXT
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS {table}_occurrence ON {table} (intended_at, name)",
    "CREATE INDEX IF NOT EXISTS {table}_started_at ON {table} (started_at)",
)

_COLUMNS = "id, intended_at, name, started_at, finished_at, result, error"


@runtime_checkable
class RunLedger(Protocol):
    """What the executor and engine need from a shared run store."""

    async def setup(self) -> None:
        """Create tables and the ``(intended_at, name)`` unique index."""
        ...

    async def claim(self, intended_at: str, name: str) -> str:
        """Insert a run record and return its id.

        Raises DuplicateOccurrence when the occurrence is already claimed.
        """
        ...

    async def complete(self, record_id: str, result: Any) -> bool:
        """Mark a run finished with *result*."""
        ...

    async def fail(self, record_id: str, error: str) -> bool:
        """Mark a run finished with *error*."""
        ...

    async def list_runs(self, name: str | None = None, limit: int = 50) -> list[RunRecord]:
        """Recent records, newest first."""
        ...

    async def purge_expired(self, retention_seconds: int, now: datetime | None = None) -> int:
        """Delete records started more than *retention_seconds* ago."""
        ...

    async def clear(self) -> int:
        """Delete every record."""
        ...


class SQLiteRunLedger:
    """Run ledger on a SQLite file shared by every scheduler process.

    Pass an explicit *db_path* / *table* for test isolation
    (e.g. ``tmp_path / "test.db"``); otherwise both come from settings.
    """

    def __init__(self, db_path: Path | None = None, table: str | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._table = table or settings.store_name
        self._initialised = False

    @property
    def table(self) -> str:
        return self._table

    @property
    def db_path(self) -> Path:
        return self._db_path

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        await db.execute("PRAGMA busy_timeout=5000")
        await db.execute("PRAGMA journal_mode=WAL")
        if not self._initialised:
            for statement in _SCHEMA:
                await db.execute(statement.format(table=self._table))
            await db.commit()
            self._initialised = True
        return db

    @contextlib.asynccontextmanager
    async def _session(self, action: str) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection and turn driver failures into StoreError."""
        db = None
        try:
            db = await self._connect()
            yield db
        except (aiosqlite.Error, OSError) as exc:
            msg = f"Run ledger {action} failed: {exc}"
            raise StoreError(msg) from exc
        finally:
            if db is not None:
                await db.close()

    # -- Claim protocol --------------------------------------------------------

    async def setup(self) -> None:
        """Create the table and indexes now rather than on first use."""
        async with self._session("setup"):
            pass
        logger.debug("Run ledger ready: %s (%s)", self._table, self._db_path)

    async def claim(self, intended_at: str, name: str) -> str:
        record = RunRecord(id=make_record_id(), intended_at=intended_at, name=name)
        async with self._session("claim") as db:
            try:
                await db.execute(
                    f"INSERT INTO {self._table} ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",  # noqa: S608
                    record.to_row(),
                )
                await db.commit()
            except aiosqlite.IntegrityError:
                existing = await self._find_id(db, intended_at, name)
                raise DuplicateOccurrence(name, intended_at, existing) from None
        return record.id

    async def complete(self, record_id: str, result: Any) -> bool:
        return await self._finish(record_id, "result", encode_result(result))

    async def fail(self, record_id: str, error: str) -> bool:
        return await self._finish(record_id, "error", error)

    async def _finish(self, record_id: str, column: str, value: str) -> bool:
        async with self._session("update") as db:
            cursor = await db.execute(
                f"UPDATE {self._table} SET finished_at = ?, {column} = ? WHERE id = ?",  # noqa: S608
                (utc_now_iso(), value, record_id),
            )
            await db.commit()
            updated = cursor.rowcount > 0
        if not updated:
            logger.warning("Run record not found: %s", record_id)
        return updated

    # -- Queries ---------------------------------------------------------------

    async def get(self, record_id: str) -> RunRecord | None:
        """Fetch a record by ID, or None if not found."""
        async with self._session("get") as db:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM {self._table} WHERE id = ?",  # noqa: S608
                (record_id,),
            )
            row = await cursor.fetchone()
        return RunRecord.from_row(tuple(row)) if row else None

    async def find(self, intended_at: str, name: str) -> RunRecord | None:
        """Fetch the record owning an occurrence, or None if unclaimed."""
        async with self._session("find") as db:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM {self._table} WHERE intended_at = ? AND name = ?",  # noqa: S608
                (intended_at, name),
            )
            row = await cursor.fetchone()
        return RunRecord.from_row(tuple(row)) if row else None

    async def list_runs(self, name: str | None = None, limit: int = 50) -> list[RunRecord]:
        """Return recent records, newest first, optionally for one job."""
        query = f"SELECT {_COLUMNS} FROM {self._table}"  # noqa: S608
        params: tuple = ()
        if name is not None:
            query += " WHERE name = ?"
            params = (name,)
        query += " ORDER BY started_at DESC LIMIT ?"
        async with self._session("list") as db:
            cursor = await db.execute(query, (*params, limit))
            rows = await cursor.fetchall()
        return [RunRecord.from_row(tuple(row)) for row in rows]

    async def count(self, name: str | None = None) -> int:
        query = f"SELECT COUNT(*) FROM {self._table}"  # noqa: S608
        params: tuple = ()
        if name is not None:
            query += " WHERE name = ?"
            params = (name,)
        async with self._session("count") as db:
            cursor = await db.execute(query, params)
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    # -- Housekeeping ----------------------------------------------------------

    async def purge_expired(self, retention_seconds: int, now: datetime | None = None) -> int:
        cutoff = utc_now_iso((now or datetime.now(UTC)) - timedelta(seconds=retention_seconds))
        async with self._session("purge") as db:
            cursor = await db.execute(
                f"DELETE FROM {self._table} WHERE started_at < ?",  # noqa: S608
                (cutoff,),
            )
            await db.commit()
            deleted = cursor.rowcount
        if deleted:
            logger.info("Expired %d run record(s) older than %s", deleted, cutoff)
        return deleted

    async def clear(self) -> int:
        async with self._session("clear") as db:
            cursor = await db.execute(f"DELETE FROM {self._table}")  # noqa: S608
            await db.commit()
            return cursor.rowcount

    async def _find_id(self, db: aiosqlite.Connection, intended_at: str, name: str) -> str | None:
        cursor = await db.execute(
            f"SELECT id FROM {self._table} WHERE intended_at = ? AND name = ?",  # noqa: S608
            (intended_at, name),
        )
        row = await cursor.fetchone()
        return row[0] if row else None
