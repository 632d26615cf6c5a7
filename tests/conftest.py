"""Shared test fixtures."""

import logging
from pathlib import Path

import pytest

from synced_cron.logs import PACKAGE_LOGGER, CallbackHandler
from synced_cron.scheduler.store import SQLiteRunLedger


@pytest.fixture(autouse=True)
def _restore_logging():
    """Undo whatever configure_logging() did to the package logger."""
    yield
    pkg_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(pkg_logger.handlers):
        if isinstance(handler, CallbackHandler):
            pkg_logger.removeHandler(handler)
    pkg_logger.propagate = True
    pkg_logger.setLevel(logging.NOTSET)


@pytest.fixture
async def ledger(tmp_path: Path) -> SQLiteRunLedger:
    """Create a run ledger backed by a temp database."""
    return SQLiteRunLedger(db_path=tmp_path / "test.db", table="cron_history")
