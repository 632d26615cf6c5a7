#!/usr/bin/env python3
"""Print recent job runs from the shared run ledger.

Usage examples:
    # Latest 20 runs of every job
    uv run python scripts/history.py

    # Only one job
    uv run python scripts/history.py --name "Nightly report" --limit 50

    # A specific ledger file / table
    uv run python scripts/history.py --db data/synced_cron.db --store cron_history
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from synced_cron.config import Settings, settings
from synced_cron.errors import StoreError
from synced_cron.scheduler.store import SQLiteRunLedger


def format_run(run) -> str:  # noqa: ANN001
    if run.error is not None:
        status = "FAILED"
    elif run.finished:
        status = "ok"
    else:
        status = "running"
    outcome = run.error.splitlines()[-1] if run.error else run.result
    return f"{run.intended_at}  {run.name:<30}  {status:<8} {outcome if outcome is not None else ''}"


async def show(config: Settings, name: str | None, limit: int) -> int:
    ledger = SQLiteRunLedger(db_path=config.database_path, table=config.store_name)
    try:
        runs = await ledger.list_runs(name=name, limit=limit)
    except StoreError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    if not runs:
        print("No runs recorded.")
        return 0
    for run in runs:
        print(format_run(run))
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Show recent SyncedCron job runs")
    parser.add_argument("--name", help="Only show runs of this job")
    parser.add_argument("--limit", type=int, default=20, help="Number of runs (default 20)")
    parser.add_argument("--db", type=Path, default=settings.database_path, help="SQLite file")
    parser.add_argument("--store", default=settings.store_name, help="Ledger table name")
    args = parser.parse_args()

    config = settings.merged(database_path=args.db, store_name=args.store)
    sys.exit(asyncio.run(show(config, args.name, args.limit)))


if __name__ == "__main__":
    main()
