#!/usr/bin/env python3
"""
Clear the review queue and, optionally, every application record.

This is a destructive operation. By default it will refuse to run unless you pass
--yes-really.

Usage (from backend/):
  ./.venv/bin/python scripts/reset_state.py --yes-really
  ./.venv/bin/python scripts/reset_state.py --yes-really --all
"""

from __future__ import annotations

import argparse
import os
import sys

# Ensure the backend package is importable when run as script from backend or project root
_script_dir = os.path.dirname(os.path.abspath(__file__))
_backend = os.path.dirname(_script_dir)
if _backend not in sys.path:
    sys.path.insert(0, _backend)

from sqlalchemy import delete

from jobtriage.config import settings
from jobtriage.database import SessionLocal, init_db
from jobtriage.models import (
    ApplicationRow,
    EmailLog,
    ReviewQueueRow,
    RunSummaryRow,
    StatusHistoryRow,
    TransitionEventRow,
)


def main() -> int:
    parser = argparse.ArgumentParser(description="Clear triage state.")
    parser.add_argument("--yes-really", action="store_true", help="Required. Actually perform the delete.")
    parser.add_argument(
        "--all",
        action="store_true",
        help="Also delete application records, audit events, run summaries and the processed-email log.",
    )
    args = parser.parse_args()

    if not args.yes_really:
        print(
            "Refusing to run without --yes-really.\n"
            "Example:\n"
            "  python backend/scripts/reset_state.py --yes-really",
            file=sys.stderr,
        )
        return 2

    init_db()
    tables = [ReviewQueueRow]
    if args.all:
        tables += [StatusHistoryRow, TransitionEventRow, ApplicationRow, RunSummaryRow, EmailLog]

    db = SessionLocal()
    try:
        counts = {}
        for model in tables:
            result = db.execute(delete(model))
            counts[model.__tablename__] = result.rowcount or 0
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    print(f"Database: {settings.database_url}")
    for table, count in counts.items():
        print(f"  {table}: deleted {count} row(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
