#!/usr/bin/env python3
"""
Triage a JSON file of emails without the API or Celery.

The file holds a list of objects with email_id, subject, body, sender,
received_at (ISO 8601) and optionally thread_id.

Usage (from backend/; use the project venv):
  ./.venv/bin/python scripts/run_batch.py emails.json

  # Print every per-email outcome
  ./.venv/bin/python scripts/run_batch.py emails.json --verbose

  # Override the batch size
  ./.venv/bin/python scripts/run_batch.py emails.json --max-emails 200
"""

from __future__ import annotations

import argparse
import json
import os
import sys

# Ensure the backend package is importable when run as script from backend or project root
_script_dir = os.path.dirname(os.path.abspath(__file__))
_backend = os.path.dirname(_script_dir)
if _backend not in sys.path:
    sys.path.insert(0, _backend)

from jobtriage.config import settings
from jobtriage.database import SessionLocal, init_db
from jobtriage.domain import RawEmail
from jobtriage.logging_config import setup_logging
from jobtriage.pipeline import build_pipeline
from jobtriage.repository import SqlAlchemyRepository
from jobtriage.services.email_processor import run_batch


def main() -> int:
    parser = argparse.ArgumentParser(description="Triage a JSON file of emails.")
    parser.add_argument("path", help="JSON file containing a list of emails")
    parser.add_argument("--max-emails", type=int, default=None, help="Batch size (default: MAX_EMAILS_PER_SYNC)")
    parser.add_argument("--verbose", action="store_true", help="Print every per-email outcome")
    args = parser.parse_args()

    setup_logging(settings.log_level, settings.log_file)
    with open(args.path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        print("ERROR: expected a JSON list of emails", file=sys.stderr)
        return 2
    try:
        emails = [RawEmail.from_dict(item) for item in data]
    except (KeyError, ValueError) as e:
        print(f"ERROR: invalid email entry: {e}", file=sys.stderr)
        return 2

    init_db()
    db = SessionLocal()
    try:
        pipeline = build_pipeline(SqlAlchemyRepository(db), settings)
        summary = run_batch(pipeline, emails, max_emails=args.max_emails)
    finally:
        db.close()

    print(json.dumps(summary.to_dict(include_outcomes=args.verbose), indent=2))
    return 1 if summary.errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
