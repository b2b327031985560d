"""
Storage for application records, the review queue and run bookkeeping.

The pipeline talks to the Repository protocol only. SqlAlchemyRepository
commits every mutation as its own transaction (rolled back and wrapped in
PersistenceFailure on error); InMemoryRepository keeps plain dicts.
"""
from __future__ import annotations

import logging
import random
import threading
import time
from datetime import datetime
from typing import Iterable, Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .domain import (
    ApplicationRecord,
    ApplicationStatus,
    FieldProvenance,
    ItemOutcome,
    Lane,
    ReviewQueueItem,
    RunSummary,
    StatusHistoryEntry,
    TransitionEvent,
)
from .errors import PersistenceFailure
from .models import (
    ApplicationRow,
    EmailLog,
    ReviewQueueRow,
    RunSummaryRow,
    StatusHistoryRow,
    TransitionEventRow,
)

logger = logging.getLogger(__name__)


class Repository(Protocol):
    # records
    def get_record(self, record_id: str) -> Optional[ApplicationRecord]: ...
    def find_record_by_key(self, key: str) -> Optional[ApplicationRecord]: ...
    def list_records(self) -> list[ApplicationRecord]: ...
    def put_record(
        self,
        record: ApplicationRecord,
        events: Iterable[TransitionEvent] = (),
        consume_queue_item: Optional[str] = None,
    ) -> None: ...
    def delete_record(self, record_id: str) -> bool: ...
    def list_transition_events(self, record_id: Optional[str] = None) -> list[TransitionEvent]: ...

    # review queue
    def get_queue_item(self, item_id: str) -> Optional[ReviewQueueItem]: ...
    def list_queue_items(self) -> list[ReviewQueueItem]: ...
    def put_queue_item(self, item: ReviewQueueItem) -> bool: ...
    def delete_queue_item(self, item_id: str) -> bool: ...
    def clear_queue(self) -> int: ...

    # run bookkeeping
    def mark_processed(self, outcomes: Iterable[ItemOutcome]) -> None: ...
    def processed_ids(self, email_ids: Iterable[str]) -> set[str]: ...
    def save_run_summary(self, summary: RunSummary) -> None: ...
    def last_run_summary(self) -> Optional[RunSummary]: ...


def _is_sqlite_locked_error(exc: BaseException) -> bool:
    msg = str(exc).lower()
    return "database is locked" in msg or "sqlite_busy" in msg


def _commit_with_retry(db: Session, work, *, max_retries: int = 6, base_sleep_s: float = 0.05):
    """
    Run `work` and commit. SQLite can transiently raise 'database is locked'
    during concurrent access; the whole unit is rolled back and replayed with
    exponential backoff + jitter.
    """
    attempt = 0
    while True:
        try:
            result = work()
            db.commit()
            return result
        except OperationalError as e:
            db.rollback()
            if attempt >= max_retries or not _is_sqlite_locked_error(e):
                raise
            sleep_s = min(2.0, base_sleep_s * (2 ** attempt)) + random.uniform(0, 0.05)
            time.sleep(sleep_s)
            attempt += 1


# ---------------------------------------------------------------------------
# Row <-> domain conversion
# ---------------------------------------------------------------------------

def _record_from_row(row: ApplicationRow) -> ApplicationRecord:
    return ApplicationRecord(
        record_id=row.id,
        company=row.company,
        position=row.position,
        status=ApplicationStatus(row.status),
        applied_date=row.applied_date,
        contact_email=row.contact_email,
        job_url=row.job_url,
        salary=row.salary,
        location=row.location,
        recruiter_name=row.recruiter_name,
        interviewer_name=row.interviewer_name,
        notes=row.notes or "",
        status_history=tuple(
            StatusHistoryEntry(
                status=ApplicationStatus(h.status),
                source_email_id=h.source_email_id,
                timestamp=h.timestamp,
                confidence=h.confidence,
            )
            for h in row.status_history
        ),
        provenance={name: FieldProvenance.from_dict(p) for name, p in (row.provenance or {}).items()},
        source_email_ids=tuple(row.source_email_ids or ()),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _apply_record(row: ApplicationRow, record: ApplicationRecord) -> None:
    row.application_key = record.application_key()
    row.company = record.company
    row.position = record.position
    row.status = record.status.value
    row.applied_date = record.applied_date
    row.contact_email = record.contact_email
    row.job_url = record.job_url
    row.salary = record.salary
    row.location = record.location
    row.recruiter_name = record.recruiter_name
    row.interviewer_name = record.interviewer_name
    row.notes = record.notes
    row.provenance = {name: p.to_dict() for name, p in record.provenance.items()}
    row.source_email_ids = list(record.source_email_ids)
    row.created_at = record.created_at or row.created_at or datetime.utcnow()
    row.updated_at = record.updated_at or datetime.utcnow()
    row.status_history = [
        StatusHistoryRow(
            sequence=i,
            status=entry.status.value,
            source_email_id=entry.source_email_id,
            timestamp=entry.timestamp,
            confidence=entry.confidence,
        )
        for i, entry in enumerate(record.status_history)
    ]


def _event_from_row(row: TransitionEventRow) -> TransitionEvent:
    return TransitionEvent(
        record_id=row.application_id,
        source_email_id=row.source_email_id,
        current=ApplicationStatus(row.current_status) if row.current_status else None,
        proposed=ApplicationStatus(row.proposed_status),
        confidence=row.confidence,
        reason=row.reason,
        timestamp=row.timestamp,
    )


def _summary_from_row(row: RunSummaryRow) -> RunSummary:
    outcomes = [
        ItemOutcome(
            email_id=o["email_id"],
            lane=Lane(o["lane"]) if o.get("lane") else None,
            confidence=o.get("confidence") or 0.0,
            record_id=o.get("record_id"),
            reason=o.get("reason") or "",
            error=o.get("error"),
        )
        for o in (row.outcomes or [])
    ]
    return RunSummary(
        total_seen=row.total_seen or 0,
        processed=row.processed or 0,
        auto_accepted=row.auto_accepted or 0,
        queued=row.queued or 0,
        discarded=row.discarded or 0,
        errors=row.errors or 0,
        started_at=row.started_at,
        finished_at=row.finished_at,
        outcomes=outcomes,
    )


class SqlAlchemyRepository:
    """Repository backed by a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    def _write(self, operation: str, fn):
        """Run fn inside one transaction; roll back and raise PersistenceFailure on error."""
        try:
            return _commit_with_retry(self.db, fn)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"{operation} failed: {e}")
            raise PersistenceFailure(operation, str(e)) from e

    def _read(self, operation: str, fn):
        try:
            return fn()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceFailure(operation, str(e)) from e

    # -- records ------------------------------------------------------------

    def _record_query(self):
        return select(ApplicationRow).options(selectinload(ApplicationRow.status_history))

    def get_record(self, record_id: str) -> Optional[ApplicationRecord]:
        def run():
            row = self.db.execute(self._record_query().where(ApplicationRow.id == record_id)).scalar_one_or_none()
            return _record_from_row(row) if row else None
        return self._read("get_record", run)

    def find_record_by_key(self, key: str) -> Optional[ApplicationRecord]:
        def run():
            row = self.db.execute(
                self._record_query().where(ApplicationRow.application_key == key)
            ).scalar_one_or_none()
            return _record_from_row(row) if row else None
        return self._read("find_record_by_key", run)

    def list_records(self) -> list[ApplicationRecord]:
        def run():
            rows = self.db.execute(self._record_query().order_by(ApplicationRow.created_at, ApplicationRow.id)).scalars()
            return [_record_from_row(r) for r in rows]
        return self._read("list_records", run)

    def put_record(
        self,
        record: ApplicationRecord,
        events: Iterable[TransitionEvent] = (),
        consume_queue_item: Optional[str] = None,
    ) -> None:
        """Upsert a record together with its audit events, optionally removing the queue item it came from."""
        def run():
            row = self.db.get(ApplicationRow, record.record_id)
            if row is None:
                row = ApplicationRow(id=record.record_id)
                self.db.add(row)
            else:
                # Replace the history rows rather than diffing them.
                row.status_history.clear()
                self.db.flush()
            _apply_record(row, record)
            for event in events:
                self.db.add(
                    TransitionEventRow(
                        application_id=event.record_id or record.record_id,
                        source_email_id=event.source_email_id,
                        current_status=event.current.value if event.current else None,
                        proposed_status=event.proposed.value,
                        confidence=event.confidence,
                        reason=event.reason,
                        timestamp=event.timestamp,
                    )
                )
            if consume_queue_item is not None:
                self.db.execute(delete(ReviewQueueRow).where(ReviewQueueRow.email_id == consume_queue_item))
        self._write("put_record", run)

    def delete_record(self, record_id: str) -> bool:
        def run():
            row = self.db.get(ApplicationRow, record_id)
            if row is None:
                return False
            self.db.delete(row)
            return True
        return self._write("delete_record", run)

    def list_transition_events(self, record_id: Optional[str] = None) -> list[TransitionEvent]:
        def run():
            stmt = select(TransitionEventRow).order_by(TransitionEventRow.timestamp, TransitionEventRow.id)
            if record_id is not None:
                stmt = stmt.where(TransitionEventRow.application_id == record_id)
            return [_event_from_row(r) for r in self.db.execute(stmt).scalars()]
        return self._read("list_transition_events", run)

    # -- review queue -------------------------------------------------------

    def get_queue_item(self, item_id: str) -> Optional[ReviewQueueItem]:
        def run():
            row = self.db.get(ReviewQueueRow, item_id)
            return ReviewQueueItem.from_dict(row.payload) if row else None
        return self._read("get_queue_item", run)

    def list_queue_items(self) -> list[ReviewQueueItem]:
        def run():
            rows = self.db.execute(
                select(ReviewQueueRow).order_by(ReviewQueueRow.queued_at, ReviewQueueRow.email_id)
            ).scalars()
            return [ReviewQueueItem.from_dict(r.payload) for r in rows]
        return self._read("list_queue_items", run)

    def put_queue_item(self, item: ReviewQueueItem) -> bool:
        """Insert unless an item for the same email exists. Returns True when inserted."""
        def run():
            if self.db.get(ReviewQueueRow, item.item_id) is not None:
                return False
            self.db.add(
                ReviewQueueRow(
                    email_id=item.item_id,
                    queued_at=item.queued_at,
                    confidence=item.processed.score.value,
                    payload=item.to_dict(),
                )
            )
            return True
        return self._write("put_queue_item", run)

    def delete_queue_item(self, item_id: str) -> bool:
        def run():
            result = self.db.execute(delete(ReviewQueueRow).where(ReviewQueueRow.email_id == item_id))
            return (result.rowcount or 0) > 0
        return self._write("delete_queue_item", run)

    def clear_queue(self) -> int:
        def run():
            result = self.db.execute(delete(ReviewQueueRow))
            return result.rowcount or 0
        return self._write("clear_queue", run)

    # -- run bookkeeping ----------------------------------------------------

    def mark_processed(self, outcomes: Iterable[ItemOutcome]) -> None:
        def run():
            for outcome in outcomes:
                self.db.merge(
                    EmailLog(
                        email_id=outcome.email_id,
                        lane=outcome.lane.value if outcome.lane else None,
                        confidence=outcome.confidence,
                        record_id=outcome.record_id,
                        reason=outcome.reason,
                        processed_at=datetime.utcnow(),
                    )
                )
        self._write("mark_processed", run)

    def processed_ids(self, email_ids: Iterable[str]) -> set[str]:
        ids = list(email_ids)
        if not ids:
            return set()

        def run():
            rows = self.db.execute(select(EmailLog.email_id).where(EmailLog.email_id.in_(ids))).scalars()
            return set(rows)
        return self._read("processed_ids", run)

    def save_run_summary(self, summary: RunSummary) -> None:
        def run():
            self.db.add(
                RunSummaryRow(
                    started_at=summary.started_at,
                    finished_at=summary.finished_at,
                    total_seen=summary.total_seen,
                    processed=summary.processed,
                    auto_accepted=summary.auto_accepted,
                    queued=summary.queued,
                    discarded=summary.discarded,
                    errors=summary.errors,
                    outcomes=[o.to_dict() for o in summary.outcomes],
                )
            )
        self._write("save_run_summary", run)

    def last_run_summary(self) -> Optional[RunSummary]:
        def run():
            row = self.db.execute(
                select(RunSummaryRow).order_by(RunSummaryRow.id.desc()).limit(1)
            ).scalar_one_or_none()
            return _summary_from_row(row) if row else None
        return self._read("last_run_summary", run)


class InMemoryRepository:
    """Dict-backed repository for tests and embedding."""

    def __init__(self):
        self._lock = threading.Lock()
        self.records: dict[str, ApplicationRecord] = {}
        self.queue: dict[str, ReviewQueueItem] = {}
        self.events: list[TransitionEvent] = []
        self.processed: dict[str, ItemOutcome] = {}
        self.summaries: list[RunSummary] = []

    def get_record(self, record_id: str) -> Optional[ApplicationRecord]:
        return self.records.get(record_id)

    def find_record_by_key(self, key: str) -> Optional[ApplicationRecord]:
        return next((r for r in self.records.values() if r.application_key() == key), None)

    def list_records(self) -> list[ApplicationRecord]:
        return sorted(self.records.values(), key=lambda r: (r.created_at or datetime.min, r.record_id))

    def put_record(self, record, events=(), consume_queue_item=None) -> None:
        with self._lock:
            self.records[record.record_id] = record
            self.events.extend(events)
            if consume_queue_item is not None:
                self.queue.pop(consume_queue_item, None)

    def delete_record(self, record_id: str) -> bool:
        with self._lock:
            return self.records.pop(record_id, None) is not None

    def list_transition_events(self, record_id: Optional[str] = None) -> list[TransitionEvent]:
        return [e for e in self.events if record_id is None or e.record_id == record_id]

    def get_queue_item(self, item_id: str) -> Optional[ReviewQueueItem]:
        return self.queue.get(item_id)

    def list_queue_items(self) -> list[ReviewQueueItem]:
        return sorted(self.queue.values(), key=lambda i: (i.queued_at, i.item_id))

    def put_queue_item(self, item: ReviewQueueItem) -> bool:
        with self._lock:
            if item.item_id in self.queue:
                return False
            self.queue[item.item_id] = item
            return True

    def delete_queue_item(self, item_id: str) -> bool:
        with self._lock:
            return self.queue.pop(item_id, None) is not None

    def clear_queue(self) -> int:
        with self._lock:
            count = len(self.queue)
            self.queue.clear()
            return count

    def mark_processed(self, outcomes: Iterable[ItemOutcome]) -> None:
        with self._lock:
            for outcome in outcomes:
                self.processed[outcome.email_id] = outcome

    def processed_ids(self, email_ids: Iterable[str]) -> set[str]:
        return {i for i in email_ids if i in self.processed}

    def save_run_summary(self, summary: RunSummary) -> None:
        self.summaries.append(summary)

    def last_run_summary(self) -> Optional[RunSummary]:
        return self.summaries[-1] if self.summaries else None
