"""Create, extend and edit application records."""
import logging
from dataclasses import replace
from datetime import datetime
from typing import Optional, Sequence

from ..domain import (
    ApplicationRecord,
    ApplicationStatus,
    FieldProvenance,
    MergeResult,
    ProcessedEmail,
    StatusHistoryEntry,
    normalize_company_name,
    record_id_for_key,
)
from ..errors import NotFound
from ..events import EventBus, RecordAccepted, TransitionRejected
from ..merger import RecordMerger, UNKNOWN_POSITION
from ..transitions import require_valid_transition

logger = logging.getLogger(__name__)

MANUAL_SOURCE = "manual"


class ApplicationService:
    """Single entry point for every write to an ApplicationRecord."""

    def __init__(self, repository, merger: RecordMerger, events: Optional[EventBus] = None):
        self.repository = repository
        self.merger = merger
        self.events = events or EventBus()

    def get(self, record_id: str) -> ApplicationRecord:
        record = self.repository.get_record(record_id)
        if record is None:
            raise NotFound(f"Application {record_id} not found")
        return record

    def list(self) -> list[ApplicationRecord]:
        return self.repository.list_records()

    def find_existing(self, emails: Sequence[ProcessedEmail]) -> Optional[ApplicationRecord]:
        """Record these emails belong to, if one is stored already."""
        first = min(emails, key=lambda pe: (pe.received_at, pe.email_id))
        key = first.application_key()
        record = self.repository.find_record_by_key(key) or self.repository.get_record(record_id_for_key(key))
        if record is not None:
            return record

        # Same company where one side never learned the position.
        company = normalize_company_name(first.fields.company)
        if not company:
            return None
        position = first.fields.position
        matches = [
            r
            for r in self.repository.list_records()
            if (normalize_company_name(r.company) or "").lower() == company.lower()
            and (not position or r.position == UNKNOWN_POSITION)
        ]
        return matches[0] if len(matches) == 1 else None

    def preview(self, emails: Sequence[ProcessedEmail]) -> MergeResult:
        """What accepting these emails would produce, without persisting anything."""
        return self.merger.merge(self.find_existing(emails), emails)

    def accept(
        self,
        emails: Sequence[ProcessedEmail],
        consume_queue_item: Optional[str] = None,
    ) -> ApplicationRecord:
        """
        Merge emails that describe one application into its record and persist.

        Used for auto-accepted emails and for approved review items alike.
        """
        if not emails:
            raise ValueError("accept() needs at least one email")
        existing = self.find_existing(emails)
        result = self.merger.merge(existing, emails)
        self.repository.put_record(result.record, result.rejected_transitions, consume_queue_item)

        logger.info(
            f"{'Created' if existing is None else 'Updated'} application {result.record.record_id} "
            f"({result.record.company} / {result.record.position}, {result.record.status.value})"
        )
        self.events.publish(RecordAccepted(record=result.record, created=existing is None))
        for event in result.rejected_transitions:
            self.events.publish(TransitionRejected(event=event))
        return result.record

    def update_status(self, record_id: str, status: ApplicationStatus, note: str = "") -> ApplicationRecord:
        """Direct user edit; still bound by the lifecycle state machine."""
        record = self.get(record_id)
        status = ApplicationStatus(status)
        if status == record.status:
            return record
        require_valid_transition(record.status, status)

        now = datetime.utcnow()
        if record.status_history and record.status_history[-1].timestamp > now:
            now = record.status_history[-1].timestamp
        entry = StatusHistoryEntry(status=status, source_email_id=MANUAL_SOURCE, timestamp=now, confidence=1.0)
        line = f"[{now.date().isoformat()}] Status set to {status.value} manually"
        if note:
            line += f": {note}"
        provenance = dict(record.provenance)
        provenance["status"] = FieldProvenance(field="status", source_email_id=MANUAL_SOURCE, confidence=1.0, timestamp=now)
        updated = replace(
            record,
            status=status,
            status_history=record.status_history + (entry,),
            provenance=provenance,
            notes="\n".join(n for n in (record.notes, line) if n),
            updated_at=now,
        )
        self.repository.put_record(updated)
        logger.info(f"Application {record_id} status {record.status.value} -> {status.value} (manual)")
        self.events.publish(RecordAccepted(record=updated, created=False))
        return updated


def group_by_application(emails: Sequence[ProcessedEmail]) -> list[list[ProcessedEmail]]:
    """Group emails by application key, each group oldest first, groups by first arrival."""
    groups: dict[str, list[ProcessedEmail]] = {}
    for pe in sorted(emails, key=lambda p: (p.received_at, p.email_id)):
        groups.setdefault(pe.application_key(), []).append(pe)
    return list(groups.values())


