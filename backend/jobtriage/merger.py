"""
Reconcile several emails about one application into a single record.

Emails are replayed oldest first. Each record field has a fixed selection
policy:

- status: walks forward through the state machine; only validated changes
  enter the history, everything else becomes an audit event.
- company / position: first confident extraction wins and never drifts.
- applied_date: earliest application-indicating email.
- contact_email: latest human address; automated senders only as a last resort.
- job_url: first seen.
- location: meeting links beat physical addresses; latest wins within a kind.
- salary, recruiter_name, interviewer_name: latest mention wins.
- notes: append-only timeline with source attribution, kept in date order.

"Latest" is judged by received_at against the stored provenance, so an
older email reaching an existing record later cannot overwrite a newer value.

Emails already folded into the existing record are skipped, which makes
re-merging the same input a no-op.
"""
from __future__ import annotations

import logging
import re
from dataclasses import replace
from datetime import date, datetime
from typing import Iterable, Optional

from .domain import (
    ApplicationRecord,
    ApplicationStatus,
    FieldProvenance,
    MergeConflict,
    MergeResult,
    ProcessedEmail,
    RECORD_FIELDS,
    StatusHistoryEntry,
    TransitionEvent,
    application_key,
    normalize_company_name,
    record_id_for_key,
)
from .extraction import is_automated_address, is_meeting_url, sender_address
from .transitions import UNCHANGED, TransitionValidator

logger = logging.getLogger(__name__)

UNKNOWN_COMPANY = "Unknown Company"
UNKNOWN_POSITION = "Unknown Position"
OUT_OF_ORDER = "out_of_order"

# Location precision ranks
_PHYSICAL = 1
_VIRTUAL = 2


_NOTE_DAY = re.compile(r"^\[(\d{4}-\d{2}-\d{2})\] ")


def _location_rank(value: Optional[str]) -> int:
    if not value:
        return 0
    return _VIRTUAL if is_meeting_url(value) else _PHYSICAL


def _same_identity(a: Optional[str], b: Optional[str], company: bool) -> bool:
    if company:
        a, b = normalize_company_name(a), normalize_company_name(b)
    return (a or "").strip().lower() == (b or "").strip().lower()


def _sort_key(pe: ProcessedEmail):
    return (pe.received_at, pe.email_id)


def _indicates_application(pe: ProcessedEmail) -> bool:
    if pe.fields.applied_date:
        return True
    status = pe.status
    return status.status is ApplicationStatus.APPLIED and (bool(status.indicators) or status.source != "local")


def _note_blocks(notes: str) -> list[str]:
    """Split a timeline into entries; indented continuation lines stay with their entry."""
    blocks: list[str] = []
    for line in notes.split("\n"):
        if blocks and line.startswith("    "):
            blocks[-1] += "\n" + line
        else:
            blocks.append(line)
    return blocks


def interleave_notes(existing: str, fresh: list[ProcessedEmail]) -> list[str]:
    """Place lines for fresh emails into an existing timeline by day.

    Existing text is kept verbatim and in its original order. A fresh line
    lands before the first dated entry from a later day; undated text never
    moves.
    """
    pending = [(pe.received_at.date().isoformat(), note_line(pe)) for pe in fresh]
    merged: list[str] = []
    for block in _note_blocks(existing):
        match = _NOTE_DAY.match(block)
        if match:
            while pending and pending[0][0] < match.group(1):
                merged.append(pending.pop(0)[1])
        merged.append(block)
    merged.extend(line for _, line in pending)
    return merged


def note_line(pe: ProcessedEmail) -> str:
    """One attributed timeline line for an email."""
    day = pe.received_at.date().isoformat() if pe.received_at else "unknown date"
    subject = (pe.email.subject or "(no subject)").strip()
    line = (
        f"[{day}] {subject} (email {pe.email_id}; {pe.status.status.value} "
        f"{pe.status.confidence:.0%}; relevance {pe.score.value:.0%})"
    )
    if pe.fields.notes:
        line += "\n    " + pe.fields.notes.replace("\n", "\n    ")
    return line


class _Working:
    """Mutable scratch state for one merge call."""

    def __init__(self, existing: Optional[ApplicationRecord]):
        self.existing = existing
        self.values: dict = {}
        self.provenance: dict[str, FieldProvenance] = {}
        self.history: list[StatusHistoryEntry] = []
        self.events: list[TransitionEvent] = []
        self.conflicts: list[MergeConflict] = []
        self.weak_identity: dict[str, tuple[str, ProcessedEmail]] = {}
        if existing is not None:
            for name in RECORD_FIELDS:
                self.values[name] = getattr(existing, name)
            self.provenance = dict(existing.provenance)
            self.history = list(existing.status_history)

    def set(self, name: str, value, pe: ProcessedEmail, confidence: Optional[float] = None) -> None:
        self.values[name] = value
        self.provenance[name] = FieldProvenance(
            field=name,
            source_email_id=pe.email_id,
            confidence=pe.score.value if confidence is None else confidence,
            timestamp=pe.received_at,
        )

    def get(self, name: str):
        return self.values.get(name)

    def is_newer(self, name: str, pe: ProcessedEmail) -> bool:
        """True when pe is at least as recent as the email behind the stored value."""
        prov = self.provenance.get(name)
        if prov is None or prov.timestamp is None or self.values.get(name) in (None, ""):
            return True
        return _sort_key(pe) >= (prov.timestamp, prov.source_email_id)


class RecordMerger:
    """Builds or extends an ApplicationRecord from processed emails."""

    def __init__(
        self,
        update_threshold: float = 0.6,
        identity_min_confidence: float = 0.25,
        validator: Optional[TransitionValidator] = None,
    ):
        self.validator = validator or TransitionValidator(update_threshold)
        self.identity_min_confidence = identity_min_confidence

    def merge(
        self,
        existing: Optional[ApplicationRecord],
        emails: Iterable[ProcessedEmail],
    ) -> MergeResult:
        seen = set(existing.source_email_ids) if existing else set()
        fresh: dict[str, ProcessedEmail] = {}
        for pe in emails:
            if pe.email_id not in seen:
                fresh.setdefault(pe.email_id, pe)
        ordered = sorted(fresh.values(), key=_sort_key)

        if not ordered:
            if existing is None:
                raise ValueError("Cannot build an application record from no emails")
            return MergeResult(
                record=existing,
                provenance=dict(existing.provenance),
                status_history=existing.status_history,
            )

        work = _Working(existing)
        for pe in ordered:
            self._merge_identity(work, pe)
            self._merge_status(work, pe)
            self._merge_applied_date(work, pe)
            self._merge_contact(work, pe)
            self._merge_location(work, pe)
            self._merge_latest_wins(work, pe)
            if pe.fields.job_url and not work.get("job_url"):
                work.set("job_url", pe.fields.job_url, pe)

        self._finalize_identity(work)
        if not work.get("applied_date"):
            first = ordered[0]
            work.set("applied_date", first.received_at.date(), first)

        record = self._build_record(work, ordered)
        events = tuple(replace(e, record_id=record.record_id) for e in work.events)
        for event in events:
            logger.warning(
                f"Rejected transition {event.current.value if event.current else None} -> "
                f"{event.proposed.value} for {record.record_id} from {event.source_email_id} ({event.reason})"
            )
        return MergeResult(
            record=record,
            provenance=dict(record.provenance),
            status_history=record.status_history,
            rejected_transitions=events,
            conflicts=tuple(work.conflicts),
        )

    # -- identity -----------------------------------------------------------

    def _merge_identity(self, work: _Working, pe: ProcessedEmail) -> None:
        for name in ("company", "position"):
            value = getattr(pe.fields, name)
            if not value:
                continue
            current = work.get(name)
            if current in (UNKNOWN_COMPANY, UNKNOWN_POSITION):
                current = None
            if current:
                if not _same_identity(current, value, company=name == "company"):
                    conflict = MergeConflict(field=name, kept=current, rejected=value, source_email_id=pe.email_id)
                    work.conflicts.append(conflict)
                    logger.warning(
                        f"Merge conflict on {name}: keeping {current!r}, ignoring {value!r} from {pe.email_id}"
                    )
                continue
            if pe.score.value >= self.identity_min_confidence:
                if name == "company":
                    value = normalize_company_name(value) or value
                work.set(name, value, pe)
            else:
                work.weak_identity.setdefault(name, (value, pe))

    def _finalize_identity(self, work: _Working) -> None:
        for name, default in (("company", UNKNOWN_COMPANY), ("position", UNKNOWN_POSITION)):
            if work.get(name):
                continue
            weak = work.weak_identity.get(name)
            if weak:
                work.set(name, weak[0], weak[1])
            else:
                work.values[name] = default

    # -- status -------------------------------------------------------------

    def _merge_status(self, work: _Working, pe: ProcessedEmail) -> None:
        candidate = pe.status
        running = work.get("status")
        record_id = work.existing.record_id if work.existing else None

        if running is None:
            threshold = self.validator.update_threshold
            status = candidate.status if candidate.confidence > threshold else ApplicationStatus.APPLIED
            work.history.append(
                StatusHistoryEntry(
                    status=status,
                    source_email_id=pe.email_id,
                    timestamp=pe.received_at,
                    confidence=candidate.confidence,
                )
            )
            work.set("status", status, pe, confidence=candidate.confidence)
            return

        if candidate.status == running:
            return
        last = work.history[-1].timestamp if work.history else None
        if last is not None and pe.received_at < last:
            reason = OUT_OF_ORDER
        else:
            decision = self.validator.evaluate(running, candidate)
            if decision.applied:
                work.history.append(
                    StatusHistoryEntry(
                        status=candidate.status,
                        source_email_id=pe.email_id,
                        timestamp=pe.received_at,
                        confidence=candidate.confidence,
                    )
                )
                work.set("status", candidate.status, pe, confidence=candidate.confidence)
                return
            reason = decision.reason
        if reason == UNCHANGED:
            return
        work.events.append(
            TransitionEvent(
                record_id=record_id or "",
                source_email_id=pe.email_id,
                current=running,
                proposed=candidate.status,
                confidence=candidate.confidence,
                reason=reason,
                timestamp=pe.received_at,
            )
        )

    # -- other fields -------------------------------------------------------

    def _merge_applied_date(self, work: _Working, pe: ProcessedEmail) -> None:
        if not _indicates_application(pe):
            return
        candidate: date = pe.fields.applied_date or pe.received_at.date()
        current = work.get("applied_date")
        if current is None or candidate < current:
            work.set("applied_date", candidate, pe)

    def _merge_contact(self, work: _Working, pe: ProcessedEmail) -> None:
        candidates = [pe.fields.contact_email, sender_address(pe.email.sender)]
        human = next((c for c in candidates if c and not is_automated_address(c)), None)
        if human:
            current = work.get("contact_email")
            if not current or is_automated_address(current) or work.is_newer("contact_email", pe):
                work.set("contact_email", human, pe)
            return
        automated = next((c for c in candidates if c), None)
        if automated and not work.get("contact_email"):
            work.set("contact_email", automated, pe)

    def _merge_location(self, work: _Working, pe: ProcessedEmail) -> None:
        value = pe.fields.location
        if not value:
            return
        new_rank, current_rank = _location_rank(value), _location_rank(work.get("location"))
        if new_rank > current_rank or (new_rank == current_rank and work.is_newer("location", pe)):
            work.set("location", value, pe)

    def _merge_latest_wins(self, work: _Working, pe: ProcessedEmail) -> None:
        for name in ("salary", "recruiter_name", "interviewer_name"):
            value = getattr(pe.fields, name)
            if value and work.is_newer(name, pe):
                work.set(name, value, pe)

    # -- assembly -----------------------------------------------------------

    def _build_record(self, work: _Working, ordered: list[ProcessedEmail]) -> ApplicationRecord:
        existing = work.existing
        company = work.get("company")
        position = work.get("position")
        if existing is not None:
            record_id = existing.record_id
        else:
            first = ordered[0]
            key = application_key(company, position, fallback=first.email.thread_id or first.email_id)
            record_id = record_id_for_key(key)

        if existing is not None and existing.notes:
            notes_parts = interleave_notes(existing.notes, ordered)
        else:
            notes_parts = [note_line(pe) for pe in ordered]

        created_at: Optional[datetime] = existing.created_at if existing is not None else None
        updated_at: Optional[datetime] = existing.updated_at if existing is not None else None
        last_seen = ordered[-1].received_at
        if updated_at is None or last_seen > updated_at:
            updated_at = last_seen

        return ApplicationRecord(
            record_id=record_id,
            company=company,
            position=position,
            status=work.get("status"),
            applied_date=work.get("applied_date"),
            contact_email=work.get("contact_email"),
            job_url=work.get("job_url"),
            salary=work.get("salary"),
            location=work.get("location"),
            recruiter_name=work.get("recruiter_name"),
            interviewer_name=work.get("interviewer_name"),
            notes="\n".join(notes_parts),
            status_history=tuple(work.history),
            provenance={name: work.provenance[name] for name in RECORD_FIELDS if name in work.provenance},
            source_email_ids=tuple(existing.source_email_ids if existing else ()) + tuple(pe.email_id for pe in ordered),
            created_at=created_at or ordered[0].received_at,
            updated_at=updated_at,
        )


def format_provenance(record: ApplicationRecord) -> str:
    """Readable explanation of where each stored value came from."""
    lines = [f"{record.company} / {record.position} ({record.status.value})"]
    for name in RECORD_FIELDS:
        value = getattr(record, name)
        if value in (None, ""):
            continue
        if hasattr(value, "value"):
            value = value.value
        prov = record.provenance.get(name)
        if prov is None:
            lines.append(f"  {name}: {value} (no source recorded)")
            continue
        when = prov.timestamp.date().isoformat() if prov.timestamp else "unknown date"
        lines.append(f"  {name}: {value} (email {prov.source_email_id}, {prov.confidence:.0%} confidence, {when})")
    if record.status_history:
        lines.append("  history: " + " -> ".join(e.status.value for e in record.status_history))
    return "\n".join(lines)
