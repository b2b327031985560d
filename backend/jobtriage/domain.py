"""
Core value types shared by the triage pipeline.

Everything here is plain data. Inputs (RawEmail) and per-email results
(ExtractedFields, ConfidenceScore, StatusCandidate) are frozen; an
ApplicationRecord is only ever replaced wholesale by the merger or a direct
user edit.
"""
from __future__ import annotations

import hashlib
import re
from dataclasses import asdict, dataclass, field, fields as dc_fields
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional

# Bump when ExtractedFields gains or loses a field.
SCHEMA_VERSION = 1


class ApplicationStatus(str, Enum):
    APPLIED = "applied"
    INTERVIEW = "interview"
    OFFER = "offer"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class Lane(str, Enum):
    AUTO_ACCEPT = "auto_accept"
    REVIEW = "review"
    DISCARD = "discard"


class ModelTier(str, Enum):
    FAST = "fast"
    DEEP = "deep"


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _dt(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return to_naive_utc(value)
    text = str(value).replace("Z", "+00:00")
    return to_naive_utc(datetime.fromisoformat(text))


def _d(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def normalize_company_name(name: Optional[str]) -> Optional[str]:
    """Strip suffixes like Inc/LLC/Corp and surrounding punctuation."""
    if not name:
        return None
    name = name.strip().strip(".,;:-!\"'")
    for suffix in ("Inc", "LLC", "Corp", "Ltd", "Co.", "Company", "L.L.C.", "GmbH"):
        pattern = re.compile(r"[\s,]+" + re.escape(suffix) + r"\.?\s*$", re.I)
        name = pattern.sub("", name).strip()
    return name[:255] or None


def application_key(company: Optional[str], position: Optional[str], fallback: str = "") -> str:
    """Grouping key: emails with the same key describe the same application."""
    company_part = (normalize_company_name(company) or "").lower()
    position_part = re.sub(r"\s+", " ", (position or "").strip().lower())
    if position_part == "unknown position":
        position_part = ""
    if company_part in ("", "unknown", "unknown company"):
        return f"unknown::{fallback}"
    return f"{company_part}::{position_part}"


def record_id_for_key(key: str) -> str:
    return "app-" + hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class RawEmail:
    email_id: str
    subject: str
    body: str
    sender: str
    received_at: datetime
    thread_id: Optional[str] = None

    def __post_init__(self):
        # Timestamps are stored as naive UTC throughout.
        object.__setattr__(self, "received_at", to_naive_utc(self.received_at))

    @property
    def text(self) -> str:
        return f"{self.subject or ''}\n{self.body or ''}"

    def to_dict(self) -> dict:
        return {
            "email_id": self.email_id,
            "subject": self.subject,
            "body": self.body,
            "sender": self.sender,
            "received_at": _iso(self.received_at),
            "thread_id": self.thread_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RawEmail":
        return cls(
            email_id=str(data["email_id"]),
            subject=data.get("subject") or "",
            body=data.get("body") or "",
            sender=data.get("sender") or "",
            received_at=_dt(data["received_at"]),
            thread_id=data.get("thread_id"),
        )


@dataclass(frozen=True)
class ExtractedFields:
    """Closed set of per-email candidate fields. None means nothing was found."""

    company: Optional[str] = None
    position: Optional[str] = None
    applied_date: Optional[date] = None
    contact_email: Optional[str] = None
    job_url: Optional[str] = None
    salary: Optional[str] = None
    location: Optional[str] = None
    recruiter_name: Optional[str] = None
    interviewer_name: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in dc_fields(cls))

    def populated(self) -> list[str]:
        return [name for name in self.names() if getattr(self, name) not in (None, "")]

    def overlay(self, other: "ExtractedFields") -> "ExtractedFields":
        """Return a copy where the other instance's non-empty values win."""
        values = {}
        for name in self.names():
            theirs = getattr(other, name)
            values[name] = theirs if theirs not in (None, "") else getattr(self, name)
        return ExtractedFields(**values)

    def to_dict(self) -> dict:
        data = {name: getattr(self, name) for name in self.names()}
        data["applied_date"] = _iso(self.applied_date)
        data["schema_version"] = SCHEMA_VERSION
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ExtractedFields":
        data = data or {}
        values = {}
        for name in cls.names():
            value = data.get(name)
            if value is not None and not isinstance(value, (str, date)):
                value = str(value)
            if isinstance(value, str):
                value = value.strip() or None
            values[name] = value
        try:
            values["applied_date"] = _d(values["applied_date"])
        except ValueError:
            values["applied_date"] = None
        return cls(**values)


@dataclass(frozen=True)
class ScoreBreakdown:
    identity: float = 0.0
    matched_keywords: tuple[str, ...] = ()
    keyword_score: float = 0.0
    floor_applied: bool = False
    exclusion_matches: tuple[str, ...] = ()
    exclusion_penalty: float = 0.0
    context_matches: tuple[str, ...] = ()
    context_penalty: float = 0.0
    bonus_fields: tuple[str, ...] = ()
    bonus: float = 0.0
    raw: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ScoreBreakdown":
        data = dict(data or {})
        for key in ("matched_keywords", "exclusion_matches", "context_matches", "bonus_fields"):
            data[key] = tuple(data.get(key) or ())
        return cls(**data)


@dataclass(frozen=True)
class ConfidenceScore:
    value: float
    breakdown: ScoreBreakdown = field(default_factory=ScoreBreakdown)
    source: str = "local"
    reasoning: str = ""

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "breakdown": self.breakdown.to_dict(),
            "source": self.source,
            "reasoning": self.reasoning,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConfidenceScore":
        return cls(
            value=float(data["value"]),
            breakdown=ScoreBreakdown.from_dict(data.get("breakdown")),
            source=data.get("source", "local"),
            reasoning=data.get("reasoning", ""),
        )


@dataclass(frozen=True)
class StatusCandidate:
    status: ApplicationStatus
    confidence: float
    reasoning: str
    source: str = "local"
    indicators: tuple[str, ...] = ()
    suggested_action: str = ""

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "source": self.source,
            "indicators": list(self.indicators),
            "suggested_action": self.suggested_action,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StatusCandidate":
        return cls(
            status=ApplicationStatus(data["status"]),
            confidence=float(data["confidence"]),
            reasoning=data.get("reasoning", ""),
            source=data.get("source", "local"),
            indicators=tuple(data.get("indicators") or ()),
            suggested_action=data.get("suggested_action", ""),
        )


@dataclass(frozen=True)
class ProcessedEmail:
    """A RawEmail together with everything the pipeline concluded about it."""

    email: RawEmail
    fields: ExtractedFields
    score: ConfidenceScore
    status: StatusCandidate
    escalated: bool = False

    @property
    def email_id(self) -> str:
        return self.email.email_id

    @property
    def received_at(self) -> datetime:
        return self.email.received_at

    def application_key(self) -> str:
        return application_key(
            self.fields.company,
            self.fields.position,
            fallback=self.email.thread_id or self.email.email_id,
        )

    def to_dict(self) -> dict:
        return {
            "email": self.email.to_dict(),
            "fields": self.fields.to_dict(),
            "score": self.score.to_dict(),
            "status": self.status.to_dict(),
            "escalated": self.escalated,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProcessedEmail":
        return cls(
            email=RawEmail.from_dict(data["email"]),
            fields=ExtractedFields.from_dict(data.get("fields")),
            score=ConfidenceScore.from_dict(data["score"]),
            status=StatusCandidate.from_dict(data["status"]),
            escalated=bool(data.get("escalated", False)),
        )


@dataclass(frozen=True)
class StatusHistoryEntry:
    status: ApplicationStatus
    source_email_id: str
    timestamp: datetime
    confidence: float

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "source_email_id": self.source_email_id,
            "timestamp": _iso(self.timestamp),
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StatusHistoryEntry":
        return cls(
            status=ApplicationStatus(data["status"]),
            source_email_id=data["source_email_id"],
            timestamp=_dt(data["timestamp"]),
            confidence=float(data["confidence"]),
        )


@dataclass(frozen=True)
class FieldProvenance:
    field: str
    source_email_id: str
    confidence: float
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "source_email_id": self.source_email_id,
            "confidence": self.confidence,
            "timestamp": _iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FieldProvenance":
        return cls(
            field=data["field"],
            source_email_id=data["source_email_id"],
            confidence=float(data["confidence"]),
            timestamp=_dt(data.get("timestamp")),
        )


# Record fields that carry provenance, in display order.
RECORD_FIELDS = (
    "company",
    "position",
    "status",
    "applied_date",
    "contact_email",
    "job_url",
    "salary",
    "location",
    "recruiter_name",
    "interviewer_name",
)


@dataclass(frozen=True)
class ApplicationRecord:
    record_id: str
    company: str
    position: str
    status: ApplicationStatus
    applied_date: Optional[date] = None
    contact_email: Optional[str] = None
    job_url: Optional[str] = None
    salary: Optional[str] = None
    location: Optional[str] = None
    recruiter_name: Optional[str] = None
    interviewer_name: Optional[str] = None
    notes: str = ""
    status_history: tuple[StatusHistoryEntry, ...] = ()
    provenance: dict[str, FieldProvenance] = field(default_factory=dict)
    source_email_ids: tuple[str, ...] = ()
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def application_key(self) -> str:
        return application_key(self.company, self.position, fallback=self.record_id)

    def to_dict(self) -> dict:
        return {
            "record_id": self.record_id,
            "company": self.company,
            "position": self.position,
            "status": self.status.value,
            "applied_date": _iso(self.applied_date),
            "contact_email": self.contact_email,
            "job_url": self.job_url,
            "salary": self.salary,
            "location": self.location,
            "recruiter_name": self.recruiter_name,
            "interviewer_name": self.interviewer_name,
            "notes": self.notes,
            "status_history": [entry.to_dict() for entry in self.status_history],
            "provenance": {name: prov.to_dict() for name, prov in self.provenance.items()},
            "source_email_ids": list(self.source_email_ids),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ApplicationRecord":
        return cls(
            record_id=data["record_id"],
            company=data["company"],
            position=data["position"],
            status=ApplicationStatus(data["status"]),
            applied_date=_d(data.get("applied_date")),
            contact_email=data.get("contact_email"),
            job_url=data.get("job_url"),
            salary=data.get("salary"),
            location=data.get("location"),
            recruiter_name=data.get("recruiter_name"),
            interviewer_name=data.get("interviewer_name"),
            notes=data.get("notes") or "",
            status_history=tuple(StatusHistoryEntry.from_dict(e) for e in data.get("status_history") or ()),
            provenance={
                name: FieldProvenance.from_dict(p) for name, p in (data.get("provenance") or {}).items()
            },
            source_email_ids=tuple(data.get("source_email_ids") or ()),
            created_at=_dt(data.get("created_at")),
            updated_at=_dt(data.get("updated_at")),
        )


@dataclass(frozen=True)
class TransitionEvent:
    """A proposed status change that was not applied."""

    record_id: str
    source_email_id: str
    current: Optional[ApplicationStatus]
    proposed: ApplicationStatus
    confidence: float
    reason: str
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "record_id": self.record_id,
            "source_email_id": self.source_email_id,
            "current": self.current.value if self.current else None,
            "proposed": self.proposed.value,
            "confidence": self.confidence,
            "reason": self.reason,
            "timestamp": _iso(self.timestamp),
        }


@dataclass(frozen=True)
class MergeConflict:
    field: str
    kept: str
    rejected: str
    source_email_id: str


@dataclass(frozen=True)
class MergeResult:
    record: ApplicationRecord
    provenance: dict[str, FieldProvenance]
    status_history: tuple[StatusHistoryEntry, ...]
    rejected_transitions: tuple[TransitionEvent, ...] = ()
    conflicts: tuple[MergeConflict, ...] = ()


@dataclass(frozen=True)
class ReviewQueueItem:
    """A mid-confidence email waiting for a human decision, keyed by email id."""

    processed: ProcessedEmail
    suggested: ApplicationRecord
    queued_at: datetime

    @property
    def item_id(self) -> str:
        return self.processed.email_id

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "processed": self.processed.to_dict(),
            "suggested": self.suggested.to_dict(),
            "queued_at": _iso(self.queued_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReviewQueueItem":
        return cls(
            processed=ProcessedEmail.from_dict(data["processed"]),
            suggested=ApplicationRecord.from_dict(data["suggested"]),
            queued_at=_dt(data["queued_at"]),
        )


@dataclass(frozen=True)
class ItemOutcome:
    """Per-email result of a batch run."""

    email_id: str
    lane: Optional[Lane]
    confidence: float = 0.0
    record_id: Optional[str] = None
    reason: str = ""
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "email_id": self.email_id,
            "lane": self.lane.value if self.lane else None,
            "confidence": self.confidence,
            "record_id": self.record_id,
            "reason": self.reason,
            "error": self.error,
        }


@dataclass
class RunSummary:
    total_seen: int = 0
    processed: int = 0
    auto_accepted: int = 0
    queued: int = 0
    discarded: int = 0
    errors: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    outcomes: list[ItemOutcome] = field(default_factory=list)

    def to_dict(self, include_outcomes: bool = True) -> dict[str, Any]:
        data = {
            "total_seen": self.total_seen,
            "processed": self.processed,
            "auto_accepted": self.auto_accepted,
            "queued": self.queued,
            "discarded": self.discarded,
            "errors": self.errors,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
        }
        if include_outcomes:
            data["outcomes"] = [o.to_dict() for o in self.outcomes]
        return data
