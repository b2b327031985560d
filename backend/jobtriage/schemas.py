"""Pydantic schemas for API."""
from datetime import date, datetime
from pydantic import BaseModel, Field
from typing import Optional, List, Dict

from .domain import ApplicationStatus, RawEmail


# =============================================================================
# Batch runs
# =============================================================================

class EmailInput(BaseModel):
    """One email handed over by the retrieval collaborator."""
    email_id: str
    subject: str = ""
    body: str = ""
    sender: str = ""
    received_at: datetime
    thread_id: Optional[str] = None

    def to_raw(self) -> RawEmail:
        return RawEmail(
            email_id=self.email_id,
            subject=self.subject,
            body=self.body,
            sender=self.sender,
            received_at=self.received_at,
            thread_id=self.thread_id,
        )


class BatchRequest(BaseModel):
    emails: List[EmailInput]


class ItemOutcomeResponse(BaseModel):
    email_id: str
    lane: Optional[str] = None
    confidence: float = 0.0
    record_id: Optional[str] = None
    reason: str = ""
    error: Optional[str] = None


class RunSummaryResponse(BaseModel):
    total_seen: int
    processed: int
    auto_accepted: int
    queued: int
    discarded: int
    errors: int
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    outcomes: List[ItemOutcomeResponse] = []


class RunQueuedResponse(BaseModel):
    task_id: str
    message: str


# =============================================================================
# Applications
# =============================================================================

class StatusHistoryEntryResponse(BaseModel):
    status: str
    source_email_id: str
    timestamp: datetime
    confidence: float


class ProvenanceResponse(BaseModel):
    field: str
    source_email_id: str
    confidence: float
    timestamp: Optional[datetime] = None


class ApplicationResponse(BaseModel):
    record_id: str
    company: str
    position: str
    status: str
    applied_date: Optional[date] = None
    contact_email: Optional[str] = None
    job_url: Optional[str] = None
    salary: Optional[str] = None
    location: Optional[str] = None
    recruiter_name: Optional[str] = None
    interviewer_name: Optional[str] = None
    notes: str = ""
    status_history: List[StatusHistoryEntryResponse] = []
    provenance: Dict[str, ProvenanceResponse] = {}
    source_email_ids: List[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StatusUpdateRequest(BaseModel):
    status: ApplicationStatus
    note: str = ""


class TransitionEventResponse(BaseModel):
    record_id: str
    source_email_id: str
    current: Optional[str] = None
    proposed: str
    confidence: float
    reason: str
    timestamp: datetime


# =============================================================================
# Review queue
# =============================================================================

class StatusCandidateResponse(BaseModel):
    status: str
    confidence: float
    reasoning: str = ""
    source: str = "local"
    indicators: List[str] = []
    suggested_action: Optional[str] = None


class ReviewItemResponse(BaseModel):
    item_id: str
    queued_at: datetime
    subject: str
    sender: str
    received_at: datetime
    confidence: float
    reasoning: str = ""
    fields: dict = {}
    status: StatusCandidateResponse
    suggested: ApplicationResponse


class ClearQueueResponse(BaseModel):
    cleared: int


class DecisionAidResponse(BaseModel):
    """Deep-tier opinion on a queued email; `available` is False when the model could not answer."""
    available: bool
    reason: Optional[str] = None
    is_job_related: Optional[bool] = None
    confidence: Optional[float] = None
    reasoning: Optional[str] = None
    tier: Optional[str] = None
    model: Optional[str] = None
    fields: dict = Field(default_factory=dict)
    status: Optional[StatusCandidateResponse] = None
