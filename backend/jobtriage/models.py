"""SQLAlchemy models."""
from datetime import datetime
from sqlalchemy import (
    Column,
    Integer,
    String,
    Date,
    DateTime,
    Text,
    Float,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import JSON

Base = declarative_base()


class ApplicationRow(Base):
    __tablename__ = "applications"

    id = Column(String, primary_key=True)  # deterministic record id, see domain.record_id_for_key
    application_key = Column(String, unique=True, index=True, nullable=False)
    company = Column(String, index=True, nullable=False)
    position = Column(String, nullable=False)
    status = Column(String, nullable=False, default="applied")
    applied_date = Column(Date, nullable=True)
    contact_email = Column(String, nullable=True)
    job_url = Column(Text, nullable=True)
    salary = Column(String, nullable=True)
    location = Column(Text, nullable=True)
    recruiter_name = Column(String, nullable=True)
    interviewer_name = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    provenance = Column(JSON, nullable=True)  # field -> {source_email_id, confidence, timestamp}
    source_email_ids = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    status_history = relationship(
        "StatusHistoryRow",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="StatusHistoryRow.sequence",
    )


class StatusHistoryRow(Base):
    __tablename__ = "status_history"

    id = Column(Integer, primary_key=True, index=True)
    application_id = Column(String, ForeignKey("applications.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    status = Column(String, nullable=False)
    source_email_id = Column(String, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    confidence = Column(Float, nullable=False)

    application = relationship("ApplicationRow", back_populates="status_history")

    __table_args__ = (Index("ix_status_history_app_seq", "application_id", "sequence", unique=True),)


class ReviewQueueRow(Base):
    """Pending human decisions, one per source email."""
    __tablename__ = "review_queue"

    email_id = Column(String, primary_key=True)
    queued_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    confidence = Column(Float, nullable=True)
    payload = Column(JSON, nullable=False)  # ReviewQueueItem.to_dict()


class TransitionEventRow(Base):
    """Audit trail of status proposals that were not applied."""
    __tablename__ = "transition_events"

    id = Column(Integer, primary_key=True, index=True)
    application_id = Column(String, index=True, nullable=False)
    source_email_id = Column(String, nullable=False)
    current_status = Column(String, nullable=True)
    proposed_status = Column(String, nullable=False)
    confidence = Column(Float, nullable=False)
    reason = Column(String, nullable=False)
    timestamp = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class EmailLog(Base):
    """Emails a batch run finished with; failed items are never logged so reruns retry them."""
    __tablename__ = "email_logs"

    email_id = Column(String, primary_key=True)
    lane = Column(String, nullable=True)
    confidence = Column(Float, nullable=True)
    record_id = Column(String, nullable=True)
    reason = Column(Text, nullable=True)
    processed_at = Column(DateTime, default=datetime.utcnow)


class RunSummaryRow(Base):
    __tablename__ = "run_summaries"

    id = Column(Integer, primary_key=True, index=True)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True, index=True)
    total_seen = Column(Integer, default=0)
    processed = Column(Integer, default=0)
    auto_accepted = Column(Integer, default=0)
    queued = Column(Integer, default=0)
    discarded = Column(Integer, default=0)
    errors = Column(Integer, default=0)
    outcomes = Column(JSON, nullable=True)
