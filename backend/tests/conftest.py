"""Pytest fixtures: in-memory DB, repositories, pipeline, client."""
import os
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
# Never reach the real AI service from tests.
os.environ["OPENAI_API_KEY"] = ""

import json
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from jobtriage.config import TriageConfig
from jobtriage.domain import (
    ApplicationStatus,
    ConfidenceScore,
    ExtractedFields,
    ProcessedEmail,
    RawEmail,
    StatusCandidate,
)
from jobtriage.events import EventBus
from jobtriage.merger import RecordMerger
from jobtriage.models import Base
from jobtriage.pipeline import TriagePipeline
from jobtriage.repository import InMemoryRepository, SqlAlchemyRepository
from jobtriage.review_queue import ReviewQueue
from jobtriage.scoring import ConfidenceScorer
from jobtriage.services.application_service import ApplicationService
from jobtriage.status_detection import StatusDetector
from jobtriage.triage import TriageRouter

DAY1 = datetime(2024, 3, 1, 9, 0)


def make_email(email_id="m1", subject="", body="", sender="", received_at=DAY1, thread_id=None) -> RawEmail:
    return RawEmail(
        email_id=email_id,
        subject=subject,
        body=body,
        sender=sender,
        received_at=received_at,
        thread_id=thread_id,
    )


def make_processed(
    email_id="m1",
    day=0,
    status=ApplicationStatus.APPLIED,
    status_confidence=0.7,
    score=0.9,
    subject="Update",
    sender="Jane Recruiter <jane@acme.com>",
    thread_id=None,
    indicators=("matched",),
    **fields,
) -> ProcessedEmail:
    """A ProcessedEmail built directly, bypassing extraction."""
    fields.setdefault("company", "Acme")
    fields.setdefault("position", "Software Engineer")
    received = DAY1 + timedelta(days=day)
    return ProcessedEmail(
        email=make_email(email_id, subject=subject, sender=sender, received_at=received, thread_id=thread_id),
        fields=ExtractedFields(**fields),
        score=ConfidenceScore(value=score),
        status=StatusCandidate(
            status=status,
            confidence=status_confidence,
            reasoning="test",
            indicators=tuple(indicators),
        ),
    )


def llm_response(payload, total_tokens=120):
    """Mock chat.completions.create return value carrying a JSON payload."""
    message = MagicMock()
    message.content = payload if isinstance(payload, str) else json.dumps(payload)
    choice = MagicMock()
    choice.message = message
    response = MagicMock()
    response.choices = [choice]
    response.usage.total_tokens = total_tokens
    return response


def mock_client(*responses, side_effect=None):
    client = MagicMock()
    if side_effect is not None:
        client.chat.completions.create.side_effect = side_effect
    else:
        client.chat.completions.create.side_effect = list(responses)
    return client


@pytest.fixture
def config():
    return TriageConfig()


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_session(db_engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sql_repository(db_session):
    return SqlAlchemyRepository(db_session)


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def events():
    return EventBus()


def build_test_pipeline(repository, config=None, adapter=None, events=None) -> TriagePipeline:
    config = config or TriageConfig()
    events = events or EventBus()
    merger = RecordMerger(config.status_update_threshold, config.review_queue_threshold)
    applications = ApplicationService(repository, merger, events)
    return TriagePipeline(
        scorer=ConfidenceScorer.from_config(config),
        detector=StatusDetector(config.status_keywords, adapter=adapter),
        router=TriageRouter.from_config(config),
        applications=applications,
        review_queue=ReviewQueue(repository, applications.accept, adapter=adapter, events=events),
        repository=repository,
        adapter=adapter,
        config=config,
        events=events,
    )


@pytest.fixture
def pipeline(repository, config, events):
    return build_test_pipeline(repository, config, events=events)


@pytest.fixture
def client(db_engine):
    from jobtriage.database import get_sync_db
    from jobtriage.dependencies import get_adapter
    from jobtriage.main import app

    Session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    def override_get_sync_db():
        db = Session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_sync_db] = override_get_sync_db
    app.dependency_overrides[get_adapter] = lambda: None
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()

