from datetime import timedelta

import pytest

from conftest import DAY1, build_test_pipeline, llm_response, make_email, make_processed, mock_client
from jobtriage.config import TriageConfig
from jobtriage.domain import ApplicationStatus, Lane
from jobtriage.errors import PersistenceFailure
from jobtriage.escalation import EscalationAdapter
from jobtriage.events import RunCompleted
from jobtriage.repository import InMemoryRepository
from jobtriage.services.email_processor import (
    ALREADY_PROCESSED,
    SUPERSEDED_IN_THREAD,
    latest_per_thread,
    run_batch,
)


def confirmation_email(email_id="a1"):
    return make_email(
        email_id,
        subject="Thank you for applying",
        body=(
            "Thank you for applying for the Software Engineer position at Acme. "
            "We will review your application and get back to you."
        ),
        sender="Acme Careers <careers@acme.com>",
    )


def lunch_email(email_id="x1"):
    return make_email(email_id, subject="Lunch on Friday?", body="Are you around?", sender="friend@gmail.com")


# --- single email ------------------------------------------------------------

def test_confirmation_through_the_graph(pipeline):
    processed, lane = pipeline.process(confirmation_email())

    assert processed.fields.company == "Acme"
    assert processed.fields.position == "Software Engineer"
    assert processed.score.value >= 0.3
    assert processed.status.status is ApplicationStatus.APPLIED
    assert lane is Lane.REVIEW
    assert not processed.escalated


def test_unrelated_email_is_discarded(pipeline):
    processed, lane = pipeline.process(lunch_email())
    assert processed.score.value == 0.0
    assert lane is Lane.DISCARD


def test_escalation_failure_matches_local_result(repository):
    adapter = EscalationAdapter(mock_client(side_effect=ConnectionError("network down")))
    with_ai = build_test_pipeline(repository, adapter=adapter)
    local_only = build_test_pipeline(InMemoryRepository())

    escalated, lane = with_ai.process(lunch_email())
    local, local_lane = local_only.process(lunch_email())

    assert escalated == local
    assert lane is local_lane
    assert adapter.usage.snapshot()["failures"] == 1


def test_confident_escalation_supersedes_and_is_reused(repository):
    client = mock_client(
        llm_response(
            {
                "is_job_related": True,
                "confidence": 0.9,
                "status": "interview",
                "status_confidence": 0.8,
                "extracted_fields": {"company": "Globex", "position": "Analyst"},
                "reasoning": "Recruiter proposes a call",
            }
        )
    )
    pipeline = build_test_pipeline(repository, adapter=EscalationAdapter(client))

    processed, lane = pipeline.process(lunch_email())

    assert processed.escalated
    assert processed.score.value == pytest.approx(0.9)
    assert processed.fields.company == "Globex"
    assert processed.status.status is ApplicationStatus.INTERVIEW
    assert lane is Lane.AUTO_ACCEPT
    assert client.chat.completions.create.call_count == 1


def test_confident_local_score_skips_escalation(repository):
    client = mock_client()
    pipeline = build_test_pipeline(repository, adapter=EscalationAdapter(client))
    pipeline.process(confirmation_email())
    client.chat.completions.create.assert_not_called()


# --- batches -------------------------------------------------------------------

@pytest.fixture
def scripted(pipeline, monkeypatch):
    """Pipeline whose classification step returns prepared results."""
    results = {}

    def fake_process(email):
        return results[email.email_id]

    monkeypatch.setattr(pipeline, "process", fake_process)

    def add(pe, lane):
        results[pe.email_id] = (pe, lane)
        return pe.email

    pipeline.script = add
    return pipeline


def test_run_batch_routes_every_lane(scripted, repository):
    emails = [
        scripted.script(make_processed("a1", day=0, score=0.9), Lane.AUTO_ACCEPT),
        scripted.script(
            make_processed("a2", day=5, score=0.95, status=ApplicationStatus.INTERVIEW, status_confidence=0.8),
            Lane.AUTO_ACCEPT,
        ),
        scripted.script(make_processed("r1", day=1, score=0.5, company="Globex", position="Analyst"), Lane.REVIEW),
        scripted.script(make_processed("d1", day=2, score=0.1), Lane.DISCARD),
    ]

    summary = scripted.run_batch(emails)

    assert (summary.total_seen, summary.processed, summary.errors) == (4, 4, 0)
    assert (summary.auto_accepted, summary.queued, summary.discarded) == (2, 1, 1)
    (record,) = repository.list_records()
    assert record.status is ApplicationStatus.INTERVIEW
    assert record.source_email_ids == ("a1", "a2")
    assert [i.item_id for i in repository.list_queue_items()] == ["r1"]
    assert set(repository.processed) == {"a1", "a2", "r1", "d1"}
    by_id = {o.email_id: o for o in summary.outcomes}
    assert by_id["a1"].record_id == by_id["a2"].record_id == record.record_id
    assert by_id["d1"].lane is Lane.DISCARD
    assert repository.last_run_summary() is summary


def test_review_suggestion_uses_existing_record(scripted, repository):
    scripted.applications.accept([make_processed("a1", day=0)])
    email = scripted.script(
        make_processed("r1", day=3, score=0.5, status=ApplicationStatus.INTERVIEW, status_confidence=0.8),
        Lane.REVIEW,
    )

    scripted.run_batch([email])

    (item,) = repository.list_queue_items()
    assert item.suggested.status is ApplicationStatus.INTERVIEW
    assert item.suggested.source_email_ids == ("a1", "r1")
    # The stored record is untouched until the item is approved.
    assert repository.list_records()[0].status is ApplicationStatus.APPLIED


def test_second_run_skips_processed_email(pipeline, repository):
    first = pipeline.run_batch([confirmation_email()])
    second = pipeline.run_batch([confirmation_email()])

    assert first.queued == 1
    assert second.processed == 0
    assert second.outcomes[0].lane is None
    assert second.outcomes[0].reason == ALREADY_PROCESSED
    assert len(repository.list_queue_items()) == 1


class FlakyRepository(InMemoryRepository):
    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures

    def put_record(self, record, events=(), consume_queue_item=None):
        if self.failures:
            self.failures -= 1
            raise PersistenceFailure("put_record", "database is locked")
        super().put_record(record, events, consume_queue_item)


def test_persistence_failure_is_retried_next_run(monkeypatch):
    repository = FlakyRepository()
    pipeline = build_test_pipeline(repository)
    pe = make_processed("a1", score=0.9)
    monkeypatch.setattr(pipeline, "process", lambda email: (pe, Lane.AUTO_ACCEPT))

    first = pipeline.run_batch([pe.email])
    assert first.errors == 1
    assert first.outcomes[0].error
    assert repository.list_records() == []
    assert repository.processed_ids(["a1"]) == set()

    second = pipeline.run_batch([pe.email])
    assert second.auto_accepted == 1
    assert len(repository.list_records()) == 1


def test_classification_error_is_isolated(scripted, repository, monkeypatch):
    good = scripted.script(make_processed("d1", score=0.1), Lane.DISCARD)
    scripted_process = scripted.process

    def process(email):
        if email.email_id == "boom":
            raise RuntimeError("extractor crashed")
        return scripted_process(email)

    monkeypatch.setattr(scripted, "process", process)

    summary = scripted.run_batch([good, make_email("boom")])

    assert summary.errors == 1
    assert summary.discarded == 1
    failed = next(o for o in summary.outcomes if o.email_id == "boom")
    assert failed.error == "extractor crashed"
    assert "boom" not in repository.processed


def test_batch_is_truncated(scripted, repository):
    emails = [scripted.script(make_processed(f"d{i}", day=i, score=0.1), Lane.DISCARD) for i in range(3)]

    summary = run_batch(scripted, emails, max_emails=2)

    assert summary.total_seen == 3
    assert [o.email_id for o in summary.outcomes] == ["d0", "d1"]
    assert "d2" not in repository.processed


def test_latest_message_per_thread(repository):
    pipeline = build_test_pipeline(repository, config=TriageConfig(process_threads_only="latest"))
    old = make_email("t-old", subject="Lunch", received_at=DAY1, thread_id="t1")
    new = make_email("t-new", subject="Lunch", received_at=DAY1 + timedelta(hours=2), thread_id="t1")

    summary = pipeline.run_batch([old, new])

    by_id = {o.email_id: o for o in summary.outcomes}
    assert by_id["t-old"].reason == SUPERSEDED_IN_THREAD
    assert by_id["t-new"].lane is Lane.DISCARD
    assert summary.discarded == 2


def test_latest_per_thread_keeps_input_order():
    a = make_email("a", received_at=DAY1, thread_id="t1")
    b = make_email("b", received_at=DAY1 + timedelta(days=1), thread_id="t2")
    c = make_email("c", received_at=DAY1 + timedelta(days=2), thread_id="t1")
    kept, dropped = latest_per_thread([a, b, c])
    assert [e.email_id for e in kept] == ["b", "c"]
    assert [e.email_id for e in dropped] == ["a"]


def test_run_completed_is_published(pipeline, events):
    received = []
    events.subscribe(received.append, RunCompleted)
    summary = pipeline.run_batch([lunch_email()])
    assert [e.summary for e in received] == [summary]
