from unittest.mock import MagicMock

import pytest

from conftest import make_processed
from jobtriage.domain import ApplicationStatus
from jobtriage.errors import NotFound
from jobtriage.escalation import Unavailable
from jobtriage.events import EventBus, ItemQueued
from jobtriage.merger import RecordMerger
from jobtriage.review_queue import ReviewQueue
from jobtriage.services.application_service import ApplicationService


@pytest.fixture(params=["repository", "sql_repository"])
def store(request):
    return request.getfixturevalue(request.param)


@pytest.fixture
def applications(store, events):
    return ApplicationService(store, RecordMerger(0.6, 0.25), events)


@pytest.fixture
def queue(store, applications, events):
    return ReviewQueue(store, applications.accept, events=events)


def _queue_email(queue, applications, pe):
    return queue.enqueue(pe, applications.preview([pe]).record)


def test_enqueue_is_idempotent(queue, applications, events):
    published = []
    events.subscribe(published.append, ItemQueued)
    pe = make_processed("m1", score=0.5)

    first = _queue_email(queue, applications, pe)
    second = _queue_email(queue, applications, pe)

    assert second.item_id == first.item_id == "m1"
    assert len(queue.list()) == 1
    assert len(published) == 1


def test_items_round_trip(queue, applications):
    pe = make_processed("m1", score=0.5, salary="$90k")
    _queue_email(queue, applications, pe)
    (item,) = queue.list()
    assert item.processed == pe
    assert item.suggested.company == "Acme"
    assert item.suggested.salary == "$90k"


def test_list_is_oldest_first(queue, applications):
    _queue_email(queue, applications, make_processed("m1", score=0.5))
    _queue_email(queue, applications, make_processed("m2", score=0.5, company="Globex"))
    assert [i.item_id for i in queue.list()] == ["m1", "m2"]


def test_approve_creates_record_and_consumes_item(queue, applications, store):
    _queue_email(queue, applications, make_processed("m1", score=0.5))

    record = queue.approve("m1")

    assert record.company == "Acme"
    assert record.status is ApplicationStatus.APPLIED
    assert store.get_record(record.record_id) == record
    assert queue.list() == []


def test_approve_extends_existing_record(queue, applications):
    existing = applications.accept([make_processed("m1", day=0)])
    _queue_email(queue, applications, make_processed("m2", day=3, score=0.5, status=ApplicationStatus.INTERVIEW, status_confidence=0.8))

    record = queue.approve("m2")

    assert record.record_id == existing.record_id
    assert record.status is ApplicationStatus.INTERVIEW
    assert len(applications.list()) == 1


def test_approve_missing_item(queue):
    with pytest.raises(NotFound):
        queue.approve("nope")


def test_reject_removes_without_record(queue, applications):
    _queue_email(queue, applications, make_processed("m1", score=0.5))
    queue.reject("m1")
    assert queue.list() == []
    assert applications.list() == []
    with pytest.raises(NotFound):
        queue.reject("m1")


def test_clear(queue, applications):
    _queue_email(queue, applications, make_processed("m1", score=0.5))
    _queue_email(queue, applications, make_processed("m2", score=0.5, company="Globex"))
    assert queue.clear() == 2
    assert queue.list() == []
    assert queue.clear() == 0


def test_decision_aid_without_adapter(queue, applications):
    _queue_email(queue, applications, make_processed("m1", score=0.5))
    outcome = queue.decision_aid("m1")
    assert isinstance(outcome, Unavailable)
    assert outcome.reason == "AI escalation is not configured"


def test_decision_aid_asks_deep_context(repository):
    adapter = MagicMock()
    adapter.escalate.return_value = Unavailable("timeout")
    applications = ApplicationService(repository, RecordMerger(), EventBus())
    queue = ReviewQueue(repository, applications.accept, adapter=adapter)
    pe = make_processed("m1", score=0.5)
    _queue_email(queue, applications, pe)

    queue.decision_aid("m1")

    email, score, context = adapter.escalate.call_args.args
    assert email == pe.email
    assert score == 0.5
    assert context.is_in_review_queue
    assert queue.list()[0].item_id == "m1"
