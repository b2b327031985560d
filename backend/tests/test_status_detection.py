from unittest.mock import MagicMock

import pytest

from conftest import make_email
from jobtriage.config import DEFAULT_STATUS_KEYWORDS
from jobtriage.domain import ApplicationStatus, StatusCandidate
from jobtriage.escalation import Unavailable
from jobtriage.status_detection import StatusDetector, has_conditional_interview_language

S = ApplicationStatus


@pytest.fixture
def detector():
    return StatusDetector(DEFAULT_STATUS_KEYWORDS)


@pytest.mark.parametrize(
    "subject,body,status,confidence",
    [
        ("Offer", "We are pleased to offer you the Backend Engineer role.", S.OFFER, 0.9),
        ("Update", "Unfortunately we have decided to move forward with other candidates.", S.REJECTED, 0.85),
        ("Next steps", "We would like to invite you to an interview next week.", S.INTERVIEW, 0.8),
        ("Re: application", "I would like to withdraw my application.", S.WITHDRAWN, 0.75),
        ("Thanks for applying", "We received your application.", S.APPLIED, 0.7),
        ("תודה", "לצערנו החלטנו להתקדם עם מועמד אחר", S.REJECTED, 0.85),
    ],
)
def test_detect_local(detector, subject, body, status, confidence):
    candidate = detector.detect_local(make_email(subject=subject, body=body))
    assert candidate.status is status
    assert candidate.confidence == confidence
    assert candidate.indicators
    assert candidate.suggested_action


def test_priority_prefers_rejection_over_interview(detector):
    email = make_email(body="Unfortunately the interview scheduled for Monday will not lead to a next round.")
    assert detector.detect_local(email).status is S.REJECTED


def test_no_indicators_defaults_to_pending(detector):
    candidate = detector.detect_local(make_email(subject="Lunch", body="See you at noon"))
    assert candidate.status is S.APPLIED
    assert candidate.confidence == 0.5
    assert candidate.indicators == ()


def test_conditional_interview_language_is_a_confirmation(detector):
    body = "Thank you for applying. If selected for an interview, we'd like to schedule a phone screen."
    assert has_conditional_interview_language(body)
    candidate = detector.detect_local(make_email(body=body))
    assert candidate.status is S.APPLIED
    assert candidate.confidence == 0.7


def test_confident_single_stage_skips_adapter(detector):
    adapter = MagicMock()
    detector.adapter = adapter
    candidate = detector.detect(make_email(body="We are pleased to offer you the job."))
    assert candidate.status is S.OFFER
    adapter.classify_status.assert_not_called()


def test_several_stages_are_ambiguous(detector):
    email = make_email(body="Unfortunately the job offer has been withdrawn by the hiring team.")
    local = detector.detect_local(email)
    assert local.status is S.OFFER
    assert detector.is_ambiguous(email, local)


def test_confident_ai_answer_preferred_and_capped(detector):
    adapter = MagicMock()
    adapter.classify_status.return_value = StatusCandidate(S.INTERVIEW, 0.99, "Recruiter proposes a call", source="escalation")
    detector.adapter = adapter

    candidate = detector.detect(make_email(body="Are you free Tuesday?"))

    assert candidate.status is S.INTERVIEW
    assert candidate.confidence == 0.95
    assert candidate.source == "escalation"


def test_weak_ai_answer_ignored(detector):
    adapter = MagicMock()
    adapter.classify_status.return_value = StatusCandidate(S.INTERVIEW, 0.7, "maybe", source="escalation")
    detector.adapter = adapter
    candidate = detector.detect(make_email(body="Are you free Tuesday?"))
    assert candidate.status is S.APPLIED
    assert candidate.source == "local"


def test_unavailable_ai_keeps_local(detector):
    adapter = MagicMock()
    adapter.classify_status.return_value = Unavailable("timeout")
    detector.adapter = adapter
    candidate = detector.detect(make_email(body="Are you free Tuesday?"))
    assert candidate.confidence == 0.5


def test_reuses_existing_escalation(detector):
    adapter = MagicMock()
    detector.adapter = adapter
    escalated = MagicMock()
    escalated.status = StatusCandidate(S.OFFER, 0.8, "Offer letter attached", source="escalation")

    candidate = detector.detect(make_email(body="Please see the attachment."), escalated=escalated)

    assert candidate.status is S.OFFER
    assert candidate.confidence == 0.8
    adapter.classify_status.assert_not_called()
