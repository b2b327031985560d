import itertools

import pytest

from jobtriage.domain import ApplicationStatus, StatusCandidate
from jobtriage.errors import InvalidTransition
from jobtriage.transitions import (
    TERMINAL_STATUSES,
    TransitionValidator,
    is_valid_transition,
    require_valid_transition,
)

S = ApplicationStatus

ALLOWED = {
    (S.APPLIED, S.INTERVIEW),
    (S.APPLIED, S.OFFER),
    (S.APPLIED, S.REJECTED),
    (S.APPLIED, S.WITHDRAWN),
    (S.INTERVIEW, S.INTERVIEW),
    (S.INTERVIEW, S.OFFER),
    (S.INTERVIEW, S.REJECTED),
    (S.INTERVIEW, S.WITHDRAWN),
    (S.OFFER, S.REJECTED),
    (S.OFFER, S.WITHDRAWN),
}


@pytest.mark.parametrize("current,proposed", list(itertools.product(S, S)))
def test_transition_table(current, proposed):
    assert is_valid_transition(current, proposed) == ((current, proposed) in ALLOWED)


def test_terminal_statuses():
    assert TERMINAL_STATUSES == {S.REJECTED, S.WITHDRAWN}


@pytest.mark.parametrize("terminal", [S.REJECTED, S.WITHDRAWN])
def test_nothing_leaves_terminal_status(terminal):
    for proposed in S:
        assert not is_valid_transition(terminal, proposed)


def test_require_valid_transition_raises():
    with pytest.raises(InvalidTransition) as exc:
        require_valid_transition(S.REJECTED, S.INTERVIEW)
    assert exc.value.current == "rejected"
    assert exc.value.proposed == "interview"


def _candidate(status, confidence=0.9):
    return StatusCandidate(status=status, confidence=confidence, reasoning="")


@pytest.mark.parametrize(
    "current,candidate,applied,reason",
    [
        (S.APPLIED, _candidate(S.INTERVIEW), True, "applied"),
        (S.APPLIED, _candidate(S.APPLIED), False, "unchanged"),
        (S.APPLIED, _candidate(S.INTERVIEW, 0.6), False, "below_threshold"),
        (S.APPLIED, _candidate(S.INTERVIEW, 0.61), True, "applied"),
        (S.REJECTED, _candidate(S.INTERVIEW), False, "invalid_transition"),
        (S.OFFER, _candidate(S.APPLIED), False, "invalid_transition"),
        (None, _candidate(S.OFFER), True, "applied"),
    ],
)
def test_validator_decisions(current, candidate, applied, reason):
    decision = TransitionValidator(0.6).evaluate(current, candidate)
    assert decision.applied is applied
    assert decision.reason == reason


def test_confidence_never_makes_invalid_transition_valid():
    decision = TransitionValidator(0.6).evaluate(S.WITHDRAWN, _candidate(S.OFFER, 1.0))
    assert not decision.applied
