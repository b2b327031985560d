"""Application lifecycle state machine."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .domain import ApplicationStatus, StatusCandidate
from .errors import InvalidTransition

S = ApplicationStatus

ALLOWED_TRANSITIONS: dict[ApplicationStatus, frozenset] = {
    S.APPLIED: frozenset({S.INTERVIEW, S.OFFER, S.REJECTED, S.WITHDRAWN}),
    # Several interview rounds are normal.
    S.INTERVIEW: frozenset({S.INTERVIEW, S.OFFER, S.REJECTED, S.WITHDRAWN}),
    S.OFFER: frozenset({S.REJECTED, S.WITHDRAWN}),
    S.REJECTED: frozenset(),
    S.WITHDRAWN: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

# Decision reasons
APPLIED = "applied"
UNCHANGED = "unchanged"
BELOW_THRESHOLD = "below_threshold"
INVALID_TRANSITION = "invalid_transition"


def is_valid_transition(current: ApplicationStatus, proposed: ApplicationStatus) -> bool:
    return S(proposed) in ALLOWED_TRANSITIONS[S(current)]


def require_valid_transition(current: ApplicationStatus, proposed: ApplicationStatus) -> None:
    if not is_valid_transition(current, proposed):
        raise InvalidTransition(S(current).value, S(proposed).value)


@dataclass(frozen=True)
class TransitionDecision:
    applied: bool
    reason: str


class TransitionValidator:
    """Decides whether a proposed status should replace the current one."""

    def __init__(self, update_threshold: float = 0.6):
        self.update_threshold = update_threshold

    def evaluate(self, current: Optional[ApplicationStatus], candidate: StatusCandidate) -> TransitionDecision:
        if current is not None and candidate.status == current:
            return TransitionDecision(False, UNCHANGED)
        # Confidence decides whether a change is attempted, never whether it is allowed.
        if candidate.confidence <= self.update_threshold:
            return TransitionDecision(False, BELOW_THRESHOLD)
        if current is not None and not is_valid_transition(current, candidate.status):
            return TransitionDecision(False, INVALID_TRANSITION)
        return TransitionDecision(True, APPLIED)
