"""
Error taxonomy for the triage pipeline.

A field pattern that finds nothing is not an error: the field is simply None.
Merge disagreements on identity fields are values (see domain.MergeConflict),
logged and kept on the merge result. Of the exceptions below only
PersistenceFailure is surfaced to batch callers; the others are recovered
where they occur.
"""
from typing import Optional


class TriageError(Exception):
    """Base class for pipeline errors."""


class EscalationUnavailable(TriageError):
    """The AI service timed out, failed, or answered with something unusable."""

    def __init__(self, reason: str, tier: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.tier = tier


class InvalidTransition(TriageError):
    """A status change the lifecycle state machine does not permit."""

    def __init__(self, current: str, proposed: str):
        super().__init__(f"Transition {current} -> {proposed} is not allowed")
        self.current = current
        self.proposed = proposed


class PersistenceFailure(TriageError):
    """A record or review-queue write did not commit."""

    def __init__(self, operation: str, detail: str = ""):
        message = f"Persistence failed during {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.operation = operation
        self.detail = detail


class NotFound(TriageError):
    """Lookup by id found nothing."""
