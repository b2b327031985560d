"""Three-lane routing by final confidence."""
from .domain import Lane


class TriageRouter:
    """
    Routes a confidence value to a lane.

    Each lane includes its lower bound, so a value equal to auto_min is
    auto-accepted and a value equal to review_min goes to review.
    """

    def __init__(self, review_min: float = 0.25, auto_min: float = 0.85):
        if not (0.0 <= review_min <= 1.0 and 0.0 <= auto_min <= 1.0):
            raise ValueError("Triage thresholds must lie in [0, 1]")
        if review_min >= auto_min:
            raise ValueError(f"review_min ({review_min}) must be below auto_min ({auto_min})")
        self.review_min = review_min
        self.auto_min = auto_min

    @classmethod
    def from_config(cls, config) -> "TriageRouter":
        return cls(config.review_queue_threshold, config.auto_process_threshold)

    def route(self, confidence: float) -> Lane:
        if confidence >= self.auto_min:
            return Lane.AUTO_ACCEPT
        if confidence >= self.review_min:
            return Lane.REVIEW
        return Lane.DISCARD
