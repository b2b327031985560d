"""
Lifecycle status detection for a single email.

Local phrase rules run first, in priority order offer > rejected > interview >
withdrawn > applied. When the local answer is weak or several stages match,
the escalation adapter is consulted and its answer preferred if it is
confident enough.
"""
from __future__ import annotations

import logging
import re
from typing import Mapping, Optional, Sequence

from .domain import ApplicationStatus, RawEmail, StatusCandidate

logger = logging.getLogger(__name__)

# (status, local confidence) in match priority order.
STATUS_PRIORITY = (
    (ApplicationStatus.OFFER, 0.9),
    (ApplicationStatus.REJECTED, 0.85),
    (ApplicationStatus.INTERVIEW, 0.8),
    (ApplicationStatus.WITHDRAWN, 0.75),
    (ApplicationStatus.APPLIED, 0.7),
)
DEFAULT_CONFIDENCE = 0.5

SUGGESTED_ACTIONS = {
    ApplicationStatus.APPLIED: "Wait for a response; follow up in one to two weeks if nothing arrives.",
    ApplicationStatus.INTERVIEW: "Confirm the interview time and prepare for the conversation.",
    ApplicationStatus.OFFER: "Review the offer details and respond before the deadline.",
    ApplicationStatus.REJECTED: "Archive the application and consider asking for feedback.",
    ApplicationStatus.WITHDRAWN: "No further action needed; keep the record for reference.",
}

STATUS_DESCRIPTIONS = {
    ApplicationStatus.APPLIED: "Application submitted, awaiting response",
    ApplicationStatus.INTERVIEW: "Interview scheduled or in progress",
    ApplicationStatus.OFFER: "Job offer received",
    ApplicationStatus.REJECTED: "Application not successful",
    ApplicationStatus.WITHDRAWN: "Application withdrawn by the candidate",
}

_CONDITIONAL_INTERVIEW = [
    r"if\s+(?:you(?:'|’)?re|we(?:'|’)?re|you\s+are)\s+selected\s+for\s+an?\s+interview",
    r"if\s+selected\s+for\s+an?\s+interview",
    r"if\s+we\s+(?:decide\s+to\s+)?move\s+forward",
    r"should\s+you\s+(?:advance|be\s+selected)",
    r"we(?:'|’)?ll\s+(?:be\s+in\s+touch|reach\s+out|contact\s+you)\s+if",
    r"אם\s+נמצא\s+התאמה",
]


def has_conditional_interview_language(text: str) -> bool:
    """Phrases like "if selected for an interview" are not invitations."""
    lowered = (text or "").lower()
    return any(re.search(p, lowered) for p in _CONDITIONAL_INTERVIEW)


class StatusDetector:
    """Rule-first status detection with optional AI escalation."""

    def __init__(
        self,
        patterns: Mapping[str, Sequence[str]],
        adapter=None,
        ai_preference_threshold: float = 0.7,
        ai_confidence_cap: float = 0.95,
        ambiguity_threshold: float = 0.6,
    ):
        self._patterns = {
            ApplicationStatus(status): [re.compile(p, re.I) for p in phrases]
            for status, phrases in patterns.items()
        }
        self.adapter = adapter
        self.ai_preference_threshold = ai_preference_threshold
        self.ai_confidence_cap = ai_confidence_cap
        self.ambiguity_threshold = ambiguity_threshold

    def match_indicators(self, text: str) -> dict[ApplicationStatus, list[str]]:
        """Matched phrases per status for the given text."""
        lowered = (text or "").lower()
        found: dict[ApplicationStatus, list[str]] = {}
        for status, regexes in self._patterns.items():
            hits = []
            for rx in regexes:
                m = rx.search(lowered)
                if m:
                    hits.append(m.group(0).strip())
            if hits:
                found[status] = hits

        # A confirmation that talks about a possible interview is still a confirmation.
        if (
            ApplicationStatus.INTERVIEW in found
            and ApplicationStatus.APPLIED in found
            and has_conditional_interview_language(lowered)
        ):
            found.pop(ApplicationStatus.INTERVIEW)
        return found

    def detect_local(self, email: RawEmail) -> StatusCandidate:
        found = self.match_indicators(email.text)
        for status, confidence in STATUS_PRIORITY:
            if status in found:
                indicators = tuple(found[status])
                return StatusCandidate(
                    status=status,
                    confidence=confidence,
                    reasoning=f"{STATUS_DESCRIPTIONS[status]}: matched {', '.join(indicators)}",
                    source="local",
                    indicators=indicators,
                    suggested_action=SUGGESTED_ACTIONS[status],
                )
        return StatusCandidate(
            status=ApplicationStatus.APPLIED,
            confidence=DEFAULT_CONFIDENCE,
            reasoning="No status indicators found; assuming the application is pending",
            source="local",
            suggested_action=SUGGESTED_ACTIONS[ApplicationStatus.APPLIED],
        )

    def is_ambiguous(self, email: RawEmail, candidate: StatusCandidate) -> bool:
        if candidate.confidence < self.ambiguity_threshold:
            return True
        stages = [s for s in self.match_indicators(email.text) if s is not ApplicationStatus.APPLIED]
        return len(stages) > 1

    def _prefer_ai(self, local: StatusCandidate, ai: StatusCandidate) -> StatusCandidate:
        if ai.confidence <= self.ai_preference_threshold:
            return local
        return StatusCandidate(
            status=ai.status,
            confidence=min(ai.confidence, self.ai_confidence_cap),
            reasoning=ai.reasoning or f"AI classified the email as {ai.status.value}",
            source="escalation",
            indicators=local.indicators,
            suggested_action=SUGGESTED_ACTIONS[ai.status],
        )

    def detect(self, email: RawEmail, escalated=None) -> StatusCandidate:
        """
        Status for one email.

        `escalated` is an EscalationResult already obtained for this email, if
        any; it is reused instead of making a second call.
        """
        local = self.detect_local(email)
        if not self.is_ambiguous(email, local):
            return local

        ai_status = getattr(escalated, "status", None)
        if ai_status is None and self.adapter is not None:
            outcome = self.adapter.classify_status(email, local)
            if isinstance(outcome, StatusCandidate):
                ai_status = outcome
            else:
                logger.debug(f"Status escalation unavailable for {email.email_id}: {outcome.reason}")
        if ai_status is None:
            return local
        return self._prefer_ai(local, ai_status)
