"""
Relevance scoring for a single email.

The score is a fixed set of additive heuristics over the extracted fields and
the raw text. Intermediate sums are left unclamped; only the final value is
clamped to [0, 1], so strong exclusion signals can pull a keyword-heavy email
all the way down.
"""
from __future__ import annotations

from typing import Iterable, Optional

from .domain import ConfidenceScore, ExtractedFields, ScoreBreakdown

IDENTITY_BOTH = 0.4
IDENTITY_ONE = 0.2
KEYWORD_INCREMENT = 0.1
KEYWORD_CAP = 0.4
KEYWORD_FLOOR = 0.3
EXCLUSION_PENALTY = 0.2
CONTEXT_PENALTY = 0.3
BONUS_PER_FIELD = 0.1
BONUS_FIELDS = ("contact_email", "job_url", "salary")


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _matches(text: str, phrases: Iterable[str]) -> tuple[str, ...]:
    """Distinct phrases contained in text, case-insensitive, in list order."""
    seen = []
    for phrase in phrases:
        needle = (phrase or "").strip().lower()
        if needle and needle in text and needle not in seen:
            seen.append(needle)
    return tuple(seen)


class ConfidenceScorer:
    """Pure relevance scorer; holds only its keyword configuration."""

    def __init__(
        self,
        include_keywords: Iterable[str],
        exclude_keywords: Iterable[str] = (),
        context_exclusions: Iterable[str] = (),
    ):
        self.include_keywords = tuple(include_keywords)
        self.exclude_keywords = tuple(exclude_keywords)
        self.context_exclusions = tuple(context_exclusions)

    @classmethod
    def from_config(cls, config) -> "ConfidenceScorer":
        return cls(config.include_keywords, config.exclude_keywords, config.context_exclusions)

    def score(self, fields: Optional[ExtractedFields], raw_text: str) -> ConfidenceScore:
        fields = fields or ExtractedFields()
        text = (raw_text or "").lower()

        has_company = bool(fields.company)
        has_position = bool(fields.position)
        if has_company and has_position:
            identity = IDENTITY_BOTH
        elif has_company or has_position:
            identity = IDENTITY_ONE
        else:
            identity = 0.0
        total = identity

        matched = _matches(text, self.include_keywords)
        keyword_score = min(len(matched) * KEYWORD_INCREMENT, KEYWORD_CAP)
        total += keyword_score

        floor_applied = False
        if matched and total < KEYWORD_FLOOR:
            total = KEYWORD_FLOOR
            floor_applied = True

        exclusions = _matches(text, self.exclude_keywords)
        exclusion_penalty = len(exclusions) * EXCLUSION_PENALTY
        total -= exclusion_penalty

        contexts = _matches(text, self.context_exclusions)
        context_penalty = len(contexts) * CONTEXT_PENALTY
        total -= context_penalty

        bonus_fields = tuple(name for name in BONUS_FIELDS if getattr(fields, name))
        bonus = len(bonus_fields) * BONUS_PER_FIELD
        total += bonus

        raw = round(total, 6)
        breakdown = ScoreBreakdown(
            identity=identity,
            matched_keywords=matched,
            keyword_score=round(keyword_score, 6),
            floor_applied=floor_applied,
            exclusion_matches=exclusions,
            exclusion_penalty=round(exclusion_penalty, 6),
            context_matches=contexts,
            context_penalty=round(context_penalty, 6),
            bonus_fields=bonus_fields,
            bonus=round(bonus, 6),
            raw=raw,
        )
        return ConfidenceScore(value=clamp(raw), breakdown=breakdown, source="local", reasoning=explain(breakdown))


def explain(breakdown: ScoreBreakdown) -> str:
    """One-line human readable summary of a breakdown."""
    parts = []
    if breakdown.identity:
        parts.append(f"identity +{breakdown.identity:.1f}")
    if breakdown.matched_keywords:
        parts.append(f"keywords +{breakdown.keyword_score:.1f} ({', '.join(breakdown.matched_keywords)})")
    if breakdown.floor_applied:
        parts.append(f"keyword floor {KEYWORD_FLOOR:.1f}")
    if breakdown.exclusion_matches:
        parts.append(f"exclusions -{breakdown.exclusion_penalty:.1f} ({', '.join(breakdown.exclusion_matches)})")
    if breakdown.context_matches:
        parts.append(f"context -{breakdown.context_penalty:.1f} ({', '.join(breakdown.context_matches)})")
    if breakdown.bonus_fields:
        parts.append(f"bonus +{breakdown.bonus:.1f} ({', '.join(breakdown.bonus_fields)})")
    return "; ".join(parts) or "no relevance signals"
