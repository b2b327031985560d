"""
AI escalation for emails the local heuristics cannot settle.

The adapter wraps one chat-completion call (OpenAI, JSON mode) behind a
strict contract: it returns an EscalationResult or an Unavailable marker and
never raises into the pipeline. Which model tier handles a request is decided
by select_tier, a pure function of the email and the EscalationContext.
"""
from __future__ import annotations

import hashlib
import json
import logging
import re
import threading
from dataclasses import dataclass, replace
from typing import Optional, Union

from .domain import (
    ApplicationStatus,
    ConfidenceScore,
    ExtractedFields,
    ModelTier,
    RawEmail,
    StatusCandidate,
)
from .errors import EscalationUnavailable
from .scoring import clamp

logger = logging.getLogger(__name__)

DEEP_BAND = (0.15, 0.85)
LONG_BODY_CHARS = 2000
LONG_BODY_LINES = 20
MAX_PROMPT_BODY_CHARS = 4000

_HEBREW_RE = re.compile(r"[֐-׿]")
_LATIN_RE = re.compile(r"[A-Za-z]")
_FORWARDED_RE = re.compile(r"\bfwd?:|forwarded message|הועבר", re.I)


@dataclass(frozen=True)
class EscalationContext:
    """Signals that shape an escalation request."""

    initial_confidence: float = 0.0
    is_in_review_queue: bool = False
    has_complex_content: bool = False
    requested_tier: Optional[ModelTier] = None


@dataclass(frozen=True)
class EscalationResult:
    is_job_related: bool
    confidence: float
    fields: ExtractedFields
    reasoning: str
    tier: ModelTier
    model: str = ""
    status: Optional[StatusCandidate] = None

    def to_dict(self) -> dict:
        return {
            "is_job_related": self.is_job_related,
            "confidence": self.confidence,
            "fields": self.fields.to_dict(),
            "reasoning": self.reasoning,
            "tier": self.tier.value,
            "model": self.model,
            "status": self.status.to_dict() if self.status else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EscalationResult":
        return cls(
            is_job_related=bool(data["is_job_related"]),
            confidence=float(data["confidence"]),
            fields=ExtractedFields.from_dict(data.get("fields")),
            reasoning=data.get("reasoning", ""),
            tier=ModelTier(data["tier"]),
            model=data.get("model", ""),
            status=StatusCandidate.from_dict(data["status"]) if data.get("status") else None,
        )


@dataclass(frozen=True)
class Unavailable:
    """The AI service could not produce a usable answer; callers keep local results."""

    reason: str
    tier: Optional[ModelTier] = None


EscalationOutcome = Union[EscalationResult, Unavailable]


def complexity_indicators(subject: str, body: str, context: EscalationContext) -> list[str]:
    text = f"{subject or ''}\n{body or ''}"
    body = body or ""
    indicators = []
    hebrew = bool(_HEBREW_RE.search(text))
    if hebrew:
        indicators.append("hebrew")
    if len(body) > LONG_BODY_CHARS or body.count("\n") + 1 > LONG_BODY_LINES:
        indicators.append("long")
    if hebrew and _LATIN_RE.search(text):
        indicators.append("mixed_language")
    if _FORWARDED_RE.search(text):
        indicators.append("forwarded")
    if context.has_complex_content:
        indicators.append("complex_content")
    if context.is_in_review_queue:
        indicators.append("review_queue")
    return indicators


def select_tier(subject: str, body: str, context: EscalationContext) -> ModelTier:
    """Pick the model tier for a request. Depends only on its arguments."""
    if context.requested_tier is not None:
        return context.requested_tier
    if context.is_in_review_queue:
        return ModelTier.DEEP
    low, high = DEEP_BAND
    if low <= context.initial_confidence <= high:
        return ModelTier.DEEP
    if len(complexity_indicators(subject, body, context)) >= 2:
        return ModelTier.DEEP
    return ModelTier.FAST


def content_hash(subject: str, sender: str, body: str) -> str:
    """Deterministic SHA-256 hash of (subject + sender + body) for cache key."""
    content = f"{subject or ''}|{sender or ''}|{(body or '')[:5000]}"
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class UsageTracker:
    """Advisory per-tier call and cost accounting. Thread-safe."""

    def __init__(self, fast_cost_per_1m: float = 0.35, deep_cost_per_1m: float = 7.00):
        self._lock = threading.Lock()
        self._prices = {ModelTier.FAST: fast_cost_per_1m, ModelTier.DEEP: deep_cost_per_1m}
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._calls = {ModelTier.FAST: 0, ModelTier.DEEP: 0}
            self._tokens = {ModelTier.FAST: 0, ModelTier.DEEP: 0}
            self._failures = 0

    def record_call(self, tier: ModelTier, tokens: int) -> None:
        with self._lock:
            self._calls[tier] += 1
            self._tokens[tier] += max(0, int(tokens))

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1

    def snapshot(self) -> dict:
        with self._lock:
            cost = sum(self._tokens[t] / 1_000_000 * self._prices[t] for t in ModelTier)
            return {
                "fast_calls": self._calls[ModelTier.FAST],
                "deep_calls": self._calls[ModelTier.DEEP],
                "total_tokens": sum(self._tokens.values()),
                "failures": self._failures,
                "estimated_cost_usd": round(cost, 6),
            }


ESCALATION_PROMPT = """You help a job seeker track their job applications by reading their email.
Emails may be written in English or Hebrew.

Decide whether this email concerns one of the recipient's own job applications
(confirmation, interview, assessment, offer, rejection, withdrawal) as opposed to
newsletters, job alerts, marketing or unrelated mail.

Return ONLY a JSON object with these keys:
{{
  "is_job_related": true or false,
  "confidence": number from 0 to 1,
  "status": "applied" | "interview" | "offer" | "rejected" | "withdrawn" | null,
  "status_confidence": number from 0 to 1,
  "extracted_fields": {{
    "company": string or null,
    "position": string or null,
    "applied_date": "YYYY-MM-DD" or null,
    "contact_email": string or null,
    "job_url": string or null,
    "salary": string or null,
    "location": string or null,
    "recruiter_name": string or null,
    "interviewer_name": string or null
  }},
  "reasoning": "one or two sentences"
}}

Hints: {hints}

From: {sender}
Subject: {subject}
Body:
{body}
"""


def _truncate(text: str, max_len: int) -> str:
    if not text or len(text) <= max_len:
        return text or ""
    return text[: max_len - 3] + "..."


def _parse_json_response(text: str) -> dict:
    """Parse JSON from LLM response, handling markdown code blocks."""
    text = re.sub(r"```json\s*", "", text or "")
    text = re.sub(r"```\s*", "", text).strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"\{[\s\S]*\}", text)
        if match:
            try:
                return json.loads(match.group())
            except json.JSONDecodeError:
                pass
    return {}


def _as_confidence(value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise EscalationUnavailable(f"confidence is not a number: {value!r}")
    try:
        return clamp(float(value))
    except ValueError:
        raise EscalationUnavailable(f"confidence is not a number: {value!r}") from None


class EscalationAdapter:
    """Calls the external model for low-confidence or ambiguous emails."""

    def __init__(
        self,
        client=None,
        *,
        api_key: str = "",
        fast_model: str = "gpt-4o-mini",
        deep_model: str = "gpt-4o",
        timeout_s: float = 20.0,
        temperature: float = 0.1,
        usage: Optional[UsageTracker] = None,
        cache=None,
        max_tokens: int = 600,
    ):
        self._client = client
        self._api_key = api_key
        self.models = {ModelTier.FAST: fast_model, ModelTier.DEEP: deep_model}
        self.timeout_s = timeout_s
        self.temperature = temperature
        self.usage = usage or UsageTracker()
        self.cache = cache
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings, cache=None) -> Optional["EscalationAdapter"]:
        """Adapter configured from Settings, or None when no API key is set."""
        if not settings.openai_api_key:
            return None
        return cls(
            api_key=settings.openai_api_key,
            fast_model=settings.openai_fast_model,
            deep_model=settings.openai_deep_model,
            timeout_s=settings.escalation_timeout_s,
            temperature=settings.openai_temperature,
            usage=UsageTracker(settings.fast_model_cost_per_1m, settings.deep_model_cost_per_1m),
            cache=cache,
        )

    def _get_client(self):
        if self._client is None:
            if not self._api_key:
                raise EscalationUnavailable("OPENAI_API_KEY not set")
            from openai import OpenAI
            self._client = OpenAI(api_key=self._api_key, timeout=self.timeout_s, max_retries=0)
        return self._client

    def _call_llm(self, prompt: str, tier: ModelTier) -> str:
        """One chat completion in JSON mode. Raises EscalationUnavailable on any failure."""
        import openai

        try:
            response = self._get_client().chat.completions.create(
                model=self.models[tier],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                response_format={"type": "json_object"},
                messages=[{"role": "user", "content": prompt}],
                timeout=self.timeout_s,
            )
        except openai.APITimeoutError:
            raise EscalationUnavailable("timeout", tier.value) from None
        except openai.APIStatusError as e:
            raise EscalationUnavailable(f"http {e.status_code}", tier.value) from None
        except openai.OpenAIError as e:
            raise EscalationUnavailable(f"api error: {e}", tier.value) from None

        content = (response.choices[0].message.content or "").strip()
        usage = getattr(response, "usage", None)
        tokens = getattr(usage, "total_tokens", None)
        if not isinstance(tokens, int):
            tokens = (len(prompt) + len(content)) // 4
        self.usage.record_call(tier, tokens)
        return content

    def _build_prompt(self, email: RawEmail, context: EscalationContext, tier: ModelTier) -> str:
        hints = {
            "prior_confidence": round(context.initial_confidence, 3),
            "language_signals": complexity_indicators(email.subject, email.body, context),
            "length": len(email.body or ""),
            "in_review_queue": context.is_in_review_queue,
            "analysis_depth": tier.value,
        }
        return ESCALATION_PROMPT.format(
            hints=json.dumps(hints, ensure_ascii=False),
            sender=email.sender,
            subject=email.subject,
            body=_truncate(email.body, MAX_PROMPT_BODY_CHARS),
        )

    def _parse(self, text: str, tier: ModelTier) -> EscalationResult:
        data = _parse_json_response(text)
        if not data or "is_job_related" not in data or "confidence" not in data:
            raise EscalationUnavailable("malformed response", tier.value)
        confidence = _as_confidence(data.get("confidence"))
        raw_fields = data.get("extracted_fields")
        fields = ExtractedFields.from_dict(raw_fields if isinstance(raw_fields, dict) else {})

        status = None
        raw_status = (data.get("status") or "")
        if isinstance(raw_status, str) and raw_status.strip().lower() in {s.value for s in ApplicationStatus}:
            status_conf = data.get("status_confidence", confidence)
            status = StatusCandidate(
                status=ApplicationStatus(raw_status.strip().lower()),
                confidence=_as_confidence(status_conf),
                reasoning=str(data.get("reasoning") or ""),
                source="escalation",
            )
        return EscalationResult(
            is_job_related=bool(data.get("is_job_related")),
            confidence=confidence,
            fields=fields,
            reasoning=str(data.get("reasoning") or "").strip(),
            tier=tier,
            model=self.models[tier],
            status=status,
        )

    def _request(self, email: RawEmail, context: EscalationContext, tier: ModelTier) -> EscalationResult:
        prompt = self._build_prompt(email, context, tier)
        return self._parse(self._call_llm(prompt, tier), tier)

    def escalate(
        self,
        email: RawEmail,
        local_score: float,
        context: Optional[EscalationContext] = None,
    ) -> EscalationOutcome:
        """Ask the model about one email. Never raises."""
        context = context or EscalationContext(initial_confidence=local_score)
        tier = select_tier(email.subject, email.body, context)
        key = content_hash(email.subject, email.sender, email.body)

        if self.cache is not None:
            cached = self.cache.get(key, tier.value)
            if cached:
                try:
                    return EscalationResult.from_dict(cached)
                except (KeyError, ValueError, TypeError) as e:
                    logger.debug(f"Ignoring unreadable cached escalation for {email.email_id}: {e}")

        try:
            try:
                result = self._request(email, context, tier)
            except EscalationUnavailable as e:
                if tier is not ModelTier.DEEP:
                    raise
                logger.info(f"Deep-tier escalation failed for {email.email_id} ({e.reason}); retrying fast tier")
                result = self._request(email, context, ModelTier.FAST)
        except EscalationUnavailable as e:
            self.usage.record_failure()
            logger.warning(f"Escalation unavailable for {email.email_id}: {e.reason}")
            return Unavailable(reason=e.reason, tier=tier)
        except Exception as e:
            self.usage.record_failure()
            logger.warning(f"Escalation failed for {email.email_id}: {e}")
            return Unavailable(reason=str(e) or e.__class__.__name__, tier=tier)

        if self.cache is not None:
            self.cache.set(key, result.tier.value, result.to_dict())
        logger.debug(
            f"Escalated {email.email_id} via {result.tier.value}: "
            f"job_related={result.is_job_related} confidence={result.confidence:.2f}"
        )
        return result

    def classify_status(
        self,
        email: RawEmail,
        local_candidate: StatusCandidate,
    ) -> Union[StatusCandidate, Unavailable]:
        """Deep-context stage classification for an ambiguous status."""
        context = EscalationContext(
            initial_confidence=local_candidate.confidence,
            has_complex_content=True,
            requested_tier=ModelTier.DEEP,
        )
        outcome = self.escalate(email, local_candidate.confidence, context)
        if isinstance(outcome, Unavailable):
            return outcome
        if outcome.status is None:
            return Unavailable(reason="no status in response", tier=outcome.tier)
        return outcome.status


def apply_escalation(
    local_score: ConfidenceScore,
    local_fields: ExtractedFields,
    outcome: EscalationOutcome,
) -> tuple[ConfidenceScore, ExtractedFields]:
    """
    Fold an escalation outcome into the local results.

    The AI answer wins only when it asserts job-relatedness with a confidence
    above the local score; the score is then rebuilt rather than adjusted.
    """
    if isinstance(outcome, Unavailable):
        return local_score, local_fields
    if not outcome.is_job_related or outcome.confidence <= local_score.value:
        return local_score, local_fields

    score = ConfidenceScore(
        value=clamp(outcome.confidence),
        breakdown=local_score.breakdown,
        source="escalation",
        reasoning=f"{outcome.tier.value} model: {outcome.reasoning}".strip(),
    )
    notes = [f"AI: {outcome.reasoning}"] if outcome.reasoning else []
    if local_fields.notes:
        notes.append(local_fields.notes)
    fields = replace(local_fields.overlay(outcome.fields), notes="\n".join(notes) or None)
    return score, fields
