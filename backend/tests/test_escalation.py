from unittest.mock import MagicMock

import httpx
import openai
import pytest

from conftest import llm_response, make_email, mock_client
from jobtriage.domain import (
    ApplicationStatus,
    ConfidenceScore,
    ExtractedFields,
    ModelTier,
    StatusCandidate,
)
from jobtriage.escalation import (
    EscalationAdapter,
    EscalationContext,
    EscalationResult,
    Unavailable,
    UsageTracker,
    apply_escalation,
    complexity_indicators,
    content_hash,
    select_tier,
)

PAYLOAD = {
    "is_job_related": True,
    "confidence": 0.8,
    "status": "interview",
    "status_confidence": 0.75,
    "extracted_fields": {"company": "Acme", "position": "Data Engineer"},
    "reasoning": "Interview invitation from a recruiter",
}

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _email(**kwargs):
    kwargs.setdefault("subject", "Quick question")
    kwargs.setdefault("body", "Can we talk next week?")
    kwargs.setdefault("sender", "dana@acme.com")
    return make_email("m1", **kwargs)


# --- tier selection ----------------------------------------------------------

@pytest.mark.parametrize(
    "context,expected",
    [
        (EscalationContext(initial_confidence=0.1), ModelTier.FAST),
        (EscalationContext(initial_confidence=0.9), ModelTier.FAST),
        (EscalationContext(initial_confidence=0.15), ModelTier.DEEP),
        (EscalationContext(initial_confidence=0.85), ModelTier.DEEP),
        (EscalationContext(initial_confidence=0.05, is_in_review_queue=True), ModelTier.DEEP),
        (EscalationContext(initial_confidence=0.5, requested_tier=ModelTier.FAST), ModelTier.FAST),
        (EscalationContext(initial_confidence=0.05, has_complex_content=True), ModelTier.FAST),
    ],
)
def test_select_tier(context, expected):
    assert select_tier("Hello", "short body", context) is expected


def test_select_tier_mixed_language_goes_deep():
    context = EscalationContext(initial_confidence=0.05)
    indicators = complexity_indicators("Interview", "שלום, נשמח לזמן אותך", context)
    assert "hebrew" in indicators
    assert "mixed_language" in indicators
    assert select_tier("Interview", "שלום, נשמח לזמן אותך", context) is ModelTier.DEEP


def test_select_tier_is_deterministic():
    context = EscalationContext(initial_confidence=0.05, has_complex_content=True)
    body = "Fwd: " + "line\n" * 30
    tiers = {select_tier("Re", body, context) for _ in range(5)}
    assert tiers == {ModelTier.DEEP}


def test_content_hash_stable_and_sensitive():
    assert content_hash("a", "b", "c") == content_hash("a", "b", "c")
    assert content_hash("a", "b", "c") != content_hash("a", "b", "d")


# --- adapter -----------------------------------------------------------------

def test_escalate_parses_response():
    client = mock_client(llm_response(PAYLOAD))
    adapter = EscalationAdapter(client)

    result = adapter.escalate(_email(), 0.1)

    assert isinstance(result, EscalationResult)
    assert result.tier is ModelTier.FAST
    assert result.model == "gpt-4o-mini"
    assert result.confidence == pytest.approx(0.8)
    assert result.fields.company == "Acme"
    assert result.status.status is ApplicationStatus.INTERVIEW
    assert result.status.confidence == pytest.approx(0.75)
    assert result.status.source == "escalation"
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert adapter.usage.snapshot()["fast_calls"] == 1
    assert adapter.usage.snapshot()["total_tokens"] == 120


def test_escalate_handles_fenced_json():
    client = mock_client(llm_response("```json\n" + '{"is_job_related": false, "confidence": 0.2}' + "\n```"))
    result = EscalationAdapter(client).escalate(_email(), 0.1)
    assert isinstance(result, EscalationResult)
    assert result.is_job_related is False
    assert result.status is None


def test_connection_error_keeps_local_results():
    client = mock_client(side_effect=ConnectionError("network unreachable"))
    adapter = EscalationAdapter(client)
    local_score = ConfidenceScore(value=0.2)
    local_fields = ExtractedFields(company="Acme")

    outcome = adapter.escalate(_email(), local_score.value)

    assert isinstance(outcome, Unavailable)
    assert "network unreachable" in outcome.reason
    assert adapter.usage.snapshot()["failures"] == 1
    score, fields = apply_escalation(local_score, local_fields, outcome)
    assert score is local_score
    assert fields is local_fields


@pytest.mark.parametrize(
    "error,reason",
    [
        (openai.APITimeoutError(request=_REQUEST), "timeout"),
        (openai.InternalServerError("boom", response=httpx.Response(500, request=_REQUEST), body=None), "http 500"),
        (openai.APIConnectionError(request=_REQUEST), "api error"),
    ],
)
def test_openai_errors_become_unavailable(error, reason):
    adapter = EscalationAdapter(mock_client(side_effect=error))
    outcome = adapter.escalate(_email(), 0.1)
    assert isinstance(outcome, Unavailable)
    assert outcome.reason.startswith(reason)
    assert outcome.tier is ModelTier.FAST


@pytest.mark.parametrize(
    "payload",
    [
        "not json at all",
        {"is_job_related": True},
        {"is_job_related": True, "confidence": "very"},
        {"is_job_related": True, "confidence": [0.5]},
    ],
)
def test_malformed_response_is_unavailable(payload):
    adapter = EscalationAdapter(mock_client(llm_response(payload)))
    outcome = adapter.escalate(_email(), 0.1)
    assert isinstance(outcome, Unavailable)
    snapshot = adapter.usage.snapshot()
    assert snapshot["fast_calls"] == 1
    assert snapshot["failures"] == 1


def test_out_of_range_confidence_is_clamped():
    payload = dict(PAYLOAD, confidence=1.7)
    result = EscalationAdapter(mock_client(llm_response(payload))).escalate(_email(), 0.1)
    assert result.confidence == 1.0


def test_missing_api_key_is_unavailable():
    outcome = EscalationAdapter().escalate(_email(), 0.1)
    assert isinstance(outcome, Unavailable)
    assert "OPENAI_API_KEY" in outcome.reason


def test_deep_failure_retries_fast_tier():
    client = mock_client(side_effect=[openai.APITimeoutError(request=_REQUEST), llm_response(PAYLOAD)])
    adapter = EscalationAdapter(client)
    context = EscalationContext(initial_confidence=0.5, is_in_review_queue=True)

    result = adapter.escalate(_email(), 0.5, context)

    assert isinstance(result, EscalationResult)
    assert result.tier is ModelTier.FAST
    models = [c.kwargs["model"] for c in client.chat.completions.create.call_args_list]
    assert models == ["gpt-4o", "gpt-4o-mini"]


def test_fast_fallback_is_cached_under_fast_tier():
    cache = MagicMock()
    cache.get.return_value = None
    client = mock_client(side_effect=[openai.APITimeoutError(request=_REQUEST), llm_response(PAYLOAD)])
    adapter = EscalationAdapter(client, cache=cache)
    context = EscalationContext(initial_confidence=0.5, is_in_review_queue=True)

    adapter.escalate(_email(), 0.5, context)

    cache.get.assert_called_once()
    assert cache.get.call_args.args[1] == "deep"
    key, tier, data = cache.set.call_args.args
    assert tier == "fast"
    assert data["tier"] == "fast"


def test_cache_hit_skips_model_call():
    cached = EscalationResult(
        is_job_related=True,
        confidence=0.9,
        fields=ExtractedFields(company="Globex"),
        reasoning="cached",
        tier=ModelTier.FAST,
        model="gpt-4o-mini",
    )
    cache = MagicMock()
    cache.get.return_value = cached.to_dict()
    client = mock_client()
    adapter = EscalationAdapter(client, cache=cache)

    result = adapter.escalate(_email(), 0.1)

    assert result.fields.company == "Globex"
    client.chat.completions.create.assert_not_called()
    cache.get.assert_called_once_with(content_hash("Quick question", "dana@acme.com", "Can we talk next week?"), "fast")


def test_cache_miss_stores_result():
    cache = MagicMock()
    cache.get.return_value = None
    adapter = EscalationAdapter(mock_client(llm_response(PAYLOAD)), cache=cache)

    adapter.escalate(_email(), 0.1)

    cache.set.assert_called_once()
    key, tier, data = cache.set.call_args.args
    assert tier == "fast"
    assert data["fields"]["company"] == "Acme"


def test_from_settings_requires_key():
    settings = MagicMock(openai_api_key="")
    assert EscalationAdapter.from_settings(settings) is None


def test_classify_status_uses_deep_tier():
    client = mock_client(llm_response(PAYLOAD))
    adapter = EscalationAdapter(client)
    local = StatusCandidate(ApplicationStatus.APPLIED, 0.5, "nothing matched")

    outcome = adapter.classify_status(_email(), local)

    assert isinstance(outcome, StatusCandidate)
    assert outcome.status is ApplicationStatus.INTERVIEW
    assert client.chat.completions.create.call_args.kwargs["model"] == "gpt-4o"


def test_classify_status_without_status_is_unavailable():
    payload = dict(PAYLOAD, status=None)
    adapter = EscalationAdapter(mock_client(llm_response(payload)))
    outcome = adapter.classify_status(_email(), StatusCandidate(ApplicationStatus.APPLIED, 0.5, ""))
    assert isinstance(outcome, Unavailable)
    assert outcome.reason == "no status in response"


def test_usage_cost_estimate():
    tracker = UsageTracker(fast_cost_per_1m=0.35, deep_cost_per_1m=7.0)
    tracker.record_call(ModelTier.FAST, 1_000_000)
    tracker.record_call(ModelTier.DEEP, 500_000)
    snapshot = tracker.snapshot()
    assert snapshot["fast_calls"] == 1
    assert snapshot["deep_calls"] == 1
    assert snapshot["estimated_cost_usd"] == pytest.approx(3.85)
    tracker.reset()
    assert tracker.snapshot()["total_tokens"] == 0


# --- folding results back ------------------------------------------------------

def _result(**overrides):
    values = dict(
        is_job_related=True,
        confidence=0.8,
        fields=ExtractedFields(company="Acme", position="Data Engineer"),
        reasoning="Looks like an interview invite",
        tier=ModelTier.FAST,
    )
    values.update(overrides)
    return EscalationResult(**values)


def test_apply_escalation_supersedes_weaker_local():
    local_score = ConfidenceScore(value=0.2)
    local_fields = ExtractedFields(company="ACME Corp", salary="$100k")

    score, fields = apply_escalation(local_score, local_fields, _result())

    assert score.value == pytest.approx(0.8)
    assert score.source == "escalation"
    assert fields.company == "Acme"
    assert fields.position == "Data Engineer"
    assert fields.salary == "$100k"
    assert fields.notes == "AI: Looks like an interview invite"


@pytest.mark.parametrize(
    "overrides",
    [
        {"is_job_related": False, "confidence": 0.95},
        {"confidence": 0.2},
        {"confidence": 0.1},
    ],
)
def test_apply_escalation_keeps_local(overrides):
    local_score = ConfidenceScore(value=0.2)
    local_fields = ExtractedFields(company="Acme")
    score, fields = apply_escalation(local_score, local_fields, _result(**overrides))
    assert score is local_score
    assert fields is local_fields
