"""
LangGraph triage pipeline.

Flow per email:
    START -> extract -> score -> [escalate] -> detect_status -> route -> END

`escalate` runs only when the local score is below the escalation threshold
and an AI adapter is configured. Batches go through `run_batch`, which
classifies emails in parallel and persists from a single writer.
"""
import logging
from typing import Iterable, Optional
from typing_extensions import TypedDict

from langgraph.graph import StateGraph, START, END

from .config import TriageConfig
from .domain import (
    ConfidenceScore,
    ExtractedFields,
    Lane,
    ProcessedEmail,
    RawEmail,
    RunSummary,
    StatusCandidate,
)
from .escalation import (
    EscalationAdapter,
    EscalationContext,
    EscalationResult,
    apply_escalation,
)
from .events import EventBus
from .extraction import extract_fields
from .merger import RecordMerger
from .repository import Repository
from .review_queue import ReviewQueue
from .scoring import ConfidenceScorer
from .services.application_service import ApplicationService
from .services.email_processor import run_batch
from .services.redis_cache import EscalationCache
from .status_detection import StatusDetector
from .transitions import TransitionValidator
from .triage import TriageRouter

logger = logging.getLogger(__name__)


class TriageState(TypedDict, total=False):
    """State that flows through the graph for one email."""
    email: RawEmail
    fields: ExtractedFields
    score: ConfidenceScore
    escalation: Optional[EscalationResult]
    escalation_error: Optional[str]
    status: StatusCandidate
    processed: ProcessedEmail
    lane: Lane


class TriagePipeline:
    def __init__(
        self,
        scorer: ConfidenceScorer,
        detector: StatusDetector,
        router: TriageRouter,
        applications: ApplicationService,
        review_queue: ReviewQueue,
        repository: Repository,
        adapter: Optional[EscalationAdapter] = None,
        config: Optional[TriageConfig] = None,
        events: Optional[EventBus] = None,
    ):
        self.scorer = scorer
        self.detector = detector
        self.router = router
        self.applications = applications
        self.review_queue = review_queue
        self.repository = repository
        self.adapter = adapter
        self.config = config or TriageConfig()
        self.events = events or EventBus()
        self.graph = self._build_graph()

    # -- graph nodes --------------------------------------------------------

    def _extract_node(self, state: TriageState) -> dict:
        email = state["email"]
        fields = extract_fields(email.subject, email.body, email.sender, email.received_at)
        return {"fields": fields, "escalation": None, "escalation_error": None}

    def _score_node(self, state: TriageState) -> dict:
        return {"score": self.scorer.score(state["fields"], state["email"].text)}

    def _needs_escalation(self, state: TriageState) -> str:
        if self.adapter is not None and state["score"].value < self.config.escalation_threshold:
            return "escalate"
        return "detect_status"

    def _escalate_node(self, state: TriageState) -> dict:
        email = state["email"]
        local = state["score"]
        outcome = self.adapter.escalate(email, local.value, EscalationContext(initial_confidence=local.value))
        score, fields = apply_escalation(local, state["fields"], outcome)
        if isinstance(outcome, EscalationResult):
            return {"score": score, "fields": fields, "escalation": outcome}
        return {"escalation_error": outcome.reason}

    def _detect_status_node(self, state: TriageState) -> dict:
        email = state["email"]
        if state["score"].value < self.router.review_min:
            # Heading for discard; no point asking the model about its stage.
            return {"status": self.detector.detect_local(email)}
        return {"status": self.detector.detect(email, escalated=state.get("escalation"))}

    def _route_node(self, state: TriageState) -> dict:
        processed = ProcessedEmail(
            email=state["email"],
            fields=state["fields"],
            score=state["score"],
            status=state["status"],
            escalated=state.get("escalation") is not None,
        )
        lane = self.router.route(processed.score.value)
        logger.debug(
            f"Email {processed.email_id}: {lane.value} "
            f"(confidence {processed.score.value:.2f}, status {processed.status.status.value})"
        )
        return {"processed": processed, "lane": lane}

    def _build_graph(self):
        graph = StateGraph(TriageState)

        graph.add_node("extract", self._extract_node)
        graph.add_node("score", self._score_node)
        graph.add_node("escalate", self._escalate_node)
        graph.add_node("detect_status", self._detect_status_node)
        graph.add_node("route", self._route_node)

        graph.add_edge(START, "extract")
        graph.add_edge("extract", "score")
        graph.add_conditional_edges(
            "score",
            self._needs_escalation,
            {"escalate": "escalate", "detect_status": "detect_status"},
        )
        graph.add_edge("escalate", "detect_status")
        graph.add_edge("detect_status", "route")
        graph.add_edge("route", END)

        return graph.compile()

    # -- public API ---------------------------------------------------------

    def process(self, email: RawEmail) -> tuple[ProcessedEmail, Lane]:
        """Classify one email start to finish. Persists nothing."""
        result = self.graph.invoke({"email": email})
        return result["processed"], result["lane"]

    def run_batch(self, emails: Iterable[RawEmail]) -> RunSummary:
        return run_batch(self, emails)


def build_pipeline(repository: Repository, settings, events: Optional[EventBus] = None, adapter=None) -> TriagePipeline:
    """Wire a pipeline from Settings. `adapter` overrides the one built from the API key."""
    config = settings.triage_config()
    events = events or EventBus()
    if adapter is None and settings.openai_api_key:
        adapter = EscalationAdapter.from_settings(settings, cache=EscalationCache.from_settings(settings))

    validator = TransitionValidator(config.status_update_threshold)
    merger = RecordMerger(
        update_threshold=config.status_update_threshold,
        identity_min_confidence=config.review_queue_threshold,
        validator=validator,
    )
    applications = ApplicationService(repository, merger, events)
    return TriagePipeline(
        scorer=ConfidenceScorer.from_config(config),
        detector=StatusDetector(config.status_keywords, adapter=adapter),
        router=TriageRouter.from_config(config),
        applications=applications,
        review_queue=ReviewQueue(repository, applications.accept, adapter=adapter, events=events),
        repository=repository,
        adapter=adapter,
        config=config,
        events=events,
    )
