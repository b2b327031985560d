"""Application configuration. All sensitive config from .env."""
from dataclasses import dataclass, field
from typing import Optional

from pydantic_settings import BaseSettings


DEFAULT_INCLUDE_KEYWORDS = [
    "interview", "position", "role", "application", "applying", "candidate", "hire",
    "offer", "recruiting", "recruiter", "recruit", "invitation",
    "ראיון", "הראיון", "עמדה", "העמדה", "תפקיד", "התפקיד", "בקשה", "הבקשה",
    "מועמד", "המועמד", "מועמדת", "המועמדת", "מועמדים", "המועמדים", "מועמדות", "המועמדות",
    "לשכור", "לגייס", "הצעה", "ההצעה", "הצעות", "ההצעות", "גיוס", "הגיוס",
    "מגייס", "המגייס", "זימון", "הזימון",
]

DEFAULT_EXCLUDE_KEYWORDS = [
    "newsletter", "webinar", "promotion", "discount", "sale ends", "online course",
    "workshop", "job alert", "jobs you may be interested in", "recommended jobs",
    "ניוזלטר", "מבצע", "הנחה", "קורס", "סדנה",
]

DEFAULT_CONTEXT_EXCLUSIONS = [
    "this is an automated message",
    "unsubscribe",
    "manage your email preferences",
    "you are receiving this email because",
    "view this email in your browser",
    "להסרה מרשימת התפוצה",
]

# Regex phrases per lifecycle status, matched against lowercased subject + body.
DEFAULT_STATUS_KEYWORDS = {
    "offer": [
        r"pleased\s+to\s+offer",
        r"happy\s+to\s+offer",
        r"job\s+offer",
        r"offer\s+letter",
        r"extend\s+(?:you\s+)?an?\s+offer",
        r"congratulations.{0,60}\boffer",
        r"welcome\s+aboard",
        r"הצעת\s+עבודה",
        r"שמחים\s+להציע",
        r"חבילת\s+תגמולים",
    ],
    "rejected": [
        r"unfortunately",
        r"regret\s+to\s+inform",
        r"not\s+(?:been\s+)?selected",
        r"not\s+moving\s+forward",
        r"will\s+not\s+be\s+moving\s+forward",
        r"decided\s+to\s+(?:move\s+forward|proceed|go)\s+with\s+(?:other|another)",
        r"position\s+has\s+been\s+filled",
        r"after\s+careful\s+consideration",
        r"לצערנו",
        r"למרבה\s+הצער",
        r"לא\s+נבחרת",
        r"לא\s+עברת",
        r"מועמד\s+אחר",
    ],
    "interview": [
        r"(?:schedule|book)\s+(?:an?|your|the)\s+(?:interview|call|phone\s+screen)",
        r"invite\s+you\s+(?:to|for)\s+(?:an?\s+)?(?:interview|call|conversation)",
        r"interview\s+(?:invitation|scheduled|confirmation)",
        r"(?:would|'d)\s+like\s+to\s+(?:invite|schedule|speak|meet)",
        r"phone\s+screen",
        r"video\s+call",
        r"(?:coding|technical)\s+(?:challenge|assessment|interview)",
        r"take[-\s]?home\s+(?:assignment|project|test)",
        r"zoom\.us/|teams\.microsoft\.com/|meet\.google\.com/",
        r"ראיון",
        r"זימון",
        r"לזמן\s+אותך",
        r"השלב\s+הבא",
    ],
    "withdrawn": [
        r"withdr(?:aw|ew|awn)\s+(?:my|your|the)\s+(?:application|candidacy)",
        r"no\s+longer\s+(?:interested|pursuing|available)",
        r"application\s+(?:has\s+been\s+)?withdrawn",
        r"pursuing\s+other\s+opportunities",
        r"לחזור\s+בי",
        r"לא\s+מעוניי?נ(?:ת)?",
        r"ביטול\s+מועמדות",
    ],
    "applied": [
        r"thank\s+you\s+for\s+(?:applying|your\s+application)",
        r"thanks\s+for\s+applying",
        r"received\s+your\s+application",
        r"application\s+(?:has\s+been\s+)?(?:received|submitted)",
        r"we(?:'|’)?ll\s+review\s+your\s+application",
        r"your\s+application\s+was\s+sent",
        r"הגשת\s+מועמדות",
        r"קיבלנו\s+את\s+(?:מועמדותך|פנייתך|קורות\s+החיים)",
    ],
}


@dataclass(frozen=True)
class TriageConfig:
    """Explicit tunables handed to the pipeline components."""

    auto_process_threshold: float = 0.85
    review_queue_threshold: float = 0.25
    status_update_threshold: float = 0.6
    escalation_threshold: float = 0.3
    include_keywords: tuple = tuple(DEFAULT_INCLUDE_KEYWORDS)
    exclude_keywords: tuple = tuple(DEFAULT_EXCLUDE_KEYWORDS)
    context_exclusions: tuple = tuple(DEFAULT_CONTEXT_EXCLUSIONS)
    status_keywords: dict = field(default_factory=lambda: {k: list(v) for k, v in DEFAULT_STATUS_KEYWORDS.items()})
    max_emails_per_sync: int = 50
    process_threads_only: str = "all"
    ingestion_workers: int = 4


class Settings(BaseSettings):
    """App settings from environment."""

    # Database - default SQLite for easy local dev; use DATABASE_URL for PostgreSQL
    database_url: str = "sqlite:///./job_triage.db"
    sqlite_busy_timeout_ms: int = 5000

    # Triage thresholds
    auto_process_threshold: float = 0.85
    review_queue_threshold: float = 0.25
    status_update_threshold: float = 0.6
    # Local relevance below this escalates to the AI service
    escalation_threshold: float = 0.3

    # Keyword lists (JSON arrays / objects when set through the environment)
    include_keywords: list[str] = DEFAULT_INCLUDE_KEYWORDS
    exclude_keywords: list[str] = DEFAULT_EXCLUDE_KEYWORDS
    context_exclusions: list[str] = DEFAULT_CONTEXT_EXCLUSIONS
    status_keywords: dict[str, list[str]] = DEFAULT_STATUS_KEYWORDS

    # Retrieval collaborator hints
    lookback_days: int = 30
    max_emails_per_sync: int = 50
    # "latest" keeps only the newest message of each thread; "all" keeps every message
    process_threads_only: str = "all"

    # AI - set OPENAI_API_KEY to enable escalation
    openai_api_key: str = ""
    openai_fast_model: str = "gpt-4o-mini"
    openai_deep_model: str = "gpt-4o"
    openai_temperature: float = 0.1
    escalation_timeout_s: float = 20.0
    # USD per 1M tokens, used for the advisory cost estimate
    fast_model_cost_per_1m: float = 0.35
    deep_model_cost_per_1m: float = 7.00

    # CORS
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Redis (for Celery and optional escalation cache)
    redis_url: str = "redis://localhost:6379/0"
    escalation_cache_ttl_hours: int = 24 * 7

    # Celery
    celery_broker_url: Optional[str] = None  # defaults to redis_url if not set
    celery_queue: str = "triage"
    # Seconds before a running batch is asked to stop
    batch_soft_time_limit_s: int = 600

    # Worker threads used to classify independent emails of a batch
    ingestion_workers: int = 4

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def celery_broker(self) -> str:
        return self.celery_broker_url or self.redis_url

    def triage_config(self) -> TriageConfig:
        return TriageConfig(
            auto_process_threshold=self.auto_process_threshold,
            review_queue_threshold=self.review_queue_threshold,
            status_update_threshold=self.status_update_threshold,
            escalation_threshold=self.escalation_threshold,
            include_keywords=tuple(self.include_keywords),
            exclude_keywords=tuple(self.exclude_keywords),
            context_exclusions=tuple(self.context_exclusions),
            status_keywords={k: list(v) for k, v in self.status_keywords.items()},
            max_emails_per_sync=self.max_emails_per_sync,
            process_threads_only=self.process_threads_only,
            ingestion_workers=self.ingestion_workers,
        )


settings = Settings()
