"""FastAPI dependencies: per-request repository and pipeline, process-wide adapter and event bus."""
from functools import lru_cache
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from .config import settings
from .database import get_sync_db
from .escalation import EscalationAdapter
from .events import EventBus
from .pipeline import TriagePipeline, build_pipeline
from .repository import SqlAlchemyRepository
from .services.redis_cache import EscalationCache

event_bus = EventBus()


@lru_cache(maxsize=1)
def _shared_adapter() -> Optional[EscalationAdapter]:
    if not settings.openai_api_key:
        return None
    return EscalationAdapter.from_settings(settings, cache=EscalationCache.from_settings(settings))


def get_adapter() -> Optional[EscalationAdapter]:
    """One adapter per process so usage counters cover every request."""
    return _shared_adapter()


def get_repository(db: Session = Depends(get_sync_db)) -> SqlAlchemyRepository:
    return SqlAlchemyRepository(db)


def get_pipeline(
    repository: SqlAlchemyRepository = Depends(get_repository),
    adapter: Optional[EscalationAdapter] = Depends(get_adapter),
) -> TriagePipeline:
    return build_pipeline(repository, settings, events=event_bus, adapter=adapter)
