"""Celery app for background triage batches; results land in the DB, Redis only carries task state."""
from celery import Celery
from .config import settings

celery_app = Celery(
    "job_triage",
    broker=settings.celery_broker,
    backend=settings.redis_url,
    include=["jobtriage.tasks"],
)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue=settings.celery_queue,
    # A batch killed mid-run is redelivered; EmailLog skips emails it already finished.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_soft_time_limit=settings.batch_soft_time_limit_s,
    # A batch already fans out to ingestion_workers threads.
    worker_prefetch_multiplier=1,
    task_track_started=True,
    # GET /api/runs/tasks/{id} reads the summary from here; /api/runs/last reads the DB.
    result_expires=24 * 3600,
)
