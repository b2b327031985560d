"""Celery tasks: batch triage. DB session per task; results persisted in the DB."""
import logging

from celery import shared_task
from celery.signals import setup_logging as celery_setup_logging

from .config import settings
from .database import SessionLocal
from .domain import RawEmail
from .logging_config import setup_logging
from .pipeline import build_pipeline
from .repository import SqlAlchemyRepository

logger = logging.getLogger(__name__)


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs):
    setup_logging(settings.log_level, settings.log_file)


@shared_task(bind=True, name="jobtriage.tasks.process_email_batch")
def process_email_batch(self, emails: list[dict]) -> dict:
    """
    Triage one batch of emails.

    emails: RawEmail dicts (email_id, subject, body, sender, received_at ISO,
    thread_id). Returns the run summary dict, outcomes included.
    """
    raw = [RawEmail.from_dict(e) for e in emails]
    db = SessionLocal()
    try:
        pipeline = build_pipeline(SqlAlchemyRepository(db), settings)
        summary = pipeline.run_batch(raw)
    finally:
        db.close()
    logger.info(f"Task {self.request.id}: triaged {summary.processed}/{summary.total_seen} email(s), {summary.errors} error(s)")
    return summary.to_dict()
