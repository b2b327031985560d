"""Batch runs: parallel classification, single-writer persistence."""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Iterable, Optional

from ..domain import ItemOutcome, Lane, ProcessedEmail, RawEmail, RunSummary
from ..errors import PersistenceFailure
from ..events import RunCompleted
from .application_service import group_by_application

logger = logging.getLogger(__name__)

ALREADY_PROCESSED = "already processed"
SUPERSEDED_IN_THREAD = "superseded by a newer message in the same thread"


def latest_per_thread(emails: list[RawEmail]) -> tuple[list[RawEmail], list[RawEmail]]:
    """Split into (newest message of each thread, older messages). Keeps input order."""
    newest: dict[str, RawEmail] = {}
    for email in emails:
        thread = email.thread_id or email.email_id
        current = newest.get(thread)
        if current is None or (email.received_at, email.email_id) > (current.received_at, current.email_id):
            newest[thread] = email
    keep_ids = {e.email_id for e in newest.values()}
    kept = [e for e in emails if e.email_id in keep_ids]
    dropped = [e for e in emails if e.email_id not in keep_ids]
    return kept, dropped


def _classify_all(pipeline, emails: list[RawEmail], workers: int) -> tuple[dict, dict]:
    """Run the graph over independent emails in a thread pool."""
    results: dict[str, tuple[ProcessedEmail, Lane]] = {}
    failures: dict[str, str] = {}
    if not emails:
        return results, failures

    with ThreadPoolExecutor(max_workers=max(1, min(workers, len(emails)))) as executor:
        futures = {executor.submit(pipeline.process, email): email for email in emails}
        for future in as_completed(futures):
            email = futures[future]
            try:
                results[email.email_id] = future.result()
            except Exception as e:
                logger.exception(f"Email {email.email_id}: classification failed")
                failures[email.email_id] = str(e) or e.__class__.__name__
    return results, failures


def _error_outcome(pe: ProcessedEmail, lane: Lane, e: Exception) -> ItemOutcome:
    return ItemOutcome(
        email_id=pe.email_id,
        lane=lane,
        confidence=pe.score.value,
        reason="not persisted; will retry on the next run",
        error=str(e),
    )


def _accept_groups(pipeline, accepted: list[ProcessedEmail]) -> list[ItemOutcome]:
    outcomes = []
    for group in group_by_application(accepted):
        try:
            record = pipeline.applications.accept(group)
            group_outcomes = [
                ItemOutcome(
                    email_id=pe.email_id,
                    lane=Lane.AUTO_ACCEPT,
                    confidence=pe.score.value,
                    record_id=record.record_id,
                    reason=f"merged into {record.company} / {record.position}",
                )
                for pe in group
            ]
            pipeline.repository.mark_processed(group_outcomes)
        except PersistenceFailure as e:
            logger.warning(f"Could not persist {len(group)} email(s) for {group[0].application_key()}: {e}")
            group_outcomes = [_error_outcome(pe, Lane.AUTO_ACCEPT, e) for pe in group]
        outcomes.extend(group_outcomes)
    return outcomes


def _enqueue_reviews(pipeline, queued: list[ProcessedEmail]) -> list[ItemOutcome]:
    outcomes = []
    for pe in sorted(queued, key=lambda p: (p.received_at, p.email_id)):
        try:
            suggestion = pipeline.applications.preview([pe]).record
            pipeline.review_queue.enqueue(pe, suggestion)
            outcome = ItemOutcome(
                email_id=pe.email_id,
                lane=Lane.REVIEW,
                confidence=pe.score.value,
                reason=pe.score.reasoning or "needs review",
            )
            pipeline.repository.mark_processed([outcome])
        except PersistenceFailure as e:
            logger.warning(f"Could not queue {pe.email_id} for review: {e}")
            outcome = _error_outcome(pe, Lane.REVIEW, e)
        outcomes.append(outcome)
    return outcomes


def _record_discards(pipeline, discarded: list[ProcessedEmail], superseded: list[RawEmail]) -> list[ItemOutcome]:
    outcomes = [
        ItemOutcome(
            email_id=pe.email_id,
            lane=Lane.DISCARD,
            confidence=pe.score.value,
            reason=f"confidence {pe.score.value:.2f} below review threshold; {pe.score.reasoning}".rstrip("; "),
        )
        for pe in discarded
    ]
    outcomes += [ItemOutcome(email_id=e.email_id, lane=Lane.DISCARD, reason=SUPERSEDED_IN_THREAD) for e in superseded]
    if not outcomes:
        return outcomes
    try:
        pipeline.repository.mark_processed(outcomes)
    except PersistenceFailure as e:
        logger.warning(f"Could not record {len(outcomes)} discarded email(s): {e}")
        outcomes = [
            ItemOutcome(email_id=o.email_id, lane=o.lane, confidence=o.confidence, reason=o.reason, error=str(e))
            for o in outcomes
        ]
    return outcomes


def run_batch(pipeline, emails: Iterable[RawEmail], max_emails: Optional[int] = None) -> RunSummary:
    """
    Process one batch handed over by the retrieval collaborator.

    Every email ends up with exactly one outcome: auto-accepted into a
    record, queued for review, discarded with a reason, or an error. Errored
    and truncated emails are not recorded as processed, so the next run
    picks them up again.
    """
    config = pipeline.config
    summary = RunSummary(started_at=datetime.utcnow())
    emails = list(emails)
    summary.total_seen = len(emails)

    limit = max_emails if max_emails is not None else config.max_emails_per_sync
    if limit and len(emails) > limit:
        logger.warning(f"Batch of {len(emails)} emails truncated to {limit}; the rest is left for the next run")
        emails = emails[:limit]

    done = pipeline.repository.processed_ids(e.email_id for e in emails)
    skipped = [ItemOutcome(email_id=e.email_id, lane=None, reason=ALREADY_PROCESSED) for e in emails if e.email_id in done]
    emails = [e for e in emails if e.email_id not in done]
    if skipped:
        logger.info(f"Skipping {len(skipped)} already processed email(s)")

    superseded: list[RawEmail] = []
    if config.process_threads_only == "latest":
        emails, superseded = latest_per_thread(emails)

    logger.info(f"=== TRIAGING {len(emails)} EMAILS ===")
    results, failures = _classify_all(pipeline, emails, config.ingestion_workers)

    by_lane: dict[Lane, list[ProcessedEmail]] = {lane: [] for lane in Lane}
    for email in emails:
        if email.email_id in results:
            processed, lane = results[email.email_id]
            by_lane[lane].append(processed)

    outcomes = [
        ItemOutcome(email_id=email_id, lane=None, reason="classification failed", error=error)
        for email_id, error in failures.items()
    ]
    outcomes += _accept_groups(pipeline, by_lane[Lane.AUTO_ACCEPT])
    outcomes += _enqueue_reviews(pipeline, by_lane[Lane.REVIEW])
    outcomes += _record_discards(pipeline, by_lane[Lane.DISCARD], superseded)

    for outcome in outcomes:
        if outcome.error:
            summary.errors += 1
            continue
        summary.processed += 1
        if outcome.lane is Lane.AUTO_ACCEPT:
            summary.auto_accepted += 1
        elif outcome.lane is Lane.REVIEW:
            summary.queued += 1
        elif outcome.lane is Lane.DISCARD:
            summary.discarded += 1
    summary.outcomes = skipped + outcomes
    summary.finished_at = datetime.utcnow()

    try:
        pipeline.repository.save_run_summary(summary)
    except PersistenceFailure as e:
        logger.error(f"Run summary not saved: {e}")

    logger.info("=== TRIAGE COMPLETE ===")
    logger.info(
        f"Seen: {summary.total_seen}, processed: {summary.processed}, auto-accepted: {summary.auto_accepted}, "
        f"queued: {summary.queued}, discarded: {summary.discarded}, errors: {summary.errors}"
    )
    if pipeline.adapter is not None:
        logger.info(f"Escalation usage: {pipeline.adapter.usage.snapshot()}")
    pipeline.events.publish(RunCompleted(summary=summary))
    return summary
