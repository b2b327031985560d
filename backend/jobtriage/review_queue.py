"""Mid-confidence emails waiting for a human decision."""
import logging
from datetime import datetime
from typing import Callable, Optional

from .domain import ApplicationRecord, ProcessedEmail, ReviewQueueItem
from .errors import NotFound
from .escalation import EscalationContext, Unavailable
from .events import EventBus, ItemQueued

logger = logging.getLogger(__name__)

AcceptFn = Callable[..., ApplicationRecord]


class ReviewQueue:
    """
    Review queue backed by the repository.

    `accept` is the same callable the pipeline uses for auto-accepted
    emails (ApplicationService.accept), so an approved item is merged
    exactly like an auto-accepted one.
    """

    def __init__(self, repository, accept: AcceptFn, adapter=None, events: Optional[EventBus] = None):
        self.repository = repository
        self.accept = accept
        self.adapter = adapter
        self.events = events or EventBus()

    def enqueue(self, processed: ProcessedEmail, suggested: ApplicationRecord) -> ReviewQueueItem:
        """Add an item; enqueueing the same email twice returns the stored item."""
        existing = self.repository.get_queue_item(processed.email_id)
        if existing is not None:
            logger.debug(f"Email {processed.email_id} already queued for review")
            return existing

        item = ReviewQueueItem(processed=processed, suggested=suggested, queued_at=datetime.utcnow())
        if not self.repository.put_queue_item(item):
            # Lost a race with another writer.
            return self.repository.get_queue_item(processed.email_id) or item
        logger.info(
            f"Queued {processed.email_id} for review "
            f"(confidence {processed.score.value:.2f}, {suggested.company} / {suggested.position})"
        )
        self.events.publish(ItemQueued(item=item))
        return item

    def list(self) -> list[ReviewQueueItem]:
        return self.repository.list_queue_items()

    def get(self, item_id: str) -> ReviewQueueItem:
        item = self.repository.get_queue_item(item_id)
        if item is None:
            raise NotFound(f"Review item {item_id} not found")
        return item

    def approve(self, item_id: str) -> ApplicationRecord:
        item = self.get(item_id)
        record = self.accept([item.processed], consume_queue_item=item_id)
        logger.info(f"Approved review item {item_id} into {record.record_id}")
        return record

    def reject(self, item_id: str) -> None:
        if not self.repository.delete_queue_item(item_id):
            raise NotFound(f"Review item {item_id} not found")
        logger.info(f"Rejected review item {item_id}")

    def clear(self) -> int:
        count = self.repository.clear_queue()
        logger.info(f"Cleared {count} review item(s)")
        return count

    def decision_aid(self, item_id: str):
        """Deep-tier opinion on a queued email. Read only."""
        item = self.get(item_id)
        if self.adapter is None:
            return Unavailable(reason="AI escalation is not configured")
        context = EscalationContext(
            initial_confidence=item.processed.score.value,
            is_in_review_queue=True,
        )
        return self.adapter.escalate(item.processed.email, item.processed.score.value, context)
