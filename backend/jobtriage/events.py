"""
In-process event channel.

Listeners run synchronously in subscription order. A listener that raises is
logged and skipped; the remaining listeners still receive the event.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .domain import ApplicationRecord, ReviewQueueItem, RunSummary, TransitionEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordAccepted:
    record: ApplicationRecord
    created: bool


@dataclass(frozen=True)
class ItemQueued:
    item: ReviewQueueItem


@dataclass(frozen=True)
class TransitionRejected:
    event: TransitionEvent


@dataclass(frozen=True)
class RunCompleted:
    summary: RunSummary


Listener = Callable[[object], None]


class EventBus:
    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: list[tuple[int, Listener, Optional[type]]] = []
        self._next_token = 0

    def subscribe(self, listener: Listener, event_type: Optional[type] = None) -> Callable[[], None]:
        """Register a listener (optionally for one event type). Returns an unsubscribe callable."""
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._listeners.append((token, listener, event_type))

        def unsubscribe() -> None:
            with self._lock:
                self._listeners = [entry for entry in self._listeners if entry[0] != token]

        return unsubscribe

    def publish(self, event) -> int:
        """Deliver an event; returns how many listeners failed."""
        with self._lock:
            listeners = list(self._listeners)
        failures = 0
        for _, listener, event_type in listeners:
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                listener(event)
            except Exception as e:
                failures += 1
                logger.error(f"Event listener {getattr(listener, '__name__', listener)!r} failed on {type(event).__name__}: {e}")
        return failures
