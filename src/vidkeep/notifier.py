"""Publish/subscribe sink for catalog lifecycle events."""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from .models import LifecycleEvent

logger = logging.getLogger(__name__)

ITEMS_TOPIC = "items"
SOURCES_TOPIC = "sources"


@dataclass
class Event:
    """A lifecycle event delivered to subscribers."""

    topic: str
    kind: LifecycleEvent
    payload: Dict[str, Any]
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Subscriber = Callable[[Event], None]


class Notifier:
    """Delivers created/updated/removed events to topic subscribers.

    Delivery is synchronous in the publishing thread. A subscriber that
    raises is logged and skipped; publishing never fails the caller.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Subscriber]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, topic: str, callback: Subscriber) -> None:
        """Register a callback for a topic."""
        with self._lock:
            self._subscribers[topic].append(callback)

    def unsubscribe(self, topic: str, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers.get(topic, []):
                self._subscribers[topic].remove(callback)

    def publish(self, topic: str, kind: LifecycleEvent, payload: Dict[str, Any]) -> int:
        """Publish an event to every subscriber of a topic.

        Args:
            topic: Topic name (e.g. "items")
            kind: created, updated or removed
            payload: Event data, usually the record as a dict

        Returns:
            Number of subscribers that received the event
        """
        event = Event(topic=topic, kind=LifecycleEvent(kind), payload=payload)

        with self._lock:
            subscribers = list(self._subscribers.get(topic, []))

        if not subscribers:
            logger.debug(f"No subscribers for {topic}:{event.kind.value}")
            return 0

        delivered = 0
        for callback in subscribers:
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                logger.warning(f"Failed to deliver {topic}:{event.kind.value} event: {e}")

        return delivered
