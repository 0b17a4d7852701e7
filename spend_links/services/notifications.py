"""In-process push channel for link status changes.

Topics are ``owner:<wallet id>`` and ``link:<link id>``. Delivery is
at-least-once; consumers should treat ``new_status`` as authoritative and
fall back to re-fetching the link when their stream is closed.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import defaultdict
from typing import Iterator, Optional
from uuid import UUID

from ..core.errors import SubscriptionClosedError
from ..models import LinkChangeEvent

logger = logging.getLogger(__name__)


def owner_topic(owner_id: UUID) -> str:
    return f"owner:{owner_id}"


def link_topic(link_id: UUID) -> str:
    return f"link:{link_id}"


class Subscription:
    def __init__(self, broker: "LinkEventBroker", topic: str, maxsize: int) -> None:
        self.broker = broker
        self.topic = topic
        self._queue: "queue.Queue[LinkChangeEvent]" = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self._closed = False
        self._error: Optional[str] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, event: LinkChangeEvent) -> bool:
        """Try to enqueue once. Returns False if the queue is full."""
        with self._lock:
            if self._closed:
                return True
            try:
                self._queue.put_nowait(event)
            except queue.Full:
                return False
            return True

    def close(self, error: Optional[str] = None) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._error = error
            while True:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    break

    def get(self, timeout: Optional[float] = None) -> Optional[LinkChangeEvent]:
        """Next event, or None on timeout. Raises SubscriptionClosedError
        once the channel gave up on this subscription."""
        if self._closed:
            self._raise_if_failed()
            return None
        try:
            event = self._queue.get(timeout=timeout)
        except queue.Empty:
            self._raise_if_failed()
            return None
        return event

    def _raise_if_failed(self) -> None:
        if self._error is not None:
            raise SubscriptionClosedError(self._error)

    def __iter__(self) -> Iterator[LinkChangeEvent]:
        while not self._closed:
            event = self.get(timeout=0.5)
            if event is not None:
                yield event
        self._raise_if_failed()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.broker.unsubscribe(self)


class LinkEventBroker:
    def __init__(
        self,
        queue_size: int = 100,
        delivery_attempts: int = 3,
        retry_delay: float = 0.05,
    ) -> None:
        self.queue_size = queue_size
        self.delivery_attempts = max(1, delivery_attempts)
        self.retry_delay = retry_delay
        self._subscriptions: dict[str, list[Subscription]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, topic: str) -> Subscription:
        subscription = Subscription(self, topic, self.queue_size)
        with self._lock:
            self._subscriptions[topic].append(subscription)
        logger.debug("events.subscribed", extra={"topic": topic})
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscriptions.get(subscription.topic, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.topic, None)
        subscription.close()
        logger.debug("events.unsubscribed", extra={"topic": subscription.topic})

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(topic, []))

    def publish(self, topics: list[str], event: LinkChangeEvent) -> int:
        """Deliver ``event`` to every subscriber of ``topics``; returns deliveries."""
        with self._lock:
            targets = [sub for topic in topics for sub in self._subscriptions.get(topic, [])]

        delivered = 0
        for subscription in targets:
            if self._deliver(subscription, event):
                delivered += 1
        return delivered

    def _deliver(self, subscription: Subscription, event: LinkChangeEvent) -> bool:
        for attempt in range(1, self.delivery_attempts + 1):
            if subscription.offer(event):
                return True
            logger.warning(
                "events.delivery.retry",
                extra={"topic": subscription.topic, "attempt": attempt},
            )
            if attempt < self.delivery_attempts:
                time.sleep(self.retry_delay * attempt)

        logger.error(
            "events.delivery.failed",
            extra={"topic": subscription.topic, "link_id": str(event.link_id)},
        )
        self._drop(subscription, "Event stream closed after repeated delivery failures")
        return False

    def _drop(self, subscription: Subscription, reason: str) -> None:
        with self._lock:
            subscribers = self._subscriptions.get(subscription.topic, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.topic, None)
        subscription.close(error=reason)
