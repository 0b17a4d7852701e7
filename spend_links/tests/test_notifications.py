import threading
from uuid import uuid4

import pytest

from ..core.errors import SubscriptionClosedError
from ..models import LinkChangeEvent, LinkStatus
from ..models.db import utcnow
from ..services import LinkEventBroker, link_topic, owner_topic


def _event(link_id=None, status=LinkStatus.ACTIVE) -> LinkChangeEvent:
    return LinkChangeEvent(
        link_id=link_id or uuid4(),
        new_status=status,
        amount=1000,
        timestamp=utcnow(),
    )


def test_events_reach_every_topic_subscriber() -> None:
    broker = LinkEventBroker()
    owner, link_id = uuid4(), uuid4()
    owner_sub = broker.subscribe(owner_topic(owner))
    link_sub = broker.subscribe(link_topic(link_id))
    unrelated = broker.subscribe(link_topic(uuid4()))

    delivered = broker.publish([owner_topic(owner), link_topic(link_id)], _event(link_id))

    assert delivered == 2
    assert owner_sub.get(timeout=1).link_id == link_id
    assert link_sub.get(timeout=1).link_id == link_id
    assert unrelated.get(timeout=0.01) is None


def test_no_delivery_after_unsubscribe() -> None:
    broker = LinkEventBroker()
    topic = owner_topic(uuid4())
    subscription = broker.subscribe(topic)
    broker.publish([topic], _event())

    broker.unsubscribe(subscription)

    assert broker.subscriber_count(topic) == 0
    assert broker.publish([topic], _event()) == 0
    assert subscription.closed
    assert subscription.get(timeout=0.01) is None


def test_context_manager_unsubscribes() -> None:
    broker = LinkEventBroker()
    topic = link_topic(uuid4())

    with broker.subscribe(topic) as subscription:
        assert broker.subscriber_count(topic) == 1

    assert subscription.closed
    assert broker.subscriber_count(topic) == 0


def test_transient_full_queue_is_retried() -> None:
    broker = LinkEventBroker(queue_size=1, delivery_attempts=5, retry_delay=0.02)
    topic = link_topic(uuid4())
    subscription = broker.subscribe(topic)
    broker.publish([topic], _event(status=LinkStatus.ACTIVE))

    drained = []
    consumer = threading.Timer(0.01, lambda: drained.append(subscription.get(timeout=1)))
    consumer.start()
    delivered = broker.publish([topic], _event(status=LinkStatus.PENDING_APPROVAL))
    consumer.join()

    assert delivered == 1
    assert drained[0].new_status == LinkStatus.ACTIVE
    assert subscription.get(timeout=1).new_status == LinkStatus.PENDING_APPROVAL


def test_permanent_delivery_failure_closes_stream_with_error() -> None:
    broker = LinkEventBroker(queue_size=1, delivery_attempts=2, retry_delay=0)
    topic = owner_topic(uuid4())
    subscription = broker.subscribe(topic)

    broker.publish([topic], _event())
    assert broker.publish([topic], _event()) == 0

    assert broker.subscriber_count(topic) == 0
    with pytest.raises(SubscriptionClosedError):
        subscription.get(timeout=0.01)
    with pytest.raises(SubscriptionClosedError):
        list(subscription)
