"""
In-process fan-out of order events to dashboard connections.

Every subscription owns a bounded FIFO queue. `publish` never awaits: it
drops the event into the queue of each live subscription of the event's
tenant, so events are seen in publish order per subscriber and one slow or
closing dashboard cannot hold up the others. A subscription whose queue
overflows is closed; the dashboard reconnects and re-fetches its page.
"""
import asyncio
from collections import defaultdict
import structlog

from shared.config.settings import BROADCAST_QUEUE_SIZE
from shared.observability import (
    broadcast_active_subscriptions,
    broadcast_dropped_subscriptions_total,
    broadcast_events_total,
)
from .schemas import BroadcastEvent

logger = structlog.get_logger(__name__)

_CLOSED = object()


class Subscription:
    """Handle for one dashboard connection. Iterate it to receive events."""

    def __init__(self, channel: "BroadcastChannel", tenant_id: str, maxsize: int):
        self.tenant_id = tenant_id
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, event: BroadcastEvent) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("subscription_dropped", tenant_id=self.tenant_id, reason="queue_full")
            broadcast_dropped_subscriptions_total.inc()
            self.close()
            return False
        return True

    def close(self):
        """Stop delivery at once. Events still queued are discarded."""
        if self._closed:
            return
        self._closed = True
        self._channel._unregister(self)
        # Drain so the sentinel always fits, then wake a pending reader
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> BroadcastEvent:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._closed:
            raise StopAsyncIteration
        return item

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()


class BroadcastChannel:
    """Per-tenant registry of live subscriptions."""

    def __init__(self, queue_size: int = BROADCAST_QUEUE_SIZE):
        self._queue_size = queue_size
        self._subscribers: dict[str, set] = defaultdict(set)

    def subscribe(self, tenant_id: str) -> Subscription:
        subscription = Subscription(self, tenant_id, self._queue_size)
        self._subscribers[tenant_id].add(subscription)
        broadcast_active_subscriptions.inc()
        logger.info("subscription_opened", tenant_id=tenant_id)
        return subscription

    def _unregister(self, subscription: Subscription):
        subscribers = self._subscribers.get(subscription.tenant_id)
        if subscribers is None or subscription not in subscribers:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.tenant_id]
        broadcast_active_subscriptions.dec()
        logger.info("subscription_closed", tenant_id=subscription.tenant_id)

    def subscriber_count(self, tenant_id: str) -> int:
        return len(self._subscribers.get(tenant_id, ()))

    def publish(self, event: BroadcastEvent) -> int:
        """Deliver to every live subscription of `event.tenant_id`. Returns how many accepted it."""
        broadcast_events_total.labels(kind=event.kind).inc()
        delivered = 0
        # Copy: a full queue closes its subscription, which mutates the set
        for subscription in list(self._subscribers.get(event.tenant_id, ())):
            if subscription._offer(event):
                delivered += 1
        return delivered

    def close(self):
        for subscribers in list(self._subscribers.values()):
            for subscription in list(subscribers):
                subscription.close()
