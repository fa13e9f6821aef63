"""
=============================================================================
REALTIME.PY — Change Notifications
=============================================================================
Every write made by actions.py is announced here after it is committed:

    ChangeEvent(table="quests", event_type="UPDATE", user_id=7, record={...})

Listeners subscribe per OWNER: a user only ever hears about their own rows.
The WebSocket endpoint in main.py is the usual listener; it forwards each
event to the browser, which refetches or patches its cached lists.

Threads:
  Sync endpoints run in FastAPI's threadpool, but subscriptions live on the
  event loop. publish() therefore hands each event to the subscriber's loop
  with call_soon_threadsafe instead of touching the queue directly.

There is one ChangeFeed per application (created in main.py and kept on
app.state), not a module-level global, so tests can build their own.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

logger = logging.getLogger("questmaster.realtime")

EVENT_TYPES = ("INSERT", "UPDATE", "DELETE")


@dataclass
class ChangeEvent:
    table: str
    event_type: str
    user_id: int
    record: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def __post_init__(self):
        if self.event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {self.event_type!r}")

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "event_type": self.event_type,
            "user_id": self.user_id,
            "record": self.record,
            "timestamp": self.timestamp.isoformat(),
        }


class Subscription:
    """One listener's mailbox. Created by ChangeFeed.subscribe()."""

    def __init__(self, feed: "ChangeFeed", user_id: int, loop: asyncio.AbstractEventLoop, maxsize: int):
        self.feed = feed
        self.user_id = user_id
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def _deliver(self, event: ChangeEvent):
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"⚠️ Subscriber queue full for user {self.user_id}, event dropped")

    async def get(self, timeout: Optional[float] = None) -> ChangeEvent:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)

    def close(self):
        self.feed.unsubscribe(self)


class ChangeFeed:
    def __init__(self, maxsize: int = 100):
        self._maxsize = maxsize
        self._subscribers: dict[int, list[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, user_id: int) -> Subscription:
        """Must be called from inside the event loop that will read the events"""
        subscription = Subscription(self, user_id, asyncio.get_running_loop(), self._maxsize)
        with self._lock:
            self._subscribers.setdefault(user_id, []).append(subscription)
        logger.info(f"📡 Subscribed to changes of user {user_id}")
        return subscription

    def unsubscribe(self, subscription: Subscription):
        with self._lock:
            listeners = self._subscribers.get(subscription.user_id, [])
            if subscription in listeners:
                listeners.remove(subscription)
            if not listeners:
                self._subscribers.pop(subscription.user_id, None)

    def subscriber_count(self, user_id: int) -> int:
        with self._lock:
            return len(self._subscribers.get(user_id, []))

    def publish(self, event: ChangeEvent) -> int:
        """Sends the event to every listener of its owner. Returns how many."""
        with self._lock:
            listeners = list(self._subscribers.get(event.user_id, []))

        delivered = 0
        for subscription in listeners:
            if subscription.loop.is_closed():
                self.unsubscribe(subscription)
                continue
            subscription.loop.call_soon_threadsafe(subscription._deliver, event)
            delivered += 1
        return delivered
