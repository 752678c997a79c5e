"""
Per-lecture progress broadcast.

Each subscriber owns a bounded ``asyncio.Queue``.  Publishing never blocks
and never raises: when a subscriber's queue is full its oldest event is
dropped.  Events are best-effort; the store is the source of truth.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

EVENT_TYPES = (
    "status",
    "progress",
    "chapter_complete",
    "chapter_error",
    "final_summary_complete",
    "complete",
    "error",
)

DEFAULT_QUEUE_SIZE = 100

# Delivered by ``close``; ends iteration over a subscription.
_CLOSED = object()


@dataclass
class Notification:
    event: str
    payload: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": self.event, **self.payload}


class Subscription:
    """One consumer's view of a lecture's events.

    Iterate with ``async for``; iteration ends when the hub closes the
    lecture channel.
    """

    def __init__(self, lecture_id: str, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self.lecture_id = lecture_id
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def _offer(self, item) -> None:
        try:
            self.queue.put_nowait(item)
        except asyncio.QueueFull:
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            self.queue.put_nowait(item)

    async def get(self) -> Notification | None:
        """Next event, or ``None`` once the channel is closed."""
        if self.closed:
            return None
        item = await self.queue.get()
        if item is _CLOSED:
            self.closed = True
            return None
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> Notification:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item


class NotificationHub:
    """Registry of subscribers keyed by lecture id.

    Built once per application and passed to whoever publishes or
    subscribes; there is no module-level instance.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self.queue_size = queue_size
        self._subscribers: dict[str, set[Subscription]] = {}

    def subscribe(self, lecture_id: str) -> Subscription:
        sub = Subscription(lecture_id, self.queue_size)
        self._subscribers.setdefault(lecture_id, set()).add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        subs = self._subscribers.get(sub.lecture_id)
        if not subs:
            return
        subs.discard(sub)
        if not subs:
            del self._subscribers[sub.lecture_id]

    def publish(self, lecture_id: str, event: str, payload: dict | None = None) -> int:
        """Fan *event* out to the lecture's subscribers.

        Returns the number of subscribers reached.
        """
        subs = self._subscribers.get(lecture_id)
        if not subs:
            return 0
        note = Notification(event, dict(payload or {}))
        delivered = 0
        for sub in list(subs):
            try:
                sub._offer(note)
                delivered += 1
            except Exception as exc:  # noqa: BLE001 - publishing is best-effort
                logger.warning("[%s] Dropped %s notification: %s", lecture_id, event, exc)
        return delivered

    def close(self, lecture_id: str) -> None:
        """End every subscription for *lecture_id* and forget them."""
        for sub in self._subscribers.pop(lecture_id, set()):
            sub._offer(_CLOSED)

    def subscriber_count(self, lecture_id: str) -> int:
        return len(self._subscribers.get(lecture_id, ()))
