"""Publish/subscribe registry for decoded stream events.

Channels are named ``"sse." + event_type``; wildcard subscribers receive
every event after the channel's own subscribers.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from typing import AsyncIterator, Callable, Optional

from ha_remote.models import StreamEvent
from ha_remote.notify import fire_and_forget

logger = logging.getLogger(__name__)

WILDCARD = "*"
QUEUE_MAXSIZE = 1000

Callback = Callable[[StreamEvent], object]


def bounded_put(queue: asyncio.Queue) -> Callable[[StreamEvent], None]:
    """Subscriber that enqueues events, dropping them once *queue* is full."""

    def put(event: StreamEvent) -> None:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Consumer queue full; dropping %s event", event.event_type)

    return put


class Subscription:
    """Handle returned by :meth:`EventBus.subscribe`; call :meth:`cancel` to stop."""

    def __init__(self, bus: "EventBus", channel: str, callback: Callback) -> None:
        self._bus = bus
        self.channel = channel
        self.callback = callback

    def cancel(self) -> None:
        self._bus._remove(self)


class EventBus:
    """Thread-safe subscriber registry with ordered, synchronous delivery."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Subscription]] = {}

    @staticmethod
    def channel_for(event_type: str) -> str:
        return "sse." + event_type

    def subscribe(self, event_type: str, callback: Callback) -> Subscription:
        """Deliver events of *event_type* to *callback*."""
        return self._add(self.channel_for(event_type), callback)

    def subscribe_all(self, callback: Callback) -> Subscription:
        """Deliver every event to *callback*."""
        return self._add(WILDCARD, callback)

    def publish(self, event: StreamEvent) -> int:
        """Deliver *event*; return the number of subscribers reached.

        Plain callbacks run inline in subscription order.  Coroutine
        functions are scheduled as background tasks.  A failing
        subscriber is logged and does not affect the others.
        """
        with self._lock:
            targets = list(self._subscribers.get(event.channel, ()))
            targets += self._subscribers.get(WILDCARD, ())

        for sub in targets:
            try:
                result = sub.callback(event)
                if inspect.iscoroutine(result):
                    fire_and_forget(result, name=f"subscriber:{event.channel}")
            except Exception:
                logger.exception("Subscriber on %s failed", sub.channel)
        return len(targets)

    async def events(
        self, event_type: Optional[str] = None, maxsize: int = QUEUE_MAXSIZE
    ) -> AsyncIterator[StreamEvent]:
        """Async iterator over events (all of them when *event_type* is None).

        At most *maxsize* events are buffered for a slow consumer; later
        ones are dropped with a warning.
        """
        queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize)
        if event_type is None:
            sub = self.subscribe_all(bounded_put(queue))
        else:
            sub = self.subscribe(event_type, bounded_put(queue))
        try:
            while True:
                yield await queue.get()
        finally:
            sub.cancel()

    def subscriber_count(self, event_type: Optional[str] = None) -> int:
        channel = WILDCARD if event_type is None else self.channel_for(event_type)
        with self._lock:
            return len(self._subscribers.get(channel, ()))

    # ── internal ────────────────────────────────────────────────────

    def _add(self, channel: str, callback: Callback) -> Subscription:
        sub = Subscription(self, channel, callback)
        with self._lock:
            self._subscribers.setdefault(channel, []).append(sub)
        logger.debug("Subscribed to %s", channel)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.channel, [])
            if sub in subs:
                subs.remove(sub)
            if not subs:
                self._subscribers.pop(sub.channel, None)
