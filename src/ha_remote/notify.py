"""Outbound user notifications and background-task helpers.

The client never presents notifications itself: it hands short,
human-readable titles ("Lamp turned on", "SSE Error! ...") to a
:class:`Notifier` supplied by the embedding application.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Optional, Protocol

logger = logging.getLogger(__name__)

# Strong references to in-flight fire-and-forget tasks; the event loop
# only keeps weak ones.
_background: set[asyncio.Task] = set()


class Notifier(Protocol):
    """Receives a notification title.  Must not block."""

    def notify(self, title: str) -> None: ...


class LoggingNotifier:
    """Default notifier: writes titles to the log and keeps the last few."""

    def __init__(self, history: int = 20) -> None:
        self._history = history
        self.sent: list[str] = []

    def notify(self, title: str) -> None:
        logger.info("Notification: %s", title)
        self.sent.append(title)
        del self.sent[:-self._history]


def send(notifier: Optional[Notifier], title: str) -> None:
    """Deliver *title*, logging (not raising) if the notifier fails."""
    if notifier is None:
        return
    try:
        notifier.notify(title)
    except Exception:
        logger.exception("Notifier failed for %r", title)


def fire_and_forget(coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
    """Schedule *coro* without awaiting it.

    The task is kept alive until it finishes; its exception, if any, is
    logged rather than propagated to the caller.
    """
    task = asyncio.get_running_loop().create_task(coro, name=name)
    _background.add(task)
    task.add_done_callback(_finished)
    return task


def _finished(task: asyncio.Task) -> None:
    _background.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Background task %s failed: %s", task.get_name(), exc)
