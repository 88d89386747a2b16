"""Long-lived server-sent-events connection to ``{base_url}/api/stream``.

Reconnect state machine::

    DISCONNECTED → CONNECTING → (2xx) → OPEN → (error / hub closes) → DISCONNECTED
                              → (failure) →                          DISCONNECTED
    DISCONNECTED → (backoff elapsed) → CONNECTING
    any → (stop) → SHUTTING_DOWN

Decoded events are published on an :class:`~ha_remote.bus.EventBus`.  A
malformed frame is logged and dropped; the connection stays open.  Events
emitted by the hub while the client is disconnected are lost.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import random
from typing import Callable, Optional

import httpx

from ha_remote.bus import EventBus
from ha_remote.config import ConnectionConfig, ReconnectConfig
from ha_remote.errors import DecodeError, StreamDisconnect
from ha_remote.notify import Notifier, send
from ha_remote.sse import SSEFrame, SSEParser, decode_event

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_S = 10.0


class StreamState(enum.Enum):
    """States in the reconnect state machine."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    SHUTTING_DOWN = "SHUTTING_DOWN"


class EventStreamClient:
    """Owns the push connection and its reconnect loop.

    Parameters
    ----------
    config:
        Base URL and access token (same header as the REST client).
    reconnect:
        Backoff parameters.
    bus:
        Where decoded events are published.  A new bus is created when
        omitted.
    notifier:
        Receives "connected" / "error" titles.
    client:
        Optional pre-built :class:`httpx.AsyncClient`; not closed by
        :meth:`aclose` when supplied.
    on_state_change:
        Called with ``(old, new)`` on every transition.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        reconnect: Optional[ReconnectConfig] = None,
        bus: Optional[EventBus] = None,
        notifier: Optional[Notifier] = None,
        client: Optional[httpx.AsyncClient] = None,
        on_state_change: Optional[Callable[[StreamState, StreamState], None]] = None,
    ) -> None:
        self._config = config
        self._reconnect = reconnect or ReconnectConfig()
        self.bus = bus or EventBus()
        self._notifier = notifier
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(CONNECT_TIMEOUT_S, read=None)
        )
        self._on_state_change = on_state_change
        self._state = StreamState.DISCONNECTED
        self._shutdown = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._attempt = 0
        self.dropped_frames = 0

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def url(self) -> str:
        return self._config.api_url + "stream"

    # ── lifecycle ───────────────────────────────────────────────────

    def start(self) -> asyncio.Task:
        """Launch :meth:`run` as a background task (idempotent)."""
        if self._task is None or self._task.done():
            self._shutdown.clear()
            self._task = asyncio.get_running_loop().create_task(self.run(), name="event-stream")
        return self._task

    def request_shutdown(self) -> None:
        """Signal the loop to exit without reconnecting."""
        self._set_state(StreamState.SHUTTING_DOWN)
        self._shutdown.set()

    async def stop(self) -> None:
        """Stop the loop and wait for the background task to finish."""
        self.request_shutdown()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def aclose(self) -> None:
        await self.stop()
        if self._owns_client:
            await self._client.aclose()

    async def run(self) -> None:
        """Connect, receive and reconnect until :meth:`stop` is called."""
        while not self._shutdown.is_set():
            try:
                await self._connect_and_receive()
            except StreamDisconnect as exc:
                if self._shutdown.is_set():
                    break
                logger.warning("SSE: %s", exc)
                send(self._notifier, f"SSE Error! {exc}")
                self._set_state(StreamState.DISCONNECTED)
            except Exception as exc:
                if self._shutdown.is_set():
                    break
                logger.exception("SSE: unexpected error in stream loop")
                send(self._notifier, f"SSE Error! {exc}")
                self._set_state(StreamState.DISCONNECTED)

            if self._shutdown.is_set():
                break

            await self._backoff()

    # ── internal: connect + receive ─────────────────────────────────

    async def _connect_and_receive(self) -> None:
        self._set_state(StreamState.CONNECTING)
        headers = self._config.headers()
        headers["Accept"] = "text/event-stream"

        try:
            async with self._client.stream("GET", self.url, headers=headers) as response:
                if not response.is_success:
                    raise StreamDisconnect(f"Stream refused with HTTP {response.status_code}")

                self._set_state(StreamState.OPEN)
                self._attempt = 0
                logger.info("SSE: Connection opened to %s", self.url)
                send(self._notifier, "Connected to HA realtime API!")

                parser = SSEParser()
                async for line in response.aiter_lines():
                    if self._shutdown.is_set():
                        return
                    frame = parser.feed(line)
                    if frame is not None:
                        self._handle_frame(frame)
        except httpx.HTTPError as exc:
            raise StreamDisconnect(f"Connection error: {exc}") from exc

        if not self._shutdown.is_set():
            raise StreamDisconnect("Stream closed by hub")

    def _handle_frame(self, frame: SSEFrame) -> None:
        try:
            event = decode_event(frame)
        except DecodeError as exc:
            self.dropped_frames += 1
            logger.warning("Unable to decode stream frame %r: %s (raw=%r)", frame.event, exc, exc.raw)
            return
        if event is None:
            return
        self.bus.publish(event)

    # ── backoff ─────────────────────────────────────────────────────

    def next_delay(self) -> float:
        """Advance the attempt counter and return the next wait in seconds."""
        self._attempt += 1
        base = self._reconnect.initial_delay_ms / 1000.0
        multiplier = self._reconnect.backoff_multiplier
        max_delay = self._reconnect.max_delay_ms / 1000.0
        jitter_pct = self._reconnect.jitter_pct / 100.0

        # the cap is reached long before 64 doublings; larger powers overflow float
        exponent = min(self._attempt - 1, 64)
        try:
            delay = min(base * (multiplier ** exponent), max_delay)
        except OverflowError:
            delay = max_delay
        jitter = delay * jitter_pct * (2 * random.random() - 1)
        return max(0.1, delay + jitter)

    async def _backoff(self) -> None:
        delay = self.next_delay()
        logger.info("SSE: reconnecting in %.1fs (attempt %d)", delay, self._attempt)
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    # ── helpers ─────────────────────────────────────────────────────

    def _set_state(self, new: StreamState) -> None:
        old = self._state
        if old is new:
            return
        self._state = new
        logger.debug("Stream state: %s → %s", old.value, new.value)
        if self._on_state_change is not None:
            try:
                self._on_state_change(old, new)
            except Exception:
                logger.exception("State-change callback failed on %s", new.value)
