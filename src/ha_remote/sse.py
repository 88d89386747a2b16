"""Parse server-sent-event frames and classify them into stream events.

Frame assembly follows the ``text/event-stream`` format: ``field: value``
lines, multiple ``data:`` lines joined with ``\\n``, a blank line ends the
frame, lines starting with ``:`` are comments.

Classification pipeline::

    SSEFrame
      │
      ├─ no data / keep-alive ("ping")   → None  (skip)
      ├─ JSON parse failure              → DecodeError
      ├─ not an object / no event type   → DecodeError
      └─ valid                           → StreamEvent
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import orjson

from ha_remote.errors import DecodeError
from ha_remote.models import StreamEvent

# Maximum characters of raw payload kept on a DecodeError.
MAX_RAW_PAYLOAD_CHARS = 4096

KEEPALIVE_DATA = frozenset({"ping"})


@dataclass
class SSEFrame:
    """One complete event-stream frame."""

    event: str = "message"
    data: str = ""
    id: Optional[str] = None


class SSEParser:
    """Incremental line-oriented frame assembler.

    Feed it lines (without their terminators); it returns a frame each
    time a blank line completes one.
    """

    def __init__(self) -> None:
        self.last_event_id: Optional[str] = None
        self._reset()

    def _reset(self) -> None:
        self._event = ""
        self._data: list[str] = []
        self._id: Optional[str] = None

    def feed(self, line: str) -> Optional[SSEFrame]:
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            self._id = value
        # "retry" and unknown fields are ignored
        return None

    def _dispatch(self) -> Optional[SSEFrame]:
        if not self._data and not self._event:
            return None
        frame = SSEFrame(event=self._event or "message", data="\n".join(self._data), id=self._id)
        if self._id is not None:
            self.last_event_id = self._id
        self._reset()
        return frame


def decode_event(frame: SSEFrame) -> Optional[StreamEvent]:
    """Turn a frame into a :class:`StreamEvent`.

    Returns
    -------
    StreamEvent
        When the data field holds an ``{event_type|type, data}`` envelope.
    None
        For keep-alives and frames without data.

    Raises
    ------
    DecodeError
        When the data field is not a well-formed event envelope.
    """
    raw = frame.data.strip()
    if not raw or raw in KEEPALIVE_DATA:
        return None

    try:
        msg = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise DecodeError(f"Stream frame is not JSON: {exc}", raw=raw[:MAX_RAW_PAYLOAD_CHARS]) from exc

    if not isinstance(msg, dict):
        raise DecodeError("Stream frame is not a JSON object", raw=raw[:MAX_RAW_PAYLOAD_CHARS])

    event_type = msg.get("event_type") or msg.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise DecodeError("Stream frame missing event type", raw=raw[:MAX_RAW_PAYLOAD_CHARS])

    data = msg.get("data") or {}
    if not isinstance(data, dict):
        raise DecodeError("Stream frame data is not an object", raw=raw[:MAX_RAW_PAYLOAD_CHARS])

    return StreamEvent(
        event_type=event_type,
        data=data,
        origin=msg.get("origin"),
        time_fired=msg.get("time_fired"),
    )
