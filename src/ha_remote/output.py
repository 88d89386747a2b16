"""NDJSON sink for stream events (used by ``ha-remote listen``)."""

from __future__ import annotations

import logging
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from typing import BinaryIO, Optional

import orjson

from ha_remote.models import StreamEvent

logger = logging.getLogger(__name__)


class NdjsonSink:
    """Write one JSON line per event to a binary stream (stdout by default)."""

    def __init__(self, stream: Optional[BinaryIO] = None) -> None:
        self._stream = stream
        self.written = 0

    def write(self, event: StreamEvent) -> None:
        """Serialize *event* with a ``received_at`` stamp and flush.

        Raises
        ------
        BrokenPipeError
            If the consumer has gone away.
        """
        record = asdict(event)
        record["received_at"] = datetime.now(timezone.utc).isoformat()
        out = self._stream or sys.stdout.buffer
        try:
            out.write(orjson.dumps(record, option=orjson.OPT_APPEND_NEWLINE))
            out.flush()
        except BrokenPipeError:
            logger.warning("stdout broken, consumer likely exited")
            raise
        self.written += 1
