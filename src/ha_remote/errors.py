"""Exception hierarchy for hub client failures.

::

    HubError
      ├─ NetworkError          transport failure (DNS, connect, timeout, reset)
      ├─ DecodeError           body present but not the JSON we expected
      ├─ ResponseStatusError   hub answered with a non-2xx status
      ├─ StreamDisconnect      the push connection dropped
      └─ LocationError         the OS location service failed
"""

from __future__ import annotations

from typing import Optional


class HubError(Exception):
    """Base class for every error raised by this package."""


class NetworkError(HubError):
    """The hub could not be reached.  ``__cause__`` carries the transport error."""


class DecodeError(HubError):
    """The hub answered, but the payload could not be decoded."""

    def __init__(self, message: str, raw: Optional[str] = None) -> None:
        super().__init__(message)
        self.raw = raw


class ResponseStatusError(HubError):
    """The hub answered with a non-success HTTP status."""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"Hub returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class StreamDisconnect(HubError):
    """The event stream ended or failed; recovered by reconnecting."""


class LocationError(HubError):
    """The location provider failed to acquire or monitor a position."""
