"""ha-remote: asyncio client for a home-automation hub's REST and event-stream API."""

__version__ = "0.3.0"
