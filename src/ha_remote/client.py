"""One object wiring the REST client, stream client and command layer together."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ha_remote.bus import EventBus
from ha_remote.commands import CommandService
from ha_remote.config import AppConfig, ConnectionConfig, HubConfig
from ha_remote.location import LocationProvider, LocationReporter
from ha_remote.notify import LoggingNotifier, Notifier
from ha_remote.rest import RequestClient
from ha_remote.stream import EventStreamClient

logger = logging.getLogger(__name__)


class HubClient:
    """Session-lifetime client for one hub.

    The REST and stream clients share one :class:`ConnectionConfig`, so
    both send the same auth header.  The stream does not start until
    :meth:`start_stream` is called.
    """

    def __init__(
        self,
        config: AppConfig | ConnectionConfig,
        notifier: Optional[Notifier] = None,
        location_provider: Optional[LocationProvider] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        app = config if isinstance(config, AppConfig) else AppConfig(
            hub=HubConfig(base_url=config.base_url, auth_token=config.auth_token)
        )
        self.config = app
        self.connection = app.hub.connection()
        self.notifier = notifier if notifier is not None else LoggingNotifier()

        self.requests = RequestClient(
            self.connection, timeout=app.hub.request_timeout_s, client=http_client
        )
        self.bus = EventBus()
        self.stream = EventStreamClient(
            self.connection,
            reconnect=app.hub.reconnect,
            bus=self.bus,
            notifier=self.notifier,
            client=http_client,
        )
        self.commands = CommandService(self.requests, self.notifier)
        self.location: Optional[LocationReporter] = None
        if location_provider is not None:
            self.location = LocationReporter(
                self.commands,
                location_provider,
                home=app.home,
                device_id=app.hub.device_id,
                notifier=self.notifier,
            )

    def start_stream(self) -> None:
        self.stream.start()

    async def aclose(self) -> None:
        if self.location is not None:
            self.location.stop_tracking()
        await self.stream.aclose()
        await self.requests.aclose()
        logger.debug("Hub client for %s closed", self.connection.base_url)

    async def __aenter__(self) -> "HubClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()
