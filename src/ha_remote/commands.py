"""Convenience commands built on :class:`~ha_remote.rest.RequestClient`.

Each command hands a short title to the notifier *before* issuing its
request; the notification does not wait for, or depend on, the result.
No command checks that the entity exists.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Union

from ha_remote.models import Entity
from ha_remote.notify import Notifier, send
from ha_remote.rest import RequestClient

logger = logging.getLogger(__name__)

EntityRef = Union[str, Entity]


class CommandService:
    """Domain/service calls and the turn-on/off/toggle shortcuts."""

    def __init__(self, requests: RequestClient, notifier: Optional[Notifier] = None) -> None:
        self._requests = requests
        self._notifier = notifier

    async def call_service(
        self,
        domain: str,
        service: str,
        data: Optional[dict[str, Any]] = None,
    ) -> Any:
        """``POST services/{domain}/{service}``; errors propagate unchanged."""
        logger.debug("Calling service %s.%s", domain, service)
        return await self._requests.post(f"services/{domain}/{service}", data or {})

    async def set_state(self, entity_id: str, state: str) -> Any:
        send(self._notifier, f"{entity_id} state set to {state}")
        return await self._requests.post(f"states/{entity_id}", {"state": state})

    async def create_event(self, event_type: str, data: Optional[dict[str, Any]] = None) -> Any:
        send(self._notifier, f"{event_type} created")
        return await self._requests.post(f"events/{event_type}", data or {})

    async def turn_on(self, entity: EntityRef) -> Any:
        return await self._switch(entity, "turn_on", "turned on")

    async def turn_off(self, entity: EntityRef) -> Any:
        return await self._switch(entity, "turn_off", "turned off")

    async def toggle(self, entity: EntityRef) -> Any:
        return await self._switch(entity, "toggle", "toggled")

    async def _switch(self, entity: EntityRef, service: str, verb: str) -> Any:
        if isinstance(entity, Entity):
            entity_id, title = entity.entity_id, entity.display_name
        else:
            entity_id = title = entity
        send(self._notifier, f"{title} {verb}")
        return await self.call_service("homeassistant", service, {"entity_id": entity_id})
