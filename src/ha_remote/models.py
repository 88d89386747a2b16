"""Dataclass models for hub responses, stream events and location reports.

Response models expose a ``from_json`` classmethod that accepts the decoded
JSON value and raises ``KeyError`` / ``TypeError`` / ``ValueError`` when the
shape is wrong; :class:`~ha_remote.rest.RequestClient` turns those into
:class:`~ha_remote.errors.DecodeError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional


def _require_dict(raw: Any, what: str) -> dict:
    if not isinstance(raw, dict):
        raise TypeError(f"{what} must be a JSON object, got {type(raw).__name__}")
    return raw


@dataclass(frozen=True)
class Entity:
    """Snapshot of one hub-tracked object's state.

    Not live-updated: fetch again (or watch ``state_changed`` events) to see
    newer values.
    """

    entity_id: str
    state: str
    friendly_name: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)
    last_changed: Optional[str] = None
    last_updated: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    @property
    def domain(self) -> str:
        return self.entity_id.split(".", 1)[0]

    @property
    def display_name(self) -> str:
        """Friendly name when the hub provides one, else the entity id."""
        return self.friendly_name or self.entity_id

    @classmethod
    def from_json(cls, raw: Any) -> "Entity":
        raw = _require_dict(raw, "entity")
        attributes = _require_dict(raw.get("attributes") or {}, "attributes")
        return cls(
            entity_id=str(raw["entity_id"]),
            state=str(raw["state"]),
            friendly_name=attributes.get("friendly_name"),
            attributes=attributes,
            last_changed=raw.get("last_changed"),
            last_updated=raw.get("last_updated"),
        )


@dataclass
class ServiceDescriptor:
    """One callable hub action, ``POST services/{domain}/{service}``."""

    domain: str
    service: str
    fields: dict = field(default_factory=dict)

    @classmethod
    def list_from_json(cls, raw: Any) -> list["ServiceDescriptor"]:
        """Flatten ``[{domain, services: {name: {...}}}]`` into descriptors."""
        if not isinstance(raw, list):
            raise TypeError("services response must be a JSON array")
        out: list[ServiceDescriptor] = []
        for item in raw:
            item = _require_dict(item, "service domain")
            domain = str(item["domain"])
            services = item.get("services") or {}
            if isinstance(services, list):
                # older hubs list bare service names
                services = {name: {} for name in services}
            for name, spec in services.items():
                fields = (spec or {}).get("fields", {}) if isinstance(spec, dict) else {}
                out.append(cls(domain=domain, service=name, fields=dict(fields)))
        return out


@dataclass
class HistoryRecord:
    """A single past state of one entity."""

    entity_id: str
    state: str
    last_changed: Optional[str] = None
    attributes: dict = field(default_factory=dict)

    @classmethod
    def from_json(cls, raw: Any) -> "HistoryRecord":
        raw = _require_dict(raw, "history record")
        return cls(
            entity_id=str(raw["entity_id"]),
            state=str(raw["state"]),
            last_changed=raw.get("last_changed"),
            attributes=dict(raw.get("attributes") or {}),
        )

    @classmethod
    def list_from_json(cls, raw: Any) -> list["HistoryRecord"]:
        """Flatten the hub's list-per-entity history into one list."""
        if not isinstance(raw, list):
            raise TypeError("history response must be a JSON array")
        records: list[HistoryRecord] = []
        for series in raw:
            if isinstance(series, list):
                records.extend(cls.from_json(item) for item in series)
            else:
                records.append(cls.from_json(series))
        return records


@dataclass
class StatusInfo:
    """Reachability probe built from ``GET config``."""

    message: str = ""
    version: Optional[str] = None

    @classmethod
    def from_json(cls, raw: Any) -> "StatusInfo":
        raw = _require_dict(raw, "status")
        return cls(message=str(raw.get("message", "API running.")), version=raw.get("version"))


@dataclass
class ConfigInfo:
    """Hub-wide configuration from ``GET config``."""

    location_name: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    temperature_unit: Optional[str] = None
    time_zone: Optional[str] = None
    version: Optional[str] = None
    components: list[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, raw: Any) -> "ConfigInfo":
        raw = _require_dict(raw, "config")
        units = raw.get("unit_system") or {}
        return cls(
            location_name=str(raw.get("location_name", "")),
            latitude=raw.get("latitude"),
            longitude=raw.get("longitude"),
            temperature_unit=raw.get("temperature_unit") or units.get("temperature"),
            time_zone=raw.get("time_zone"),
            version=raw.get("version"),
            components=list(raw.get("components") or []),
        )


@dataclass
class StreamEvent:
    """An application event decoded from one stream frame."""

    event_type: str
    data: dict = field(default_factory=dict)
    origin: Optional[str] = None
    time_fired: Optional[str] = None

    @property
    def channel(self) -> str:
        """Bus channel the event is published on."""
        return "sse." + self.event_type


@dataclass
class LocationUpdate:
    """Payload for a ``device_tracker.see`` call."""

    dev_id: str
    latitude: float
    longitude: float
    gps_accuracy: float
    battery: int
    hostname: str
    location_name: Optional[str] = None

    def __post_init__(self) -> None:
        self.battery = max(0, min(100, int(self.battery)))

    def to_payload(self) -> dict[str, Any]:
        """Service data for the hub; ``location_name`` only when set."""
        payload: dict[str, Any] = {
            "battery": self.battery,
            "gps": [self.latitude, self.longitude],
            "gps_accuracy": self.gps_accuracy,
            "hostname": self.hostname,
            "dev_id": self.dev_id,
        }
        if self.location_name:
            payload["location_name"] = self.location_name
        return payload
