"""Configuration loading, environment-variable interpolation, and validation.

Resolution order for ``${VAR}`` placeholders:
    CLI overrides → environment variables → encrypted secrets → raw config value.

``${VAR}`` (no default) raises if unresolvable.
``${VAR:-default}`` falls back to *default*.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import jsonschema
import orjson

logger = logging.getLogger(__name__)

AUTH_HEADER = "X-HA-Access"

_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-(.*?))?\}")

_SCHEMA_PATH = Path(__file__).resolve().parent / "schema.json"


@dataclass(frozen=True)
class ConnectionConfig:
    """Where the hub lives and how to authenticate against it.

    Immutable once built, so it can be shared by every concurrent request
    and by the stream task.
    """

    base_url: str
    auth_token: str = ""

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ValueError("base_url must not be empty")
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))

    @property
    def api_url(self) -> str:
        return self.base_url + "/api/"

    def headers(self) -> dict[str, str]:
        """Auth headers shared by the REST client and the stream connection."""
        if self.auth_token:
            return {AUTH_HEADER: self.auth_token}
        return {}


@dataclass
class ReconnectConfig:
    """Reconnection backoff parameters for the event stream."""

    initial_delay_ms: int = 1000
    max_delay_ms: int = 60000
    backoff_multiplier: int = 2
    jitter_pct: int = 20


@dataclass
class HubConfig:
    """Hub connection section."""

    base_url: str = "http://localhost:8123"
    auth_token: str = ""
    device_id: str = ""
    request_timeout_s: float = 10.0
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)

    def connection(self) -> ConnectionConfig:
        return ConnectionConfig(base_url=self.base_url, auth_token=self.auth_token)


@dataclass
class HomeConfig:
    """Home coordinate used for the geofence."""

    latitude: float = 0.0
    longitude: float = 0.0


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    format: str = "json"
    redact_patterns: list[str] = field(
        default_factory=lambda: ["*key*", "*token*", "*secret*", "*password*"]
    )


@dataclass
class AppConfig:
    """Top-level application configuration."""

    hub: HubConfig = field(default_factory=HubConfig)
    home: HomeConfig = field(default_factory=HomeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _interpolate_value(
    value: str,
    overrides: dict[str, str] | None = None,
    secrets: dict[str, str] | None = None,
) -> str:
    """Replace ``${VAR}`` / ``${VAR:-default}`` in *value*."""

    def _replacer(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)

        if overrides and var_name in overrides:
            return overrides[var_name]
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        if secrets and var_name in secrets:
            return secrets[var_name]
        if default is not None:
            return default

        raise ValueError(
            f"Required variable ${{{var_name}}} is not set in environment, "
            f"CLI overrides, or encrypted secrets"
        )

    return _VAR_RE.sub(_replacer, value)


def _walk_and_interpolate(
    obj: Any,
    overrides: dict[str, str] | None = None,
    secrets: dict[str, str] | None = None,
) -> Any:
    """Recursively interpolate all string values in a JSON-like structure."""
    if isinstance(obj, str):
        return _interpolate_value(obj, overrides, secrets)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v, overrides, secrets) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(item, overrides, secrets) for item in obj]
    return obj


def _pick(cls: type, raw: dict[str, Any]) -> dict[str, Any]:
    """Keep only the keys *cls* declares as dataclass fields."""
    return {k: v for k, v in raw.items() if k in cls.__dataclass_fields__}


def _dict_to_config(raw: dict[str, Any]) -> AppConfig:
    """Convert a raw dict into a typed :class:`AppConfig`."""
    hub_raw = dict(raw.get("hub", {}))
    reconnect_raw = hub_raw.pop("reconnect", {})

    return AppConfig(
        hub=HubConfig(
            **_pick(HubConfig, hub_raw),
            reconnect=ReconnectConfig(**_pick(ReconnectConfig, reconnect_raw)),
        ),
        home=HomeConfig(**_pick(HomeConfig, raw.get("home", {}))),
        logging=LoggingConfig(**_pick(LoggingConfig, raw.get("logging", {}))),
    )


def load_config(
    path: str | Path,
    overrides: dict[str, str] | None = None,
    secrets: dict[str, str] | None = None,
    schema_path: Optional[str | Path] = None,
) -> AppConfig:
    """Load, interpolate, validate, and return the application config.

    Parameters
    ----------
    path:
        Filesystem path to the JSON config file.
    overrides:
        CLI-supplied variable overrides.
    secrets:
        Values from the encrypted secrets file.
    schema_path:
        Path to the JSON Schema file.  Defaults to the ``schema.json``
        shipped with the package.

    Raises
    ------
    ValueError
        If a required ``${VAR}`` cannot be resolved.
    jsonschema.ValidationError
        If the config fails schema validation.
    """
    raw: dict[str, Any] = orjson.loads(Path(path).read_bytes())

    interpolated = _walk_and_interpolate(raw, overrides=overrides, secrets=secrets)

    sp = Path(schema_path) if schema_path else _SCHEMA_PATH
    if sp.exists():
        schema = orjson.loads(sp.read_bytes())
        jsonschema.validate(instance=interpolated, schema=schema)
        logger.debug("Config passed schema validation")
    else:
        logger.warning("Schema file not found at %s, skipping validation", sp)

    return _dict_to_config(interpolated)
