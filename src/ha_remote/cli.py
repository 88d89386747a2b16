"""Click CLI for ha-remote.

Entry point registered in ``pyproject.toml`` as ``ha-remote``.

Subcommands::

    ha-remote validate                        # check the config and exit
    ha-remote status | states | services      # read-only queries
    ha-remote state light.kitchen
    ha-remote history 2024-05-01
    ha-remote call light turn_on --data '{"entity_id": "light.kitchen"}'
    ha-remote set-state sensor.door open
    ha-remote fire my_event --data '{"k": 1}'
    ha-remote turn-on | turn-off | toggle ENTITY_ID
    ha-remote listen [--event-type state_changed] [--count N]
    ha-remote secrets init | set KEY | list
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import click
import orjson

from ha_remote import __version__
from ha_remote.bus import QUEUE_MAXSIZE, bounded_put
from ha_remote.client import HubClient
from ha_remote.config import AppConfig, HubConfig, load_config
from ha_remote.errors import HubError
from ha_remote.output import NdjsonSink
from ha_remote.redactor import SecretRedactingFilter, collect_secret_values

logger = logging.getLogger("ha_remote")

DEFAULT_CONFIG = "~/.config/ha-remote/config.json"
DEFAULT_SECRETS_FILE = "~/.config/ha-remote/secrets.enc"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


# ── structured JSON log formatter ───────────────────────────────────


class _JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        obj = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            obj["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(obj).decode()


def _setup_logging(level: str, fmt: str, secret_values: list[str]) -> None:
    """Configure the root logger on stderr with token redaction."""
    root = logging.getLogger()
    root.setLevel(_LEVELS.get(level.lower(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    # handler-level so records from every logger pass through it
    handler.addFilter(SecretRedactingFilter(secret_values))
    root.addHandler(handler)


def _secrets_path() -> Path:
    return Path(os.environ.get("HA_REMOTE_SECRETS_FILE", DEFAULT_SECRETS_FILE)).expanduser()


def _resolve_config(
    config_path: Optional[str],
    base_url: Optional[str],
    token: Optional[str],
) -> AppConfig:
    overrides: dict[str, str] = {}
    if base_url:
        overrides["HUB_URL"] = base_url
    if token:
        overrides["HUB_TOKEN"] = token

    secrets_dict: dict[str, str] = {}
    key_file = os.environ.get("HA_REMOTE_KEY_FILE")
    if key_file and Path(key_file).exists() and _secrets_path().exists():
        from ha_remote.secrets import load_secrets
        secrets_dict = load_secrets(_secrets_path(), key_file)

    path = Path(config_path or os.environ.get("HA_REMOTE_CONFIG", DEFAULT_CONFIG)).expanduser()
    if path.exists():
        cfg = load_config(path, overrides=overrides, secrets=secrets_dict)
        if base_url:
            cfg.hub.base_url = base_url
        if token:
            cfg.hub.auth_token = token
        return cfg

    if config_path:
        raise FileNotFoundError(f"Config file not found: {path}")
    if not base_url:
        raise ValueError("No config file found; pass --base-url or set HA_URL")
    return AppConfig(hub=HubConfig(
        base_url=base_url,
        auth_token=token or secrets_dict.get("HUB_TOKEN", ""),
    ))


def _run(ctx: click.Context, action: Callable[[HubClient], Awaitable[Any]]) -> Any:
    """Run *action* against a fresh client, mapping hub errors to exit code 1."""
    cfg: AppConfig = ctx.obj

    async def _go() -> Any:
        async with HubClient(cfg) as hub:
            return await action(hub)

    try:
        return asyncio.run(_go())
    except HubError as exc:
        raise click.ClickException(f"{type(exc).__name__}: {exc}") from exc


def _echo_json(value: Any) -> None:
    click.echo(orjson.dumps(value, option=orjson.OPT_INDENT_2).decode())


def _parse_data(data: Optional[str]) -> dict[str, Any]:
    if not data:
        return {}
    try:
        parsed = orjson.loads(data)
    except orjson.JSONDecodeError as exc:
        raise click.BadParameter(f"not valid JSON: {exc}", param_hint="--data") from exc
    if not isinstance(parsed, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--data")
    return parsed


# ── main CLI group ──────────────────────────────────────────────────


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Config file path.")
@click.option("--base-url", envvar="HA_URL", default=None, help="Hub base URL.")
@click.option("--token", envvar="HA_TOKEN", default=None, help="Hub access token.")
@click.option("--log-level", default=None,
              type=click.Choice(["debug", "info", "warn", "error"]),
              help="Log verbosity.")
@click.version_option(__version__)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Optional[str],
    base_url: Optional[str],
    token: Optional[str],
    log_level: Optional[str],
) -> None:
    """ha-remote: talk to a home-automation hub from the command line."""
    if ctx.invoked_subcommand == "secrets":
        return

    try:
        cfg = _resolve_config(config_path, base_url, token)
    except Exception as exc:
        click.echo(f"Config error: {exc}", err=True)
        raise SystemExit(1) from exc

    secret_values = collect_secret_values(asdict(cfg), cfg.logging.redact_patterns)
    _setup_logging(
        log_level or os.environ.get("HA_REMOTE_LOG_LEVEL") or cfg.logging.level,
        cfg.logging.format,
        secret_values,
    )
    ctx.obj = cfg


@main.command()
@click.pass_obj
def validate(cfg: AppConfig) -> None:
    """Validate the configuration and exit."""
    click.echo(f"Configuration is valid (hub: {cfg.hub.base_url}).", err=True)


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the hub's configuration."""
    _echo_json(_run(ctx, lambda hub: hub.requests.get_config()))


@main.command()
@click.pass_context
def states(ctx: click.Context) -> None:
    """List every entity and its state."""
    for entity in _run(ctx, lambda hub: hub.requests.get_states()):
        click.echo(f"{entity.entity_id}\t{entity.state}\t{entity.display_name}")


@main.command()
@click.argument("entity_id")
@click.pass_context
def state(ctx: click.Context, entity_id: str) -> None:
    """Show one entity's raw state."""
    _echo_json(_run(ctx, lambda hub: hub.requests.get_state(entity_id)))


@main.command()
@click.pass_context
def services(ctx: click.Context) -> None:
    """List callable services."""
    for desc in _run(ctx, lambda hub: hub.requests.get_services()):
        click.echo(f"{desc.domain}.{desc.service}")


@main.command()
@click.argument("start", required=False)
@click.pass_context
def history(ctx: click.Context, start: Optional[str]) -> None:
    """Show state history, optionally since START (YYYY-MM-DD)."""
    if start:
        _echo_json(_run(ctx, lambda hub: hub.requests.get_history_period(start)))
    else:
        _echo_json(_run(ctx, lambda hub: hub.requests.get_history()))


@main.command()
@click.argument("domain")
@click.argument("service")
@click.option("--data", default=None, help="Service data as a JSON object.")
@click.pass_context
def call(ctx: click.Context, domain: str, service: str, data: Optional[str]) -> None:
    """Call DOMAIN.SERVICE."""
    payload = _parse_data(data)
    _echo_json(_run(ctx, lambda hub: hub.commands.call_service(domain, service, payload)))


@main.command("set-state")
@click.argument("entity_id")
@click.argument("new_state")
@click.pass_context
def set_state(ctx: click.Context, entity_id: str, new_state: str) -> None:
    """Set ENTITY_ID's state to NEW_STATE."""
    _echo_json(_run(ctx, lambda hub: hub.commands.set_state(entity_id, new_state)))


@main.command()
@click.argument("event_type")
@click.option("--data", default=None, help="Event data as a JSON object.")
@click.pass_context
def fire(ctx: click.Context, event_type: str, data: Optional[str]) -> None:
    """Fire EVENT_TYPE on the hub's event bus."""
    payload = _parse_data(data)
    _echo_json(_run(ctx, lambda hub: hub.commands.create_event(event_type, payload)))


def _switch_command(name: str, method: str, doc: str) -> None:
    @main.command(name, help=doc)
    @click.argument("entity_id")
    @click.pass_context
    def _cmd(ctx: click.Context, entity_id: str) -> None:
        _echo_json(_run(ctx, lambda hub: getattr(hub.commands, method)(entity_id)))


_switch_command("turn-on", "turn_on", "Turn ENTITY_ID on.")
_switch_command("turn-off", "turn_off", "Turn ENTITY_ID off.")
_switch_command("toggle", "toggle", "Toggle ENTITY_ID.")


@main.command()
@click.option("--event-type", default=None, help="Only this event type.")
@click.option("--count", type=int, default=0, help="Exit after N events (0 = forever).")
@click.pass_context
def listen(ctx: click.Context, event_type: Optional[str], count: int) -> None:
    """Stream hub events to stdout as NDJSON."""
    _run(ctx, lambda hub: _listen(hub, event_type, count))


async def _listen(hub: HubClient, event_type: Optional[str], count: int) -> None:
    main_task = asyncio.current_task()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, main_task.cancel)
        except NotImplementedError:
            pass  # Windows

    sink = NdjsonSink()
    queue: asyncio.Queue = asyncio.Queue(QUEUE_MAXSIZE)
    if event_type:
        sub = hub.bus.subscribe(event_type, bounded_put(queue))
    else:
        sub = hub.bus.subscribe_all(bounded_put(queue))
    hub.start_stream()

    try:
        while not count or sink.written < count:
            sink.write(await queue.get())
    except (BrokenPipeError, asyncio.CancelledError):
        pass
    finally:
        sub.cancel()
        logger.info("Listener shut down (wrote %d events)", sink.written)


# ── secrets subcommand group ────────────────────────────────────────


@main.group()
def secrets() -> None:
    """Manage the encrypted secrets file (HA_REMOTE_SECRETS_FILE)."""


@secrets.command("init")
@click.option("--key-file", required=True, help="Path for the master key.")
def secrets_init(key_file: str) -> None:
    """Create an empty encrypted secrets file and key."""
    from ha_remote.secrets import init_store
    path = _secrets_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    init_store(path, key_file)
    click.echo(f"Initialized: {path} (key: {key_file})")


@secrets.command("set")
@click.argument("key")
@click.option("--value", prompt=True, hide_input=True, help="Secret value.")
@click.option("--key-file", required=True, help="Path to the master key.")
def secrets_set(key: str, value: str, key_file: str) -> None:
    """Store a secret, e.g. HUB_TOKEN."""
    from ha_remote.secrets import set_secret
    set_secret(_secrets_path(), key_file, key, value)
    click.echo(f"Set: {key}")


@secrets.command("list")
@click.option("--key-file", required=True, help="Path to the master key.")
def secrets_list(key_file: str) -> None:
    """List stored secret names (values are never shown)."""
    from ha_remote.secrets import list_secrets
    for name in list_secrets(_secrets_path(), key_file):
        click.echo(name)
