"""Tests for the REST client."""

import asyncio
import dataclasses
from datetime import date

import httpx
import orjson
import pytest

from conftest import Recorder, json_response
from ha_remote.config import ConnectionConfig
from ha_remote.errors import DecodeError, NetworkError, ResponseStatusError
from ha_remote.models import Entity
from ha_remote.rest import RequestClient


@pytest.mark.asyncio
async def test_token_header_sent_once(conn) -> None:
    """A non-empty token is sent as exactly one ``X-HA-Access`` header."""
    rec = Recorder(lambda r: json_response({"message": "API running."}))
    client = RequestClient(conn, client=rec.client())
    await client.get("config")
    await client.post("states/x", {"state": "on"})

    for req in rec.requests:
        assert req.headers.get_list("X-HA-Access") == ["s3cret"]


@pytest.mark.asyncio
async def test_empty_token_sends_no_header() -> None:
    """An empty token means no auth header at all."""
    rec = Recorder(lambda r: json_response({}))
    client = RequestClient(ConnectionConfig("http://hub.local:8123"), client=rec.client())
    await client.get("config")
    assert "X-HA-Access" not in rec.requests[0].headers


@pytest.mark.asyncio
async def test_post_sends_json_body(conn) -> None:
    """POST serializes the body and resolves with the decoded response."""
    rec = Recorder(lambda r: json_response({"entity_id": "x", "state": "on"}))
    client = RequestClient(conn, client=rec.client())

    result = await client.post("states/x", {"state": "on"})

    req = rec.requests[0]
    assert req.method == "POST"
    assert str(req.url) == "http://hub.local:8123/api/states/x"
    assert orjson.loads(req.content) == {"state": "on"}
    assert req.headers["Content-Type"] == "application/json"
    assert result == {"entity_id": "x", "state": "on"}
    assert client.last_post_path == "states/x"


@pytest.mark.asyncio
async def test_non_json_body_is_decode_error(conn) -> None:
    """A 200 with an HTML body is a DecodeError, not a NetworkError."""
    rec = Recorder(lambda r: httpx.Response(200, text="<html>nope</html>"))
    client = RequestClient(conn, client=rec.client())
    with pytest.raises(DecodeError) as info:
        await client.get("bootstrap")
    assert "nope" in info.value.raw


@pytest.mark.asyncio
async def test_transport_failure_is_network_error(conn) -> None:
    """Connection failures surface as NetworkError chained to the cause."""
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = RequestClient(conn, client=Recorder(refuse).client())
    with pytest.raises(NetworkError) as info:
        await client.get("config")
    assert isinstance(info.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_error_status(conn) -> None:
    """Non-2xx answers raise ResponseStatusError with the status code."""
    rec = Recorder(lambda r: httpx.Response(401, text="401: Unauthorized"))
    client = RequestClient(conn, client=rec.client())
    with pytest.raises(ResponseStatusError) as info:
        await client.get("states")
    assert info.value.status_code == 401


@pytest.mark.asyncio
async def test_get_states_decodes_entities(conn) -> None:
    """``states`` decodes into Entity snapshots with friendly names."""
    rec = Recorder(lambda r: json_response([
        {"entity_id": "light.x", "state": "on", "attributes": {"friendly_name": "Lamp"}},
        {"entity_id": "sun.sun", "state": "above_horizon", "attributes": {}},
    ]))
    client = RequestClient(conn, client=rec.client())

    entities = await client.get_states()

    assert [e.entity_id for e in entities] == ["light.x", "sun.sun"]
    assert entities[0].display_name == "Lamp"
    assert entities[1].display_name == "sun.sun"


@pytest.mark.asyncio
async def test_wrong_shape_is_decode_error(conn) -> None:
    """JSON that does not fit the model is a DecodeError."""
    rec = Recorder(lambda r: json_response({"unexpected": True}))
    client = RequestClient(conn, client=rec.client())
    with pytest.raises(DecodeError):
        await client.get_entity("light.x")
    with pytest.raises(DecodeError):
        await client.get_states()


@pytest.mark.asyncio
async def test_history_period_uses_given_date(conn) -> None:
    """The history date is a parameter and the nested lists are flattened."""
    rec = Recorder(lambda r: json_response([
        [{"entity_id": "light.x", "state": "on"}, {"entity_id": "light.x", "state": "off"}],
        [{"entity_id": "sun.sun", "state": "below_horizon"}],
    ]))
    client = RequestClient(conn, client=rec.client())

    records = await client.get_history_period(date(2024, 5, 1))

    assert rec.requests[0].url.path == "/api/history/period/2024-05-01"
    assert [r.state for r in records] == ["on", "off", "below_horizon"]


@pytest.mark.asyncio
async def test_get_services_flattens_domains(conn) -> None:
    """Each service of each domain becomes one descriptor."""
    rec = Recorder(lambda r: json_response([
        {"domain": "light", "services": {"turn_on": {"fields": {"brightness": {}}}, "turn_off": {}}},
    ]))
    client = RequestClient(conn, client=rec.client())

    services = await client.get_services()

    assert {(s.domain, s.service) for s in services} == {("light", "turn_on"), ("light", "turn_off")}
    assert "brightness" in next(s for s in services if s.service == "turn_on").fields


@pytest.mark.asyncio
async def test_concurrent_posts_are_independent(conn) -> None:
    """One POST failing does not affect another in flight."""
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/events/bad"):
            raise httpx.ReadTimeout("timed out", request=request)
        return json_response({"ok": True})

    client = RequestClient(conn, client=Recorder(handler).client())
    good, bad = await asyncio.gather(
        client.post("events/good", {}),
        client.post("events/bad", {}),
        return_exceptions=True,
    )
    assert good == {"ok": True}
    assert isinstance(bad, NetworkError)


def test_base_url_required() -> None:
    """An empty base URL is rejected at construction."""
    with pytest.raises(ValueError):
        ConnectionConfig(base_url="")


def test_entity_is_immutable() -> None:
    """Entity snapshots cannot be modified."""
    entity = Entity.from_json({"entity_id": "light.x", "state": "on"})
    with pytest.raises(dataclasses.FrozenInstanceError):
        entity.state = "off"
    assert entity.domain == "light"


def test_entity_attributes_are_read_only() -> None:
    """The attribute mapping of a snapshot rejects writes and is a private copy."""
    raw = {"entity_id": "light.x", "state": "on", "attributes": {"brightness": 120}}
    entity = Entity.from_json(raw)
    with pytest.raises(TypeError):
        entity.attributes["brightness"] = 0
    raw["attributes"]["brightness"] = 0
    assert entity.attributes["brightness"] == 120
