"""Shared fixtures: an httpx transport that records requests."""

from typing import Callable

import httpx
import orjson
import pytest

from ha_remote.config import ConnectionConfig


class Recorder:
    """Collects every request seen by a :class:`httpx.MockTransport`."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []
        self._handler = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def json_response(body, status: int = 200) -> httpx.Response:
    return httpx.Response(status, content=orjson.dumps(body),
                          headers={"Content-Type": "application/json"})


@pytest.fixture
def conn() -> ConnectionConfig:
    return ConnectionConfig(base_url="http://hub.local:8123/", auth_token="s3cret")
