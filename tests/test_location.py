"""Tests for the location reporter."""

import asyncio
from typing import Callable, Optional

import httpx
import orjson
import pytest

from conftest import Recorder, json_response
from ha_remote.commands import CommandService
from ha_remote.config import HomeConfig
from ha_remote.errors import LocationError
from ha_remote.location import GeoRegion, LocationFix, LocationReporter
from ha_remote.models import LocationUpdate
from ha_remote.notify import LoggingNotifier
from ha_remote.rest import RequestClient


class _Handle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeProvider:
    """In-memory stand-in for the OS location service."""

    def __init__(self, fix: Optional[LocationFix] = None, fail_significant: bool = False) -> None:
        self.fix = fix
        self.fail_significant = fail_significant
        self.notifications: list[str] = []
        self.on_fix: Optional[Callable] = None
        self.on_error: Optional[Callable] = None
        self.on_enter: Optional[Callable] = None
        self.on_exit: Optional[Callable] = None
        self.region: Optional[GeoRegion] = None
        self.handles: list[_Handle] = []

    def battery_level(self) -> float:
        return 0.5

    def hostname(self) -> str:
        return "pixel"

    def watch_significant_changes(self, on_fix, on_error):
        if self.fail_significant:
            raise LocationError("not authorized")
        self.on_fix, self.on_error = on_fix, on_error
        self.handles.append(_Handle())
        return self.handles[-1]

    def monitor_region(self, region, on_enter, on_exit):
        self.region, self.on_enter, self.on_exit = region, on_enter, on_exit
        self.handles.append(_Handle())
        return self.handles[-1]

    async def current_location(self, accuracy: str) -> LocationFix:
        if self.fix is None:
            await asyncio.sleep(10)
        return self.fix

    def schedule_notification(self, body: str) -> None:
        self.notifications.append(body)


def _reporter(conn, provider, handler=None, **kwargs):
    rec = Recorder(handler or (lambda r: json_response([])))
    commands = CommandService(RequestClient(conn, client=rec.client()))
    home = HomeConfig(latitude=52.37, longitude=4.89)
    return LocationReporter(commands, provider, home=home, **kwargs), rec


def test_payload_omits_empty_location_name() -> None:
    """``location_name`` is absent when empty and present when set."""
    update = LocationUpdate("phone", 1.0, 2.0, 10.0, 50, "pixel", location_name="")
    assert "location_name" not in update.to_payload()

    update = LocationUpdate("phone", 1.0, 2.0, 10.0, 50, "pixel", location_name="home")
    payload = update.to_payload()
    assert payload["location_name"] == "home"
    assert payload["gps"] == [1.0, 2.0]


def test_battery_is_clamped() -> None:
    """Unknown battery (negative) becomes 0; values stay within 0-100."""
    assert LocationUpdate("p", 0, 0, 0, -100, "h").battery == 0
    assert LocationUpdate("p", 0, 0, 0, 150, "h").battery == 100


@pytest.mark.asyncio
async def test_report_location_calls_device_tracker(conn) -> None:
    """A report posts ``device_tracker.see`` and schedules a notification."""
    provider = FakeProvider()
    reporter, rec = _reporter(conn, provider)

    await reporter.report_location("Testing", "phone", 1.5, 2.5, 30.0)

    req = rec.requests[0]
    assert req.url.path == "/api/services/device_tracker/see"
    assert orjson.loads(req.content) == {
        "battery": 50,
        "gps": [1.5, 2.5],
        "gps_accuracy": 30.0,
        "hostname": "pixel",
        "dev_id": "phone",
    }
    assert provider.notifications == ["Testing, alerting Home Assistant"]


@pytest.mark.asyncio
async def test_failed_report_still_notifies(conn) -> None:
    """A hub failure does not suppress the notification or raise."""
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    provider = FakeProvider()
    reporter, _ = _reporter(conn, provider, refuse)

    task = reporter.report_location("Testing", "phone", 1.0, 2.0, 5.0)
    await asyncio.gather(task, return_exceptions=True)

    assert provider.notifications == ["Testing, alerting Home Assistant"]


@pytest.mark.asyncio
async def test_geofence_reports_home_coordinates(conn) -> None:
    """Enter/exit report the home point with fixed accuracy and a location name."""
    provider = FakeProvider()
    reporter, rec = _reporter(conn, provider)
    reporter.start_tracking("phone")

    assert provider.region.radius == 1000
    provider.on_enter(provider.region)
    provider.on_exit(provider.region)
    for _ in range(20):
        if len(rec.requests) >= 2:
            break
        await asyncio.sleep(0.01)

    bodies = [orjson.loads(r.content) for r in rec.requests]
    assert [b["location_name"] for b in bodies] == ["home", "not_home"]
    assert all(b["gps"] == [52.37, 4.89] and b["gps_accuracy"] == 5000.0 for b in bodies)
    assert provider.notifications == [
        "Region entered, alerting Home Assistant",
        "Region exited, alerting Home Assistant",
    ]


@pytest.mark.asyncio
async def test_significant_change_reports_fix(conn) -> None:
    """A significant-change fix is reported with its own position and no name."""
    provider = FakeProvider()
    reporter, rec = _reporter(conn, provider)
    reporter.start_tracking("phone")

    provider.on_fix(LocationFix(10.0, 20.0, 65.0))
    for _ in range(20):
        if rec.requests:
            break
        await asyncio.sleep(0.01)

    body = orjson.loads(rec.requests[0].content)
    assert body["gps"] == [10.0, 20.0]
    assert "location_name" not in body


@pytest.mark.asyncio
async def test_registration_failure_is_isolated(conn) -> None:
    """A failing significant-change registration does not stop the geofence."""
    provider = FakeProvider(fail_significant=True)
    notifier = LoggingNotifier()
    reporter, _ = _reporter(conn, provider, notifier=notifier)

    reporter.start_tracking("phone")

    assert provider.region is not None
    assert reporter.tracking
    assert any("not authorized" in t for t in notifier.sent)


@pytest.mark.asyncio
async def test_stop_tracking_cancels_handles(conn) -> None:
    """``stop_tracking`` cancels both registrations."""
    provider = FakeProvider()
    reporter, _ = _reporter(conn, provider)
    reporter.start_tracking("phone")
    reporter.stop_tracking()

    assert all(h.cancelled for h in provider.handles)
    assert not reporter.tracking


@pytest.mark.asyncio
async def test_oneshot_success(conn) -> None:
    """A oneshot fix is reported and resolves True."""
    provider = FakeProvider(fix=LocationFix(1.0, 2.0, 100.0))
    reporter, rec = _reporter(conn, provider, device_id="phone")

    assert await reporter.send_oneshot_location() is True
    await asyncio.sleep(0.05)
    assert provider.notifications == ["One off location update requested, alerting Home Assistant"]
    assert rec.requests


@pytest.mark.asyncio
async def test_oneshot_timeout(conn) -> None:
    """No fix within the timeout fails with LocationError."""
    provider = FakeProvider(fix=None)
    reporter, rec = _reporter(conn, provider, device_id="phone", oneshot_timeout=0.05)

    with pytest.raises(LocationError):
        await reporter.send_oneshot_location()
    assert rec.requests == []


@pytest.mark.asyncio
async def test_oneshot_requires_device_id(conn) -> None:
    """Without a device id there is nothing to report."""
    reporter, _ = _reporter(conn, FakeProvider(fix=LocationFix(0, 0, 0)))
    with pytest.raises(LocationError):
        await reporter.send_oneshot_location()
