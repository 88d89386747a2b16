"""Turn OS location and geofence signals into ``device_tracker.see`` calls.

The OS side is a :class:`LocationProvider` supplied by the embedding
application.  Every report is fire-and-forget: the hub call runs as a
background task, and the local notification is scheduled whether or not
that call succeeds.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from ha_remote.commands import CommandService
from ha_remote.config import HomeConfig
from ha_remote.errors import LocationError
from ha_remote.models import LocationUpdate
from ha_remote.notify import Notifier, fire_and_forget, send

logger = logging.getLogger(__name__)

HOME_REGION_ID = "home_location"
HOME_RADIUS_M = 1000.0
GEOFENCE_ACCURACY = 5000.0
ONESHOT_ACCURACY = "neighborhood"
ONESHOT_TIMEOUT_S = 20.0

REASON_SIGNIFICANT = "Significant location change detected"
REASON_ENTERED = "Region entered"
REASON_EXITED = "Region exited"
REASON_ONESHOT = "One off location update requested"


@dataclass
class LocationFix:
    """A position reported by the OS."""

    latitude: float
    longitude: float
    accuracy: float


@dataclass
class GeoRegion:
    """A circular geofence; *radius* is in metres."""

    latitude: float
    longitude: float
    radius: float
    identifier: str = HOME_REGION_ID


class TrackingHandle(Protocol):
    def cancel(self) -> None: ...


class LocationProvider(Protocol):
    """The OS location service, as seen by the reporter.

    Callbacks may be invoked from any thread.
    """

    def battery_level(self) -> float:
        """Battery charge in ``[0.0, 1.0]``; negative when unknown."""

    def hostname(self) -> str: ...

    def watch_significant_changes(
        self,
        on_fix: Callable[[LocationFix], None],
        on_error: Callable[[Exception], None],
    ) -> TrackingHandle: ...

    def monitor_region(
        self,
        region: GeoRegion,
        on_enter: Callable[[GeoRegion], None],
        on_exit: Callable[[GeoRegion], None],
    ) -> TrackingHandle: ...

    async def current_location(self, accuracy: str) -> LocationFix: ...

    def schedule_notification(self, body: str) -> None: ...


class LocationReporter:
    """Reports device location to the hub.

    Parameters
    ----------
    commands:
        Used for the ``device_tracker.see`` call.
    provider:
        OS location collaborator.
    home:
        Centre of the home geofence.
    device_id:
        Default device id for :meth:`send_oneshot_location`.
    notifier:
        Receives titles for tracking failures.
    """

    def __init__(
        self,
        commands: CommandService,
        provider: LocationProvider,
        home: Optional[HomeConfig] = None,
        device_id: str = "",
        notifier: Optional[Notifier] = None,
        oneshot_timeout: float = ONESHOT_TIMEOUT_S,
    ) -> None:
        self._commands = commands
        self._provider = provider
        self._home = home or HomeConfig()
        self._device_id = device_id
        self._notifier = notifier
        self._oneshot_timeout = oneshot_timeout
        self._handles: list[TrackingHandle] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def tracking(self) -> bool:
        return bool(self._handles)

    def report_location(
        self,
        reason: str,
        device_id: str,
        latitude: float,
        longitude: float,
        accuracy: float,
        location_name: str = "",
    ) -> asyncio.Task:
        """Send one location report and notify; returns the hub-call task.

        Must be called from the event loop thread.
        """
        update = LocationUpdate(
            dev_id=device_id,
            latitude=latitude,
            longitude=longitude,
            gps_accuracy=accuracy,
            battery=int(self._provider.battery_level() * 100),
            hostname=self._provider.hostname(),
            location_name=location_name or None,
        )
        task = fire_and_forget(self._see(update), name=f"location:{device_id}")

        try:
            self._provider.schedule_notification(f"{reason}, alerting Home Assistant")
        except Exception:
            logger.exception("Failed to schedule location notification")
        return task

    async def _see(self, update: LocationUpdate) -> None:
        await self._commands.call_service("device_tracker", "see", update.to_payload())
        logger.info("Device %s seen", update.dev_id)

    # ── tracking ────────────────────────────────────────────────────

    def start_tracking(self, device_id: str) -> None:
        """Register the significant-change watch and the home geofence.

        Each registration is independent: one failing is logged and
        notified, and the other still goes ahead.
        """
        if self._handles:
            self.stop_tracking()
        self._loop = asyncio.get_running_loop()
        home = self._home
        region = GeoRegion(home.latitude, home.longitude, HOME_RADIUS_M)

        def on_fix(fix: LocationFix) -> None:
            self._in_loop(
                REASON_SIGNIFICANT, device_id, fix.latitude, fix.longitude, fix.accuracy, ""
            )

        def on_enter(_: GeoRegion) -> None:
            logger.info("Region %s entered", region.identifier)
            self._in_loop(
                REASON_ENTERED, device_id, region.latitude, region.longitude, GEOFENCE_ACCURACY, "home"
            )

        def on_exit(_: GeoRegion) -> None:
            logger.info("Region %s exited", region.identifier)
            self._in_loop(
                REASON_EXITED, device_id, region.latitude, region.longitude, GEOFENCE_ACCURACY, "not_home"
            )

        try:
            self._handles.append(
                self._provider.watch_significant_changes(on_fix, self._tracking_failed)
            )
        except Exception as exc:
            self._tracking_failed(exc)

        try:
            self._handles.append(self._provider.monitor_region(region, on_enter, on_exit))
        except Exception as exc:
            self._tracking_failed(exc)

    def stop_tracking(self) -> None:
        """Cancel every registration made by :meth:`start_tracking`."""
        handles, self._handles = self._handles, []
        for handle in handles:
            try:
                handle.cancel()
            except Exception:
                logger.exception("Failed to cancel location tracking handle")

    async def send_oneshot_location(self, device_id: Optional[str] = None) -> bool:
        """Fetch one fix, report it, and return ``True``.

        Raises
        ------
        LocationError
            When no fix arrives within the timeout or the provider fails.
        """
        device_id = device_id or self._device_id
        if not device_id:
            raise LocationError("No device id configured for location reports")

        try:
            fix = await asyncio.wait_for(
                self._provider.current_location(ONESHOT_ACCURACY),
                timeout=self._oneshot_timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("Timed out after %.0fs waiting for a oneshot location", self._oneshot_timeout)
            raise LocationError("Timed out waiting for a location fix") from exc
        except LocationError:
            logger.warning("Error when trying to get a oneshot location", exc_info=True)
            raise
        except Exception as exc:
            logger.warning("Error when trying to get a oneshot location: %s", exc)
            raise LocationError(str(exc)) from exc

        self.report_location(
            REASON_ONESHOT, device_id, fix.latitude, fix.longitude, fix.accuracy, ""
        )
        return True

    # ── helpers ─────────────────────────────────────────────────────

    def _in_loop(self, *args) -> None:
        """Run :meth:`report_location` on the loop, whichever thread calls."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning("Location signal received while not tracking; dropped")
            return
        loop.call_soon_threadsafe(self._report_safely, *args)

    def _report_safely(self, *args) -> None:
        try:
            self.report_location(*args)
        except Exception:
            logger.exception("Failed to report location")

    def _tracking_failed(self, exc: BaseException) -> None:
        logger.error("Location tracking error: %s", exc)
        send(self._notifier, f"Location tracking error! {exc}")
