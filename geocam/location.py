from __future__ import annotations
import asyncio, logging
from typing import Any, AsyncIterator, Dict, List, Protocol

from .errors import (
    LocationError, LocationUnavailable, PermissionDenied, PermissionDeniedForever, ServiceDisabled,
)
from .models import GeoFix, LocationAlert, LocationPermission, ServiceStatus

log = logging.getLogger(__name__)


class LocationPlugin(Protocol):
    async def is_service_enabled(self) -> bool: ...

    async def check_permission(self) -> LocationPermission: ...

    async def request_permission(self) -> LocationPermission: ...

    async def current_position(self) -> GeoFix: ...

    def service_status_stream(self) -> AsyncIterator[ServiceStatus]: ...

    async def open_app_settings(self) -> bool: ...

    async def open_location_settings(self) -> bool: ...


class LocationProvider:
    """Permission-aware access to a single best-effort fix."""

    def __init__(self, plugin: LocationPlugin):
        self.plugin = plugin

    async def get_current_fix(self) -> GeoFix:
        """Return the current fix or raise a LocationError.

        The service must be enabled. A DENIED permission is requested exactly
        once; DENIED_FOREVER is reported separately because only the user can
        lift it from the system settings.
        """
        try:
            if not await self.plugin.is_service_enabled():
                raise ServiceDisabled("location services are disabled")

            permission = await self.plugin.check_permission()
            if permission is LocationPermission.DENIED:
                permission = await self.plugin.request_permission()
                if permission is LocationPermission.DENIED:
                    raise PermissionDenied("location permission denied")
            if permission is LocationPermission.DENIED_FOREVER:
                raise PermissionDeniedForever("location permission permanently denied")

            return await self.plugin.current_position()
        except LocationError:
            raise
        except Exception as e:
            raise LocationUnavailable(str(e) or type(e).__name__) from e

    def watch_service_status(self) -> AsyncIterator[ServiceStatus]:
        return self.plugin.service_status_stream()

    async def open_settings(self) -> bool:
        return await self.plugin.open_app_settings()

    async def open_location_settings(self) -> bool:
        return await self.plugin.open_location_settings()


class StaticLocationPlugin:
    """Fixed, configured position for hosts without a GPS receiver.

    Permission is always granted. The service can be toggled with
    ``set_service_enabled``, which must run on the event loop thread.
    """

    def __init__(self, latitude: float, longitude: float, service_enabled: bool = True):
        self.fix = GeoFix(float(latitude), float(longitude))
        self.service_enabled = service_enabled
        self._subscribers: List[asyncio.Queue] = []

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "StaticLocationPlugin":
        loc = cfg.get("location", {})
        return cls(
            latitude=float(loc.get("latitude", 0.0)),
            longitude=float(loc.get("longitude", 0.0)),
            service_enabled=bool(loc.get("service_enabled", True)),
        )

    async def is_service_enabled(self) -> bool:
        return self.service_enabled

    async def check_permission(self) -> LocationPermission:
        return LocationPermission.WHILE_IN_USE

    async def request_permission(self) -> LocationPermission:
        return LocationPermission.WHILE_IN_USE

    async def current_position(self) -> GeoFix:
        return self.fix

    def set_service_enabled(self, enabled: bool) -> None:
        if enabled == self.service_enabled:
            return
        self.service_enabled = enabled
        status = ServiceStatus.ENABLED if enabled else ServiceStatus.DISABLED
        for q in list(self._subscribers):
            q.put_nowait(status)

    async def service_status_stream(self) -> AsyncIterator[ServiceStatus]:
        q: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(q)
        try:
            while True:
                yield await q.get()
        finally:
            self._subscribers.remove(q)

    async def open_app_settings(self) -> bool:
        log.info("no system settings on this host; edit the location section of the config instead")
        return False

    async def open_location_settings(self) -> bool:
        log.info("no location settings on this host; toggle the service through /api/location/service")
        return False


def describe_location_error(err: LocationError) -> LocationAlert:
    if isinstance(err, ServiceDisabled):
        return LocationAlert(
            "Location Services Disabled",
            "Please enable location services to continue.",
            show_location_settings=True,
        )
    if isinstance(err, PermissionDenied):
        return LocationAlert("Permission Denied", "Location permission is required to use the camera features.")
    if isinstance(err, PermissionDeniedForever):
        return LocationAlert(
            "Permission Permanently Denied",
            "Please enable location permissions in your device settings.",
            show_settings=True,
            retryable=False,
        )
    return LocationAlert("Error", "Failed to get location. Please try again.")
