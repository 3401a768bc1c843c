from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


@dataclass(frozen=True)
class GeoFix:
    latitude: float
    longitude: float

    def as_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True)
class CapturedPhoto:
    file_path: str
    created_at_millis: int

    def as_dict(self) -> Dict[str, Any]:
        return {"file_path": self.file_path, "created_at_millis": self.created_at_millis}


@dataclass(frozen=True)
class LocationAlert:
    """What the home screen shows when a fix could not be obtained."""
    title: str
    message: str
    show_settings: bool = False
    retryable: bool = True
    show_location_settings: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "message": self.message,
            "show_settings": self.show_settings,
            "retryable": self.retryable,
            "show_location_settings": self.show_location_settings,
        }


class CameraSessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


class CaptureState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"


class ReviewState(str, Enum):
    LIVE = "live"
    PREVIEW = "preview"


class FlowState(str, Enum):
    AWAITING_LOCATION = "awaiting_location"
    LOCATION_FAILED = "location_failed"
    READY = "ready"


class ServiceStatus(str, Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"


class LocationPermission(str, Enum):
    DENIED = "denied"
    DENIED_FOREVER = "denied_forever"
    WHILE_IN_USE = "while_in_use"
    ALWAYS = "always"


class FlashMode(str, Enum):
    OFF = "off"
    AUTO = "auto"
    ALWAYS = "always"
    TORCH = "torch"
