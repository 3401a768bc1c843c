from __future__ import annotations


class GeoCamError(Exception):
    kind = "error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.kind)
        self.message = message or self.kind


# location
class LocationError(GeoCamError):
    kind = "location_error"


class ServiceDisabled(LocationError):
    kind = "service_disabled"


class PermissionDenied(LocationError):
    kind = "permission_denied"


class PermissionDeniedForever(LocationError):
    kind = "permission_denied_forever"


class LocationUnavailable(LocationError):
    kind = "unavailable"


# capture
class CaptureError(GeoCamError):
    kind = "capture_error"


class CameraNotReady(CaptureError):
    kind = "not_ready"


class AlreadyCapturing(CaptureError):
    kind = "already_capturing"


class CameraDeviceError(CaptureError):
    kind = "device_error"


# watermark
class WatermarkError(GeoCamError):
    kind = "watermark_error"


class DecodeFailed(WatermarkError):
    kind = "decode_failed"


class EncodeFailed(WatermarkError):
    kind = "encode_failed"


class WatermarkIOFailed(WatermarkError):
    kind = "io_failed"


# review
class GallerySaveFailed(GeoCamError):
    kind = "gallery_save_failed"


class CameraEntryBlocked(GeoCamError):
    kind = "camera_entry_blocked"
