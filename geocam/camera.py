from __future__ import annotations
import asyncio, io, logging, threading, time
from typing import Any, Dict, Optional, Protocol

import cv2
import numpy as np
from PIL import Image

from .errors import AlreadyCapturing, CameraDeviceError, CameraNotReady, CaptureError
from .models import CameraSessionState, CapturedPhoto, CaptureState, FlashMode
from .naming import MillisStamp, stamped_path

log = logging.getLogger(__name__)


class CameraDevice(Protocol):
    """Blocking camera plugin. CameraSession calls it from worker threads."""

    def open(self) -> None: ...

    def set_flash_mode(self, mode: FlashMode) -> None: ...

    def capture_to(self, path: str) -> None: ...

    def read_frame(self) -> np.ndarray: ...

    def close(self) -> None: ...


class OpenCVCameraDevice:
    def __init__(self, index: int = 0, width: int = 1920, height: int = 1080, jpeg_quality: int = 95):
        self.index = index
        self.width = width
        self.height = height
        self.jpeg_quality = max(60, min(100, int(jpeg_quality)))
        self.flash_mode = FlashMode.AUTO
        self._cap: Optional[cv2.VideoCapture] = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "OpenCVCameraDevice":
        cam = cfg.get("camera", {})
        return cls(
            index=int(cam.get("device_index", 0)),
            width=int(cam.get("width", 1920)),
            height=int(cam.get("height", 1080)),
            jpeg_quality=int(cam.get("jpeg_quality", 95)),
        )

    def open(self) -> None:
        last_exc = None
        for attempt in range(1, 4):  # 3 attempts with backoff
            cap = cv2.VideoCapture(self.index)
            if cap.isOpened():
                cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
                cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
                with self._lock:
                    old, self._cap = self._cap, cap
                if old is not None:
                    old.release()
                return
            cap.release()
            last_exc = f"device {self.index} did not open"
            log.warning("open retry %d/3: %s", attempt, last_exc)
            time.sleep(0.4 * attempt)
        raise RuntimeError(f"Camera init failed after retries: {last_exc}")

    def set_flash_mode(self, mode: FlashMode) -> None:
        # UVC webcams have no flash; remember the request only
        self.flash_mode = mode

    def _grab_bgr(self) -> np.ndarray:
        with self._lock:
            if self._cap is None:
                raise RuntimeError("camera is not open")
            ok, frame = self._cap.read()
        if not ok or frame is None:
            raise RuntimeError("frame grab failed")
        return frame

    def read_frame(self) -> np.ndarray:
        return cv2.cvtColor(self._grab_bgr(), cv2.COLOR_BGR2RGB)

    def capture_to(self, path: str) -> None:
        frame = self._grab_bgr()
        if not cv2.imwrite(path, frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality]):
            raise RuntimeError(f"could not write still to {path}")

    def close(self) -> None:
        with self._lock:
            cap, self._cap = self._cap, None
        if cap is not None:
            cap.release()


class CameraSession:
    """Owns one device handle for the lifetime of a camera screen.

    At most one capture is in flight; ``close`` releases the device once and
    is safe to call again.
    """

    def __init__(self, device: CameraDevice, raw_dir: str, flash_mode: FlashMode = FlashMode.AUTO,
                 stamp: MillisStamp | None = None):
        self.device = device
        self.raw_dir = raw_dir
        self.flash_mode = flash_mode
        self.state = CameraSessionState.UNINITIALIZED
        self.capture_state = CaptureState.IDLE
        self.failure_reason: Optional[str] = None
        self._stamp = stamp or MillisStamp()
        self._device_open = False
        self._open_lock = asyncio.Lock()

    async def open(self) -> CameraSessionState:
        # concurrent callers wait for the open in flight instead of opening twice
        async with self._open_lock:
            if self.state is CameraSessionState.READY:
                return self.state
            if self.state is CameraSessionState.CLOSED:
                raise CameraNotReady("session already closed")
            return await self._open_device()

    async def _open_device(self) -> CameraSessionState:
        self.state = CameraSessionState.INITIALIZING
        self.failure_reason = None
        try:
            await asyncio.to_thread(self.device.open)
            self._device_open = True
            await asyncio.to_thread(self.device.set_flash_mode, self.flash_mode)
        except Exception as e:
            log.error("camera open failed: %s", e)
            await self._release()
            if self.state is not CameraSessionState.CLOSED:
                self.state = CameraSessionState.FAILED
                self.failure_reason = str(e) or type(e).__name__
            return self.state
        if self.state is CameraSessionState.CLOSED:
            # closed while the device was opening
            await self._release()
            return self.state
        self.state = CameraSessionState.READY
        return self.state

    async def capture(self) -> CapturedPhoto:
        if self.capture_state is CaptureState.CAPTURING:
            raise AlreadyCapturing()
        if self.state is not CameraSessionState.READY:
            raise CameraNotReady(f"camera is {self.state.value}")
        self.capture_state = CaptureState.CAPTURING
        try:
            path, millis = stamped_path(self.raw_dir, "raw", ".jpg", self._stamp)
            await asyncio.to_thread(self.device.capture_to, path)
        except CaptureError:
            raise
        except Exception as e:
            log.error("capture failed: %s", e)
            raise CameraDeviceError(str(e) or type(e).__name__) from e
        finally:
            self.capture_state = CaptureState.IDLE
        return CapturedPhoto(file_path=path, created_at_millis=millis)

    async def preview_frame(self) -> np.ndarray:
        if self.state is not CameraSessionState.READY:
            raise CameraNotReady(f"camera is {self.state.value}")
        try:
            return await asyncio.to_thread(self.device.read_frame)
        except Exception as e:
            raise CameraDeviceError(str(e) or type(e).__name__) from e

    async def close(self) -> None:
        if self.state is CameraSessionState.CLOSED:
            return
        self.state = CameraSessionState.CLOSED
        await self._release()

    async def _release(self) -> None:
        if not self._device_open:
            return
        self._device_open = False
        try:
            await asyncio.to_thread(self.device.close)
        except Exception as e:
            log.warning("camera close failed: %s", e)

    async def __aenter__(self) -> "CameraSession":
        await self.open()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()


def frame_to_jpeg(frame_rgb: np.ndarray, quality: int = 85) -> bytes:
    im = Image.fromarray(frame_rgb)
    buf = io.BytesIO()
    im.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()
