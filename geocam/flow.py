from __future__ import annotations
import asyncio, logging, os
from typing import Any, Callable, Dict, Optional

from .camera import CameraSession
from .errors import (
    AlreadyCapturing, CameraEntryBlocked, CameraNotReady, CaptureError, GeoCamError, LocationError,
    ServiceDisabled, WatermarkError,
)
from .location import LocationProvider, describe_location_error
from .models import (
    CameraSessionState, CapturedPhoto, FlowState, GeoFix, LocationAlert, ReviewState, ServiceStatus,
)
from .review import PhotoReview
from .watermark import WatermarkPipeline

log = logging.getLogger(__name__)


class CameraScreen:
    """Live view, capture and review for one visit to the camera.

    The screen owns its CameraSession and releases it once on teardown. The
    fix it was created with stays fixed for the whole visit.
    """

    def __init__(self, session: CameraSession, pipeline: WatermarkPipeline, review: PhotoReview, fix: GeoFix):
        self.session = session
        self.pipeline = pipeline
        self.review = review
        self.fix = fix
        self.review_state = ReviewState.LIVE
        self.photo: Optional[CapturedPhoto] = None
        self.busy = False
        self.mounted = True
        self.last_error: Optional[GeoCamError] = None

    async def enter(self) -> CameraSessionState:
        return await self.session.open()

    async def take_photo(self) -> Optional[CapturedPhoto]:
        """Capture and watermark one photo, then switch to PREVIEW.

        Returns None when the screen was torn down before the work finished;
        the tagged file is left where it was written.
        """
        if self.busy:
            raise AlreadyCapturing()
        if self.review_state is ReviewState.PREVIEW:
            raise CameraNotReady("a photo is waiting for review")
        self.busy = True
        raw = None
        try:
            raw = await self.session.capture()
            tagged = await asyncio.to_thread(self.pipeline.tag, raw, self.fix)
        except (CaptureError, WatermarkError) as e:
            log.error("photo capture failed: %s", e)
            self.last_error = e
            if raw is not None and isinstance(e, WatermarkError) and not self.pipeline.keep_raw:
                _remove_quietly(raw.file_path)
            raise
        finally:
            self.busy = False

        if not self.mounted:
            log.info("camera screen closed during capture, leaving %s", tagged.file_path)
            return None
        self.last_error = None
        self.photo = tagged
        self.review_state = ReviewState.PREVIEW
        return tagged

    async def retake(self) -> None:
        photo, self.photo = self.photo, None
        self.review_state = ReviewState.LIVE
        if photo is not None:
            await self.review.retake(photo)

    async def confirm(self) -> Optional[str]:
        photo = self.photo
        if photo is None or self.review_state is not ReviewState.PREVIEW:
            return None
        stored = await self.review.confirm(photo)
        if self.mounted and self.photo is photo:
            self.photo = None
            self.review_state = ReviewState.LIVE
        return stored

    async def share(self) -> None:
        if self.photo is not None:
            await self.review.share(self.photo)

    async def teardown(self) -> None:
        if not self.mounted:
            return
        self.mounted = False
        await self.session.close()

    def status(self) -> Dict[str, Any]:
        return {
            "session": self.session.state.value,
            "failure_reason": self.session.failure_reason,
            "busy": self.busy,
            "review": self.review_state.value,
            "photo": self.photo.as_dict() if self.photo else None,
            "fix": self.fix.as_dict(),
            "last_error": self.last_error.kind if self.last_error else None,
        }


ScreenFactory = Callable[[GeoFix], CameraScreen]


class ScreenFlowController:
    """Home screen state machine: AWAITING_LOCATION -> READY or LOCATION_FAILED.

    Every async completion is applied only if no newer acquisition started
    and the controller is still open.
    """

    def __init__(self, provider: LocationProvider, screen_factory: ScreenFactory,
                 on_alert: Optional[Callable[[LocationAlert], None]] = None):
        self.provider = provider
        self.screen_factory = screen_factory
        self.on_alert = on_alert
        self.state = FlowState.AWAITING_LOCATION
        self.fix: Optional[GeoFix] = None
        self.last_error: Optional[LocationError] = None
        self.alert: Optional[LocationAlert] = None
        self.camera_screen: Optional[CameraScreen] = None
        self._generation = 0
        self._closed = False
        self._watch_task: Optional[asyncio.Task] = None

    @property
    def camera_entry_enabled(self) -> bool:
        return self.state is FlowState.READY and self.fix is not None

    async def start(self) -> FlowState:
        if self._watch_task is None:
            self._watch_task = asyncio.create_task(self._watch_service_status())
            # let the subscription start before the first fix is requested
            await asyncio.sleep(0)
        return await self.acquire()

    async def acquire(self) -> FlowState:
        if self._closed:
            return self.state
        self._generation += 1
        gen = self._generation
        self.state = FlowState.AWAITING_LOCATION
        self.alert = None
        try:
            fix = await self.provider.get_current_fix()
        except LocationError as e:
            if self._is_current(gen):
                self._fail(e)
            return self.state
        if self._is_current(gen):
            self.fix = fix
            self.last_error = None
            self.state = FlowState.READY
            log.info("location fix %s, %s", fix.latitude, fix.longitude)
        return self.state

    async def retry(self) -> FlowState:
        return await self.acquire()

    async def open_settings(self) -> bool:
        return await self.provider.open_settings()

    async def open_location_settings(self) -> bool:
        return await self.provider.open_location_settings()

    async def enter_camera(self) -> CameraScreen:
        if not self.camera_entry_enabled:
            raise CameraEntryBlocked(f"camera unavailable while {self.state.value}")
        screen = self.camera_screen
        if screen is None or not screen.mounted:
            screen = self.screen_factory(self.fix)
            self.camera_screen = screen
        if screen.session.state is not CameraSessionState.READY:
            await screen.enter()
        return screen

    async def exit_camera(self) -> None:
        screen, self.camera_screen = self.camera_screen, None
        if screen is not None:
            await screen.teardown()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        task, self._watch_task = self._watch_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.exit_camera()

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "fix": self.fix.as_dict() if self.fix else None,
            "camera_entry_enabled": self.camera_entry_enabled,
            "error": self.last_error.kind if self.last_error else None,
            "alert": self.alert.as_dict() if self.alert else None,
            "camera": self.camera_screen.status() if self.camera_screen else None,
        }

    def _is_current(self, gen: int) -> bool:
        return not self._closed and gen == self._generation

    def _fail(self, err: LocationError) -> None:
        self.state = FlowState.LOCATION_FAILED
        self.last_error = err
        self.alert = describe_location_error(err)
        log.warning("location unavailable: %s", err)
        if self.on_alert is not None:
            try:
                self.on_alert(self.alert)
            except Exception as e:
                log.error("alert listener failed: %s", e)

    async def _watch_service_status(self) -> None:
        try:
            async for status in self.provider.watch_service_status():
                if self._closed:
                    break
                if status is ServiceStatus.ENABLED:
                    await self.acquire()
                else:
                    # supersede any acquisition still in flight
                    self._generation += 1
                    self._fail(ServiceDisabled("location services are disabled"))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("service status stream stopped: %s", e)


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except OSError:
        pass
