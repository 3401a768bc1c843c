from __future__ import annotations
import logging, os
from typing import Any, Dict, Optional

from flask import Flask, Response, jsonify, request, send_file

from . import config as cfgmod
from .app_logging import configure_logging
from .camera import CameraDevice, CameraSession, OpenCVCameraDevice, frame_to_jpeg
from .errors import AlreadyCapturing, CameraEntryBlocked, CameraNotReady, GeoCamError
from .flow import CameraScreen, ScreenFlowController
from .gallery import DirectoryGallery, MediaStore
from .location import LocationPlugin, LocationProvider, StaticLocationPlugin
from .models import CameraSessionState, FlashMode, GeoFix, ReviewState
from .naming import MillisStamp
from .review import PhotoReview, ShareSurface, share_surface_from_config
from .runtime import FlowRuntime
from .watermark import WatermarkPipeline, apply_location_overlay, hex_to_rgb

log = logging.getLogger(__name__)

_CONFLICTS = (AlreadyCapturing, CameraNotReady, CameraEntryBlocked)


class GeoCam:
    """Everything one running app owns: config, loop thread and controller."""

    def __init__(self, cfg: Dict[str, Any], runtime: FlowRuntime, controller: ScreenFlowController,
                 plugin: LocationPlugin, config_path: Optional[str] = None):
        self.cfg = cfg
        self.runtime = runtime
        self.controller = controller
        self.plugin = plugin
        self.config_path = config_path

    def shutdown(self) -> None:
        if self.runtime.running:
            self.runtime.run(self.controller.close())
        self.runtime.stop()


def build_controller(cfg: Dict[str, Any], *, camera_device: Optional[CameraDevice] = None,
                     location_plugin: Optional[LocationPlugin] = None,
                     media_store: Optional[MediaStore] = None,
                     share_surface: Optional[ShareSurface] = None) -> ScreenFlowController:
    stamp = MillisStamp()
    review = PhotoReview(media_store or DirectoryGallery.from_config(cfg),
                         share_surface or share_surface_from_config(cfg))

    def screen_factory(fix: GeoFix) -> CameraScreen:
        # read cfg per visit so saved settings apply on the next camera entry
        device = camera_device or OpenCVCameraDevice.from_config(cfg)
        flash = FlashMode(cfg.get("camera", {}).get("flash_mode", "auto"))
        session = CameraSession(device, cfg["storage"]["raw_dir"], flash, stamp)
        return CameraScreen(session, WatermarkPipeline.from_config(cfg, stamp), review, fix)

    provider = LocationProvider(location_plugin or StaticLocationPlugin.from_config(cfg))
    return ScreenFlowController(provider, screen_factory)


def create_app(cfg: Optional[Dict[str, Any]] = None, *, config_path: Optional[str] = None,
               camera_device: Optional[CameraDevice] = None,
               location_plugin: Optional[LocationPlugin] = None,
               media_store: Optional[MediaStore] = None,
               share_surface: Optional[ShareSurface] = None) -> Flask:
    app = Flask(__name__)
    cfg = cfg if cfg is not None else cfgmod.load_config(config_path)
    plugin = location_plugin or StaticLocationPlugin.from_config(cfg)
    controller = build_controller(cfg, camera_device=camera_device, location_plugin=plugin,
                                  media_store=media_store, share_surface=share_surface)
    runtime = FlowRuntime()
    runtime.start()
    runtime.run(controller.start())
    geocam = GeoCam(cfg, runtime, controller, plugin, config_path)
    app.extensions["geocam"] = geocam

    def _status() -> Dict[str, Any]:
        async def snapshot():
            return controller.status()
        return runtime.run(snapshot())

    def _screen() -> CameraScreen:
        screen = controller.camera_screen
        if screen is None or not screen.mounted:
            raise CameraNotReady("camera screen is not open")
        return screen

    @app.errorhandler(GeoCamError)
    def geocam_error(e: GeoCamError):
        code = 409 if isinstance(e, _CONFLICTS) else 500
        return jsonify({"error": e.kind, "message": e.message}), code

    @app.get("/healthz")
    def healthz():
        return ("ok", 200)

    @app.get("/api/status")
    def status():
        return jsonify(_status())

    @app.post("/api/location/retry")
    def location_retry():
        runtime.run(controller.retry())
        return jsonify(_status())

    @app.post("/api/location/open-settings")
    def location_open_settings():
        return jsonify({"opened": bool(runtime.run(controller.open_settings()))})

    @app.post("/api/location/open-location-settings")
    def location_open_location_settings():
        return jsonify({"opened": bool(runtime.run(controller.open_location_settings()))})

    @app.post("/api/location/service")
    def location_service():
        setter = getattr(plugin, "set_service_enabled", None)
        if setter is None:
            return jsonify({"error": "unsupported", "message": "location plugin has no service toggle"}), 400
        enabled = bool((request.get_json(silent=True) or {}).get("enabled", True))

        async def toggle():
            setter(enabled)
        runtime.run(toggle())
        return jsonify(_status())

    @app.post("/api/camera/enter")
    def camera_enter():
        screen = runtime.run(controller.enter_camera())
        code = 503 if screen.session.state is CameraSessionState.FAILED else 200
        return jsonify(_status()), code

    @app.post("/api/camera/exit")
    def camera_exit():
        runtime.run(controller.exit_camera())
        return jsonify(_status())

    @app.post("/api/capture")
    def capture():
        screen = _screen()
        photo = runtime.run(screen.take_photo(), timeout=120.0)
        if photo is None:
            return jsonify({"error": "discarded", "message": "camera screen closed during capture"}), 409
        return jsonify(_status())

    @app.get("/photo.png")
    def photo():
        async def under_review():
            screen = controller.camera_screen
            if screen is None or screen.review_state is not ReviewState.PREVIEW or screen.photo is None:
                return None
            return screen.photo.file_path

        path = runtime.run(under_review())
        if path is None:
            return jsonify({"error": "no_photo", "message": "no photo under review"}), 404
        return send_file(path, mimetype="image/png")

    @app.post("/api/review/retake")
    def review_retake():
        runtime.run(_screen().retake())
        return jsonify(_status())

    @app.post("/api/review/confirm")
    def review_confirm():
        stored = runtime.run(_screen().confirm())
        body = _status()
        body["stored_path"] = stored
        return jsonify(body)

    @app.post("/api/review/share")
    def review_share():
        runtime.run(_screen().share())
        return jsonify(_status())

    @app.get("/stream.mjpg")
    def stream():
        screen = _screen()
        boundary = b"--frame"
        def gen():
            while screen.mounted:
                try:
                    arr = runtime.run(screen.session.preview_frame())
                except GeoCamError as e:
                    log.warning("live view stopped: %s", e)
                    break
                frame = frame_to_jpeg(apply_location_overlay(arr, screen.fix))
                yield boundary + b"\r\n" + b"Content-Type: image/jpeg\r\n" + b"Content-Length: " + str(len(frame)).encode() + b"\r\n\r\n" + frame + b"\r\n"
        return Response(gen(), mimetype="multipart/x-mixed-replace; boundary=frame")

    @app.get("/settings")
    def settings_get():
        return jsonify(cfg)

    @app.post("/settings")
    def settings_post():
        form = request.get_json(silent=True) or request.form
        cam = dict(cfg["camera"])
        wm  = dict(cfg["watermark"])
        try:
            # camera
            cam["width"] = int(form.get("width", cam["width"]))
            cam["height"] = int(form.get("height", cam["height"]))
            cam["flash_mode"] = FlashMode(form.get("flash_mode", cam["flash_mode"])).value
            # watermark
            wm["font_size"] = max(6, min(256, int(form.get("font_size", wm["font_size"]))))
            wm["inset_x"] = max(0, int(form.get("inset_x", wm["inset_x"])))
            wm["inset_y"] = max(0, int(form.get("inset_y", wm["inset_y"])))
            wm["fill"] = form.get("fill", wm["fill"])
            wm["stroke"] = form.get("stroke", wm["stroke"])
            wm["stroke_width"] = max(0, int(form.get("stroke_width", wm["stroke_width"])))
            hex_to_rgb(wm["fill"]); hex_to_rgb(wm["stroke"])
        except (ValueError, TypeError, AttributeError) as e:
            return jsonify({"error": "invalid_settings", "message": str(e)}), 400

        cfg["camera"] = cam
        cfg["watermark"] = wm
        saved = cfgmod.save_config(cfg, config_path)
        log.info("settings saved to %s", saved)
        return jsonify(cfg)

    return app


def main():
    configure_logging()
    port = int(os.environ.get("PORT", "8000"))
    app = create_app()
    try:
        app.run(host="0.0.0.0", port=port, threaded=True)
    finally:
        app.extensions["geocam"].shutdown()


if __name__ == "__main__":
    main()
