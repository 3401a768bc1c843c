"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import os
import shutil
import threading
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

import numpy as np
import pytest
from PIL import Image

from geocam import config as cfgmod
from geocam.models import FlashMode, GeoFix, LocationPermission, ServiceStatus


def write_jpeg(path: str, size: tuple[int, int] = (640, 480), color=(40, 90, 140)) -> str:
    Image.new("RGB", size, color).save(path, format="JPEG", quality=95)
    return path


@dataclass
class FakeCameraDevice:
    """Camera that writes a solid-colour JPEG still."""

    size: tuple[int, int] = (640, 480)
    open_error: Exception | None = None
    capture_error: Exception | None = None
    payload: bytes | None = None
    gate: threading.Event | None = None
    open_delay: float = 0.0
    open_calls: int = 0
    close_calls: int = 0
    captures: list[str] = field(default_factory=list)
    flash_modes: list[FlashMode] = field(default_factory=list)

    def open(self) -> None:
        self.open_calls += 1
        if self.open_delay:
            time.sleep(self.open_delay)
        if self.open_error is not None:
            raise self.open_error

    def set_flash_mode(self, mode: FlashMode) -> None:
        self.flash_modes.append(mode)

    def capture_to(self, path: str) -> None:
        if self.gate is not None:
            assert self.gate.wait(timeout=5)
        if self.capture_error is not None:
            raise self.capture_error
        if self.payload is not None:
            with open(path, "wb") as f:
                f.write(self.payload)
        else:
            write_jpeg(path, self.size)
        self.captures.append(path)

    def read_frame(self) -> np.ndarray:
        return np.full((self.size[1], self.size[0], 3), 60, dtype=np.uint8)

    def close(self) -> None:
        self.close_calls += 1


@dataclass
class FakeLocationPlugin:
    """Location plugin with scripted permission answers and a pushable status stream."""

    service_enabled: bool = True
    permission: LocationPermission = LocationPermission.WHILE_IN_USE
    request_answers: list[LocationPermission] = field(default_factory=list)
    fix: GeoFix = GeoFix(37.7749, -122.4194)
    position_error: Exception | None = None
    position_calls: int = 0
    request_calls: int = 0
    check_calls: int = 0
    settings_opened: int = 0
    location_settings_opened: int = 0
    _queue: asyncio.Queue | None = None

    async def is_service_enabled(self) -> bool:
        return self.service_enabled

    async def check_permission(self) -> LocationPermission:
        self.check_calls += 1
        return self.permission

    async def request_permission(self) -> LocationPermission:
        self.request_calls += 1
        if self.request_answers:
            self.permission = self.request_answers.pop(0)
        return self.permission

    async def current_position(self) -> GeoFix:
        self.position_calls += 1
        if self.position_error is not None:
            raise self.position_error
        return self.fix

    def push(self, status: ServiceStatus) -> None:
        self._stream_queue().put_nowait(status)

    def _stream_queue(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    async def service_status_stream(self) -> AsyncIterator[ServiceStatus]:
        q = self._stream_queue()
        while True:
            yield await q.get()

    async def open_app_settings(self) -> bool:
        self.settings_opened += 1
        return True

    async def open_location_settings(self) -> bool:
        self.location_settings_opened += 1
        return True


@dataclass
class FakeMediaStore:
    """Gallery that copies into a directory, or fails on demand."""

    root: str
    fail: bool = False
    stored: list[str] = field(default_factory=list)

    def persist(self, file_path: str) -> str:
        if self.fail:
            raise OSError("media store unavailable")
        os.makedirs(self.root, exist_ok=True)
        dest = os.path.join(self.root, f"copy_{len(self.stored)}_{os.path.basename(file_path)}")
        shutil.copy2(file_path, dest)
        self.stored.append(dest)
        return dest


@dataclass
class RecordingShareSurface:
    fail: bool = False
    presented: list[list[str]] = field(default_factory=list)

    def present(self, file_paths) -> None:
        if self.fail:
            raise RuntimeError("no share target")
        self.presented.append(list(file_paths))


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.fixture
def cfg(tmp_path) -> dict:
    data = cfgmod.load_config(str(tmp_path / "missing.json"))
    data["storage"] = {
        "raw_dir": str(tmp_path / "raw"),
        "photos_dir": str(tmp_path / "photos"),
        "gallery_dir": str(tmp_path / "gallery"),
        "gallery_db": str(tmp_path / "gallery.db"),
    }
    data["location"] = {"latitude": 37.7749, "longitude": -122.4194, "service_enabled": True}
    data["share"] = {"command": ""}
    return data


@pytest.fixture
def raw_dir(tmp_path) -> str:
    path = tmp_path / "raw"
    path.mkdir()
    return str(path)


@pytest.fixture
def photos_dir(tmp_path) -> str:
    return str(tmp_path / "photos")
