from __future__ import annotations
import asyncio, logging, os, shlex, subprocess
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .errors import GallerySaveFailed
from .gallery import MediaStore
from .models import CapturedPhoto

log = logging.getLogger(__name__)


class ShareSurface(Protocol):
    def present(self, file_paths: Sequence[str]) -> None: ...


class CommandShareSurface:
    """Hands files to a desktop opener (``xdg-open`` by default), detached."""

    def __init__(self, command: str = "xdg-open"):
        self.argv = shlex.split(command)

    def present(self, file_paths: Sequence[str]) -> None:
        for p in file_paths:
            subprocess.Popen(self.argv + [p], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
                             start_new_session=True)


class LoggingShareSurface:
    def __init__(self):
        self.presented: List[List[str]] = []

    def present(self, file_paths: Sequence[str]) -> None:
        self.presented.append(list(file_paths))
        log.info("share requested for %s", ", ".join(file_paths))


def share_surface_from_config(cfg: Dict[str, Any]) -> ShareSurface:
    command = (cfg.get("share") or {}).get("command")
    if command:
        return CommandShareSurface(command)
    return LoggingShareSurface()


class PhotoReview:
    def __init__(self, gallery: MediaStore, share_surface: ShareSurface):
        self.gallery = gallery
        self.share_surface = share_surface

    async def retake(self, photo: CapturedPhoto) -> None:
        try:
            await asyncio.to_thread(os.remove, photo.file_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            log.warning("could not delete %s: %s", photo.file_path, e)
            return
        log.info("discarded %s", photo.file_path)

    async def confirm(self, photo: CapturedPhoto) -> Optional[str]:
        try:
            stored = await asyncio.to_thread(self.gallery.persist, photo.file_path)
        except Exception as e:
            log.error("gallery save failed for %s: %s", photo.file_path, e)
            raise GallerySaveFailed(str(e) or type(e).__name__) from e
        log.info("saved %s to gallery as %s", photo.file_path, stored)
        return stored

    async def share(self, photo: CapturedPhoto) -> None:
        try:
            self.share_surface.present([photo.file_path])
        except Exception as e:
            # the share surface owns its own failure UI
            log.warning("share failed for %s: %s", photo.file_path, e)
