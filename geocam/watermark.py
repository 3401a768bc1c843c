from __future__ import annotations
import asyncio, functools, io, logging, os
from typing import Any, Dict, Optional, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from .errors import DecodeFailed, EncodeFailed, WatermarkIOFailed
from .models import CapturedPhoto, GeoFix
from .naming import MillisStamp, stamped_path

log = logging.getLogger(__name__)

_DEFAULT_FONT = "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"


def hex_to_rgb(s: str) -> Tuple[int, int, int]:
    s = s.strip()
    if s.startswith("#"): s = s[1:]
    if len(s) == 3:
        s = "".join(ch*2 for ch in s)
    r = int(s[0:2], 16); g = int(s[2:4], 16); b = int(s[4:6], 16)
    return (r, g, b)


@functools.lru_cache(maxsize=8)
def _load_font(path: Optional[str], size: int):
    if path:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            log.debug("font %s not usable, falling back to default", path)
    return ImageFont.load_default(size=size)


def watermark_text(fix: GeoFix) -> str:
    return f"Lat: {fix.latitude}\n\nLong: {fix.longitude}"


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        log.warning("could not remove %s: %s", path, e)


class WatermarkPipeline:
    """Burns the location text into a raw capture and writes a PNG next to
    the other tagged photos.

    The text block is anchored bottom-right: its right edge sits ``inset_x``
    pixels from the right border and its bottom ``inset_y`` pixels from the
    bottom border. Output dimensions always match the input.
    """

    def __init__(self, photos_dir: str, *, font_path: Optional[str] = _DEFAULT_FONT,
                 font_size: int = 24, inset_x: int = 24, inset_y: int = 24,
                 fill: str = "#FFFFFF", stroke: str = "#000000", stroke_width: int = 2,
                 keep_raw: bool = False, stamp: MillisStamp | None = None):
        self.photos_dir = photos_dir
        self.font_path = font_path
        self.font_size = max(1, int(font_size))
        self.inset_x = max(0, int(inset_x))
        self.inset_y = max(0, int(inset_y))
        self.fill = hex_to_rgb(fill)
        self.stroke = hex_to_rgb(stroke)
        self.stroke_width = max(0, int(stroke_width))
        self.keep_raw = keep_raw
        self._stamp = stamp or MillisStamp()

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], stamp: MillisStamp | None = None) -> "WatermarkPipeline":
        wm = cfg.get("watermark", {})
        st = cfg.get("storage", {})
        return cls(
            st["photos_dir"],
            font_path=wm.get("font_path") or None,
            font_size=int(wm.get("font_size", 24)),
            inset_x=int(wm.get("inset_x", 24)),
            inset_y=int(wm.get("inset_y", 24)),
            fill=wm.get("fill", "#FFFFFF"),
            stroke=wm.get("stroke", "#000000"),
            stroke_width=int(wm.get("stroke_width", 2)),
            keep_raw=bool(wm.get("keep_raw", False)),
            stamp=stamp,
        )

    def tag_photo(self, raw_path: str, fix: GeoFix) -> str:
        path, _ = self._tag(raw_path, fix)
        return path

    def tag(self, photo: CapturedPhoto, fix: GeoFix) -> CapturedPhoto:
        path, millis = self._tag(photo.file_path, fix)
        return CapturedPhoto(file_path=path, created_at_millis=millis)

    async def tag_photo_async(self, raw_path: str, fix: GeoFix) -> str:
        return await asyncio.to_thread(self.tag_photo, raw_path, fix)

    def render(self, im: Image.Image, fix: GeoFix) -> Image.Image:
        """Draw the watermark onto ``im`` in place and return it."""
        font = _load_font(self.font_path, self.font_size)
        draw = ImageDraw.Draw(im)
        text = watermark_text(fix)
        W, H = im.size
        left, top, right, bottom = draw.multiline_textbbox((0, 0), text, font=font, stroke_width=self.stroke_width)
        x = max(-left, W - self.inset_x - right)
        y = max(-top, H - self.inset_y - bottom)
        draw.multiline_text((x, y), text, font=font, fill=self.fill,
                            stroke_width=self.stroke_width, stroke_fill=self.stroke)
        return im

    def _tag(self, raw_path: str, fix: GeoFix) -> Tuple[str, int]:
        try:
            with open(raw_path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise WatermarkIOFailed(f"cannot read {raw_path}: {e}") from e

        try:
            im = Image.open(io.BytesIO(data))
            im.load()
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
            raise DecodeFailed(f"cannot decode {raw_path}: {e}") from e
        if im.mode not in ("RGB", "RGBA"):
            im = im.convert("RGB")

        self.render(im, fix)

        buf = io.BytesIO()
        try:
            im.save(buf, format="PNG")
        except (OSError, ValueError) as e:
            raise EncodeFailed(f"cannot encode PNG: {e}") from e

        try:
            path, millis = stamped_path(self.photos_dir, "photo", ".png", self._stamp)
        except OSError as e:
            raise WatermarkIOFailed(f"photos dir unavailable: {e}") from e
        tmp = path + ".tmp"
        try:
            with open(tmp, "wb") as f:
                f.write(buf.getvalue())
            os.replace(tmp, path)
        except OSError as e:
            _discard(tmp)
            raise WatermarkIOFailed(f"cannot write {path}: {e}") from e

        if not self.keep_raw:
            _discard(raw_path)
        log.info("tagged %s -> %s (%dx%d)", raw_path, path, im.size[0], im.size[1])
        return path, millis


def apply_location_overlay(frame_rgb: np.ndarray, fix: GeoFix | None, font_size: int = 14,
                           margin: int = 20) -> np.ndarray:
    """frame_rgb: HxWx3 uint8, returns same shape with the live Lat/Long drawn bottom-left."""
    if fix is None:
        return frame_rgb

    img = Image.fromarray(frame_rgb).convert("RGBA")
    lay = Image.new("RGBA", img.size, (0,0,0,0))
    draw = ImageDraw.Draw(lay)
    font = _load_font(_DEFAULT_FONT, font_size)
    content = f"Lat: {fix.latitude:.4f}\nLong: {fix.longitude:.4f}"
    bbox = draw.multiline_textbbox((0, 0), content, font=font, spacing=4)
    x = margin
    y = max(0, img.size[1] - margin - bbox[3])
    draw.multiline_text((x, y), content, fill=(255,255,255,255), font=font, spacing=4,
                        stroke_width=2, stroke_fill=(0,0,0,160))

    out = Image.alpha_composite(img, lay).convert("RGB")
    return np.array(out, dtype=np.uint8)
