"""Pillow-based decoding for photos, RAW files and video frames.

HEIC/HEIF open through pillow-heif, RAW formats prefer the embedded JPEG
preview via rawpy, and videos yield their first frame via OpenCV. Every
loader returns an RGB `PIL.Image.Image` or None; none of them raise.
"""

from __future__ import annotations

import io
from pathlib import Path

import cv2
from loguru import logger
from PIL import Image, ImageOps
from pillow_heif import register_heif_opener
import rawpy

from core.services.format_service import RAW_EXTENSIONS, VIDEO_EXTENSIONS

register_heif_opener()

_RESAMPLE = Image.Resampling.LANCZOS


def _to_rgb(im: Image.Image) -> Image.Image:
    """Flatten alpha onto black and coerce to RGB."""
    if im.mode == "RGB":
        return im
    if im.mode in ("RGBA", "LA") or (im.mode == "P" and "transparency" in im.info):
        im = im.convert("RGBA")
        bg = Image.new("RGB", im.size, (0, 0, 0))
        bg.paste(im, mask=im.split()[3])
        return bg
    return im.convert("RGB")


def _bound(im: Image.Image, max_side: int) -> Image.Image:
    if max_side and max_side > 0 and max(im.size) > max_side:
        im.thumbnail((max_side, max_side), _RESAMPLE)
    return im


def load_raw_preview(path: str) -> Image.Image | None:
    """Return the embedded preview of a RAW file, else a half-size development."""
    try:
        with rawpy.imread(path) as raw:
            try:
                thumb = raw.extract_thumb()
                if thumb.format == rawpy.ThumbFormat.JPEG:
                    im = Image.open(io.BytesIO(thumb.data))
                    im.load()
                    return ImageOps.exif_transpose(im)
                if thumb.format == rawpy.ThumbFormat.BITMAP:
                    return Image.fromarray(thumb.data)
            except (rawpy.LibRawNoThumbnailError, rawpy.LibRawUnsupportedThumbnailError):
                logger.debug("No embedded thumbnail in {}", path)
            rgb = raw.postprocess(half_size=True, use_camera_wb=True, output_bps=8)
            return Image.fromarray(rgb)
    except (rawpy.LibRawError, OSError, ValueError) as ex:
        logger.debug("rawpy decode failed for {}: {}", path, ex)
        return None


def load_video_frame(path: str) -> Image.Image | None:
    """Return the first frame of a video, rotated per its display matrix."""
    cap = cv2.VideoCapture(path)
    try:
        # Have the backend apply the container's rotation metadata
        cap.set(cv2.CAP_PROP_ORIENTATION_AUTO, 1)
        ok, frame = cap.read()
    except cv2.error as ex:
        logger.debug("OpenCV read failed for {}: {}", path, ex)
        return None
    finally:
        cap.release()
    if not ok or frame is None:
        return None
    return Image.fromarray(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))


def decode_image(path: str, max_side: int) -> Image.Image | None:
    """Decode `path` into an RGB image whose longest side is at most `max_side`."""
    ext = Path(path).suffix.lower()
    if ext in VIDEO_EXTENSIONS:
        im = load_video_frame(path)
        return _bound(im, max_side) if im is not None else None
    if ext in RAW_EXTENSIONS:
        im = load_raw_preview(path)
        return _bound(_to_rgb(im), max_side) if im is not None else None
    try:
        with Image.open(path) as src:
            # draft() lets the JPEG decoder downscale while decoding
            if max_side and max_side > 0:
                src.draft("RGB", (max_side, max_side))
            im = ImageOps.exif_transpose(src)
            im.load()
            return _bound(_to_rgb(im), max_side)
    except (OSError, ValueError, Image.DecompressionBombError) as ex:
        logger.debug("Pillow load failed for {}: {}", path, ex)
        return None
