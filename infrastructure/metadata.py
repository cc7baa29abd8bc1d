"""Capture-time and aspect-ratio extraction for photos and videos.

This module centralizes metadata extraction so the scanner can depend on a
single behavior. It uses best-effort parsing and never raises on bad input:
a missing embedded timestamp falls back to the filesystem modification
time, and undeterminable dimensions yield an aspect ratio of 1.0.
"""

from __future__ import annotations

from datetime import datetime
import io
import json
import os
import re
import subprocess
from typing import Any

from loguru import logger
from PIL import Image
from pillow_heif import register_heif_opener
import rawpy

from core.services.format_service import is_raw, is_video
from core.services.interfaces import MediaMetadata

register_heif_opener()

EXIF_DT_FMT = "%Y:%m:%d %H:%M:%S"
EXIF_IFD_POINTER = 0x8769
TAG_DATETIME_ORIGINAL = 36867
TAG_DATETIME = 306
TAG_ORIENTATION = 274

FFPROBE_TIMEOUT_S = 15

_TZ_BASIC = re.compile(r"([+-]\d{2})(\d{2})$")


def get_filesystem_modified_datetime(path: str) -> datetime:
    """Return the file's modification time, or `datetime.min` if stat fails."""
    try:
        return datetime.fromtimestamp(os.path.getmtime(path))
    except (OSError, ValueError, OverflowError) as ex:
        logger.debug("getmtime failed for {}: {}", path, ex)
        return datetime.min


def parse_exif_datetime(value: Any) -> datetime | None:
    """Parse an EXIF "YYYY:MM:DD HH:MM:SS" string; return None on failure."""
    if not value:
        return None
    text = str(value).strip().rstrip("\x00")
    try:
        return datetime.strptime(text[:19], EXIF_DT_FMT)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("/", "-"))
    except ValueError:
        return None


def parse_iso_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp as written by video containers.

    Aware values are converted to naive local time so they sort alongside
    EXIF timestamps, which carry no zone.
    """
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _TZ_BASIC.sub(r"\1:\2", text)
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt


def _exif_datetime_from_image(im: Image.Image) -> datetime | None:
    exif = im.getexif()
    if not exif:
        return None
    # DateTimeOriginal lives in the Exif sub-IFD; DateTime in IFD0
    val = exif.get_ifd(EXIF_IFD_POINTER).get(TAG_DATETIME_ORIGINAL) or exif.get(
        TAG_DATETIME_ORIGINAL
    )
    return parse_exif_datetime(val) or parse_exif_datetime(exif.get(TAG_DATETIME))


def get_exif_datetime_original(path: str) -> datetime | None:
    """Extract EXIF DateTimeOriginal (else DateTime) via Pillow.

    RAW files are read through the embedded JPEG preview's EXIF block.
    Returns None when no timestamp is present or the file is unreadable.
    """
    if is_raw(path):
        try:
            with rawpy.imread(path) as raw:
                thumb = raw.extract_thumb()
                if thumb.format != rawpy.ThumbFormat.JPEG:
                    return None
                with Image.open(io.BytesIO(thumb.data)) as im:
                    return _exif_datetime_from_image(im)
        except (rawpy.LibRawError, OSError, ValueError) as ex:
            logger.debug("rawpy EXIF read failed for {}: {}", path, ex)
            return None
    try:
        with Image.open(path) as im:
            return _exif_datetime_from_image(im)
    except (OSError, ValueError, TypeError, Image.DecompressionBombError) as ex:
        logger.debug("EXIF read failed for {}: {}", path, ex)
        return None


def _ratio(width: float, height: float, swap: bool) -> float:
    if width <= 0 or height <= 0:
        return 1.0
    return height / width if swap else width / height


def get_image_aspect_ratio(path: str) -> float:
    """Return width / height without decoding pixels.

    EXIF orientations 5-8 rotate by 90 degrees and swap the ratio.
    """
    if is_raw(path):
        try:
            with rawpy.imread(path) as raw:
                sizes = raw.sizes
                # LibRaw flip: 5 = 90 CCW, 6 = 90 CW
                return _ratio(sizes.width, sizes.height, sizes.flip in (5, 6))
        except (rawpy.LibRawError, OSError, ValueError) as ex:
            logger.debug("rawpy size read failed for {}: {}", path, ex)
            return 1.0
    try:
        with Image.open(path) as im:
            width, height = im.size
            orientation = im.getexif().get(TAG_ORIENTATION, 1)
            return _ratio(width, height, orientation in (5, 6, 7, 8))
    except (OSError, ValueError, TypeError, Image.DecompressionBombError) as ex:
        logger.debug("Image size read failed for {}: {}", path, ex)
        return 1.0


def _run_ffprobe(path: str) -> dict[str, Any] | None:
    try:
        result = subprocess.run(
            [
                "ffprobe",
                "-v",
                "quiet",
                "-print_format",
                "json",
                "-show_format",
                "-show_streams",
                "-select_streams",
                "v:0",
                path,
            ],
            capture_output=True,
            text=True,
            check=False,
            timeout=FFPROBE_TIMEOUT_S,
        )
    except (OSError, subprocess.TimeoutExpired) as ex:
        logger.debug("ffprobe failed for {}: {}", path, ex)
        return None
    if result.returncode != 0:
        return None
    try:
        data = json.loads(result.stdout or "{}")
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _stream_rotation(stream: dict[str, Any]) -> int:
    """Return the video track's rotation in degrees from tags or the display matrix."""
    for side in stream.get("side_data_list") or []:
        if isinstance(side, dict) and "rotation" in side:
            try:
                return int(float(side["rotation"]))
            except (TypeError, ValueError):
                continue
    try:
        return int(float((stream.get("tags") or {}).get("rotate", 0)))
    except (TypeError, ValueError):
        return 0


def video_metadata_from_probe(data: dict[str, Any]) -> tuple[datetime | None, float]:
    """Pull creation time and rotation-corrected aspect ratio from ffprobe JSON."""
    streams = data.get("streams") or [{}]
    stream = streams[0] if isinstance(streams[0], dict) else {}
    fmt_tags = (data.get("format") or {}).get("tags") or {}
    stream_tags = stream.get("tags") or {}

    created = None
    for raw_value in (
        fmt_tags.get("com.apple.quicktime.creationdate"),
        fmt_tags.get("creation_time"),
        stream_tags.get("creation_time"),
    ):
        created = parse_iso_datetime(raw_value)
        if created is not None:
            break

    try:
        width = float(stream.get("width") or 0)
        height = float(stream.get("height") or 0)
    except (TypeError, ValueError):
        width = height = 0.0
    rotated = abs(_stream_rotation(stream)) % 180 == 90
    return created, _ratio(width, height, rotated)


def probe_video(path: str) -> tuple[datetime | None, float]:
    """Return (creation time, aspect ratio) for a video via ffprobe."""
    data = _run_ffprobe(path)
    if data is None:
        return None, 1.0
    return video_metadata_from_probe(data)


def extract_metadata(path: str) -> MediaMetadata:
    """Extract capture time and aspect ratio for any supported file."""
    if is_video(path):
        created, ratio = probe_video(path)
    else:
        created = get_exif_datetime_original(path)
        ratio = get_image_aspect_ratio(path)
    if created is None:
        created = get_filesystem_modified_datetime(path)
    return MediaMetadata(capture_date=created, aspect_ratio=ratio)
