"""Media type detection by file extension."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

PHOTO_EXTENSIONS = frozenset(
    {".jpg", ".jpeg", ".heic", ".heif", ".png", ".webp", ".cr2", ".arw", ".nef", ".dng"}
)
VIDEO_EXTENSIONS = frozenset({".mov", ".mp4"})
RAW_EXTENSIONS = frozenset({".cr2", ".arw", ".nef", ".dng"})
HEIF_EXTENSIONS = frozenset({".heic", ".heif"})
ALL_EXTENSIONS = PHOTO_EXTENSIONS | VIDEO_EXTENSIONS


class MediaKind(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"
    UNSUPPORTED = "unsupported"


def classify(path: str) -> MediaKind:
    """Classify a file path by its extension (case-insensitive).

    Args:
        path: File path or bare file name to check

    Returns:
        MediaKind: PHOTO, VIDEO, or UNSUPPORTED
    """
    ext = Path(path).suffix.lower()
    if ext in PHOTO_EXTENSIONS:
        return MediaKind.PHOTO
    if ext in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    return MediaKind.UNSUPPORTED


def is_supported(path: str) -> bool:
    return classify(path) is not MediaKind.UNSUPPORTED


def is_video(path: str) -> bool:
    return classify(path) is MediaKind.VIDEO


def is_raw(path: str) -> bool:
    return Path(path).suffix.lower() in RAW_EXTENSIONS
