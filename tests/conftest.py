"""Shared fixtures: synthetic media files and engine collaborators."""

from __future__ import annotations

from datetime import datetime
import os
from pathlib import Path
from typing import Any

from PIL import Image
import pytest

from core.models import MediaItem
from core.services.interfaces import CacheTier


def make_image(
    path: Path,
    size: tuple[int, int] = (64, 48),
    taken: str | None = None,
    orientation: int | None = None,
    mtime: datetime | None = None,
    color: tuple[int, int, int] = (200, 40, 40),
) -> Path:
    """Write a small image, optionally carrying EXIF DateTimeOriginal/Orientation."""
    path.parent.mkdir(parents=True, exist_ok=True)
    img = Image.new("RGB", size, color)
    exif = Image.Exif()
    if taken:
        exif[36867] = taken
        exif[306] = taken
    if orientation:
        exif[274] = orientation
    if path.suffix.lower() in {".jpg", ".jpeg"}:
        img.save(path, "JPEG", exif=exif.tobytes())
    else:
        img.save(path)
    if mtime is not None:
        ts = mtime.timestamp()
        os.utime(path, (ts, ts))
    return path


class FakeCache:
    """Records prefetch/get calls without decoding anything."""

    def __init__(self) -> None:
        self.prefetched: list[str] = []
        self.requests: list[tuple[str, CacheTier, Any]] = []
        self.closed = False

    def get(self, item: MediaItem, tier: CacheTier, callback=None, token=None):
        self.requests.append((item.id, tier, token))
        return None

    def prefetch(self, item: MediaItem, tier: CacheTier = CacheTier.PREVIEW) -> None:
        self.prefetched.append(item.id)

    def request_zoom(self, item: MediaItem, callback, token=None) -> None:
        self.requests.append((item.id, CacheTier.PREVIEW, token))

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def media_root(tmp_path: Path) -> Path:
    root = tmp_path / "shoot"
    root.mkdir()
    return root
