"""Core service interfaces and shared data structures.

This module defines simple dataclasses that represent move outcomes,
extracted metadata and cache tiers used across the infrastructure and
engine layers.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from core.models import MediaItem


@dataclass
class MoveResult:
    """Outcome of a single file move.

    Attributes:
        success: True if the file now lives at `destination`.
        source: Path the move started from.
        destination: Path the move targeted (after collision disambiguation).
        reason: Failure description when `success` is False.
    """

    success: bool
    source: str
    destination: str
    reason: str | None = None


@dataclass
class MediaMetadata:
    """Capture time and display aspect ratio extracted from one file.

    Attributes:
        capture_date: Embedded capture time, else filesystem modification time.
        aspect_ratio: Width / height after orientation or rotation is applied.
    """

    capture_date: datetime
    aspect_ratio: float = 1.0


class CacheTier(str, Enum):
    """Independently bounded derived-image resolutions."""

    THUMBNAIL = "thumb"
    GRID = "grid"
    PREVIEW = "preview"


class ISessionStore(Protocol):
    """Interface the engine uses to persist decisions and the cursor."""

    @property
    def current_position(self) -> int:
        """Return the last persisted cursor position."""
        raise NotImplementedError

    def apply_to_items(self, items: Iterable[MediaItem]) -> None:
        """Overlay persisted decisions and ratings onto freshly scanned items."""
        raise NotImplementedError

    def update_item(self, item: MediaItem, identity: str | None = None) -> None:
        """Stage a write of the item's decision and rating."""
        raise NotImplementedError

    def forget(self, identity: str) -> None:
        """Stage removal of the state stored under `identity`."""
        raise NotImplementedError

    def set_cursor(self, index: int) -> None:
        """Stage a write of the last-viewed position."""
        raise NotImplementedError

    def flush(self) -> bool:
        """Write any staged changes immediately."""
        raise NotImplementedError


class IImageCache(Protocol):
    """Interface the engine uses to fetch and prefetch derived images."""

    def get(
        self,
        item: MediaItem,
        tier: CacheTier,
        callback: Callable[[str, CacheTier, Any], None] | None = None,
        token: Any = None,
    ) -> Any:
        """Return the cached image or schedule population and return None."""
        raise NotImplementedError

    def prefetch(self, item: MediaItem, tier: CacheTier) -> None:
        """Schedule population without a result callback."""
        raise NotImplementedError

    def request_zoom(
        self, item: MediaItem, callback: Callable[[str, Any], None], token: Any = None
    ) -> None:
        """Render an uncached zoom image and hand it to `callback`."""
        raise NotImplementedError

    def close(self) -> None:
        """Stop background work and drop cached images."""
        raise NotImplementedError
