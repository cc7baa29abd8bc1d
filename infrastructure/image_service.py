"""Derived-image caching: thumbnail, grid and preview tiers plus zoom renders.

Each tier is an independently bounded in-memory store keyed by item
identity. Lookups never block: a miss schedules decoding on the task
runner and returns None; the caller is notified through its callback
unless the request's `CancellationToken` was cancelled first.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
import threading
from typing import Any

from loguru import logger
from PIL import Image

from core.models import MediaItem
from core.services.interfaces import CacheTier
from infrastructure.decoders import decode_image
from infrastructure.image_tasks import CancellationToken, ImageTaskRunner

ImageCallback = Callable[[str, CacheTier, Any], None]

DEFAULT_TIER_SIZES: dict[CacheTier, int] = {
    CacheTier.THUMBNAIL: 150,
    CacheTier.GRID: 440,
    CacheTier.PREVIEW: 2000,
}
DEFAULT_TIER_CAPACITIES: dict[CacheTier, int] = {
    CacheTier.THUMBNAIL: 500,
    CacheTier.GRID: 200,
    CacheTier.PREVIEW: 20,
}
DEFAULT_ZOOM_MAX_SIDE = 4000

_SETTING_PREFIX: dict[CacheTier, str] = {
    CacheTier.THUMBNAIL: "thumbnail",
    CacheTier.GRID: "grid",
    CacheTier.PREVIEW: "preview",
}


class BoundedImageStore:
    """Thread-safe capacity-bounded map that evicts least recently used entries."""

    def __init__(self, capacity: int) -> None:
        self._cap = max(1, int(capacity or 1))
        self._data: OrderedDict[str, Image.Image] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._cap

    def get(self, key: str) -> Image.Image | None:
        """Return cached image for key, moving it to the MRU position."""
        with self._lock:
            image = self._data.get(key)
            if image is not None:
                self._data.move_to_end(key)
            return image

    def put(self, key: str, image: Image.Image) -> None:
        """Insert or update `key`, evicting LRU entries when over capacity."""
        with self._lock:
            self._data[key] = image
            self._data.move_to_end(key)
            while len(self._data) > self._cap:
                self._data.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


@dataclass
class _Waiter:
    callback: ImageCallback | None
    token: CancellationToken | None


def _int_setting(settings: Any, key: str, default: int) -> int:
    if settings is None:
        return default
    try:
        return int(settings.get(key, default) or default)
    except (ValueError, TypeError):
        return default


class ImageService:
    """Three-tier derived-image cache with asynchronous population."""

    def __init__(self, settings: Any | None = None, runner: ImageTaskRunner | None = None) -> None:
        """Initialize tier sizes and capacities, optionally from settings."""
        self._sizes: dict[CacheTier, int] = {}
        self._stores: dict[CacheTier, BoundedImageStore] = {}
        for tier, prefix in _SETTING_PREFIX.items():
            self._sizes[tier] = _int_setting(
                settings, f"cache.{prefix}_size", DEFAULT_TIER_SIZES[tier]
            )
            self._stores[tier] = BoundedImageStore(
                _int_setting(settings, f"cache.{prefix}_capacity", DEFAULT_TIER_CAPACITIES[tier])
            )
        self._zoom_side = _int_setting(settings, "cache.zoom_max_side", DEFAULT_ZOOM_MAX_SIDE)
        self._runner = runner or ImageTaskRunner(
            _int_setting(settings, "cache.max_workers", 4)
        )
        self._lock = threading.Lock()
        self._in_flight: dict[str, list[_Waiter]] = {}

    # Public API
    @staticmethod
    def cache_key(identity: str, tier: CacheTier) -> str:
        return f"{identity}|{tier.value}"

    def tier_size(self, tier: CacheTier) -> int:
        return self._sizes[tier]

    def capacity(self, tier: CacheTier) -> int:
        return self._stores[tier].capacity

    def resident_count(self, tier: CacheTier) -> int:
        return len(self._stores[tier])

    def peek(self, identity: str, tier: CacheTier) -> Image.Image | None:
        """Return the cached image without scheduling anything."""
        return self._stores[tier].get(self.cache_key(identity, tier))

    def get(
        self,
        item: MediaItem,
        tier: CacheTier,
        callback: ImageCallback | None = None,
        token: CancellationToken | None = None,
    ) -> Image.Image | None:
        """Return the cached image, or schedule population and return None.

        On a miss, `callback(identity, tier, image)` is invoked from a worker
        thread once decoding finishes, unless `token` was cancelled by then.
        `image` is None when the file could not be decoded.
        """
        key = self.cache_key(item.id, tier)
        cached = self._stores[tier].get(key)
        if cached is not None:
            return cached
        self._schedule(key, item.id, item.path, tier, _Waiter(callback, token))
        return None

    def prefetch(self, item: MediaItem, tier: CacheTier = CacheTier.PREVIEW) -> None:
        """Warm `tier` for `item`; failures only cost responsiveness."""
        if self._stores[tier].get(self.cache_key(item.id, tier)) is None:
            self._schedule(self.cache_key(item.id, tier), item.id, item.path, tier, None)

    def request_zoom(
        self,
        item: MediaItem,
        callback: Callable[[str, Any], None],
        token: CancellationToken | None = None,
    ) -> None:
        """Decode a resolution-capped image for zooming; never cached."""
        if item.is_video:
            return
        identity, path = item.id, item.path

        def _run() -> None:
            if token is not None and token.cancelled:
                return
            img = self.render_zoom(path)
            if token is None or not token.cancelled:
                callback(identity, img)

        self._runner.submit(_run)

    def render_zoom(self, path: str) -> Image.Image | None:
        return decode_image(path, self._zoom_side)

    def drain(self, timeout: float | None = None) -> bool:
        return self._runner.drain(timeout)

    def close(self) -> None:
        self._runner.shutdown()
        for store in self._stores.values():
            store.clear()

    # Internal helpers
    def _schedule(
        self, key: str, identity: str, path: str, tier: CacheTier, waiter: _Waiter | None
    ) -> None:
        with self._lock:
            waiters = self._in_flight.get(key)
            if waiters is not None:
                if waiter is not None:
                    waiters.append(waiter)
                return
            self._in_flight[key] = [waiter] if waiter is not None else []
        if self._runner.submit(self._populate, key, identity, path, tier) is None:
            with self._lock:
                self._in_flight.pop(key, None)

    def _populate(self, key: str, identity: str, path: str, tier: CacheTier) -> None:
        img: Image.Image | None = None
        try:
            img = decode_image(path, self._sizes[tier])
        except Exception as ex:  # pylint: disable=broad-exception-caught
            logger.debug("Decode crashed for {}: {}", path, ex)
        if img is not None:
            self._stores[tier].put(key, img)
        else:
            logger.debug("No {} image for {}", tier.value, path)
        with self._lock:
            waiters = self._in_flight.pop(key, [])
        for waiter in waiters:
            if waiter.callback is None:
                continue
            if waiter.token is not None and waiter.token.cancelled:
                continue
            try:
                waiter.callback(identity, tier, img)
            except Exception as ex:  # pylint: disable=broad-exception-caught
                logger.error("Image callback failed for {}: {}", identity, ex)
