"""Sorting service for scanned `MediaItem` lists.

The scan order is fixed once: ascending capture time, with ties kept in
the order the items were collected.
"""

from __future__ import annotations

from collections.abc import Iterable

from core.models import MediaItem


class SortService:
    """Provides ordering utilities for `MediaItem` lists."""

    def sort_by_capture(self, items: Iterable[MediaItem]) -> list[MediaItem]:
        """Return a new list sorted by capture date ascending.

        Python's sort is stable, so items with equal timestamps keep their
        insertion order.
        """
        decorated = [(item.capture_date, pos, item) for pos, item in enumerate(items)]
        decorated.sort(key=lambda x: (x[0], x[1]))
        return [it for _, _, it in decorated]
