"""Filter-aware cursor navigation decoupled from any UI toolkit.

All functions are pure: they take the ordered item list and an index and
return the index to move to, or None when there is nowhere to go.
"""

from __future__ import annotations

from collections.abc import Sequence

from core.models import Decision, GalleryFilter, MediaItem

_FILTER_DECISION: dict[GalleryFilter, Decision] = {
    GalleryFilter.UNDECIDED: Decision.UNDECIDED,
    GalleryFilter.KEPT: Decision.KEPT,
    GalleryFilter.REJECTED: Decision.REJECTED,
}


def matches_filter(item: MediaItem, active: GalleryFilter) -> bool:
    """Return True if `item` is visible under the `active` filter."""
    if active is GalleryFilter.ALL:
        return True
    return item.decision is _FILTER_DECISION[active]


def next_matching_index(
    items: Sequence[MediaItem], index: int, active: GalleryFilter
) -> int | None:
    """Return the next index after `index` matching `active`.

    With the ALL filter this is a plain +1 step clamped to the list end.
    """
    if active is GalleryFilter.ALL:
        return index + 1 if index + 1 < len(items) else None
    for i in range(index + 1, len(items)):
        if matches_filter(items[i], active):
            return i
    return None


def previous_matching_index(
    items: Sequence[MediaItem], index: int, active: GalleryFilter
) -> int | None:
    """Return the previous index before `index` matching `active`."""
    if active is GalleryFilter.ALL:
        return index - 1 if 0 < index <= len(items) else None
    for i in range(min(index, len(items)) - 1, -1, -1):
        if matches_filter(items[i], active):
            return i
    return None


def matching_indices(
    items: Sequence[MediaItem], active: GalleryFilter
) -> list[tuple[int, MediaItem]]:
    """Return `(index, item)` pairs visible under `active`, in list order."""
    return [(i, it) for i, it in enumerate(items) if matches_filter(it, active)]
