"""ViewModel owning triage state: items, cursor, filter, counts and undo.

The engine is single-writer: every command must be called from the thread
that owns it. Background work (metadata extraction, image decoding) runs
on worker pools and only hands finished values back: a completed scan
replaces the item list in one step, a completed decode becomes a cache
entry.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from loguru import logger

from core.models import (
    Decision,
    GalleryFilter,
    MediaItem,
    ScanProgress,
    StateChange,
    UndoAction,
    UndoKind,
)
from core.services.interfaces import CacheTier, IImageCache, ISessionStore, MoveResult
from core.services.navigation_service import (
    matching_indices,
    next_matching_index,
    previous_matching_index,
)
from core.services.undo_service import DEFAULT_MAX_DEPTH, UndoStack
from infrastructure.image_service import ImageService
from infrastructure.image_tasks import CancellationToken
from infrastructure.move_service import MoveService
from infrastructure.scanner import MediaScanner, relative_id
from infrastructure.session_store import DEFAULT_DEBOUNCE_MS, SessionStore

Listener = Callable[[StateChange], None]

MAX_STARS = 5


class TriageEngine:
    """Main triage view-model.

    Exposes observable state (`items`, `current_index`, `is_loading`,
    `scan_progress`, `active_filter`, counts, `current_item`) and commands
    (`go_to_next`, `go_to_previous`, `go_to`, `keep_current`,
    `reject_current`, `set_rating`, `undo`, `set_filter`). Listeners
    registered with `subscribe` receive a `StateChange` after each change.
    """

    def __init__(
        self,
        root: str | Path,
        *,
        scanner: MediaScanner | None = None,
        session_store: ISessionStore | None = None,
        image_cache: IImageCache | None = None,
        move_service: MoveService | None = None,
        undo_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        """Create an engine for `root`.

        Args:
            root: Folder to triage; `_rejected/` and the session file live inside it.
            scanner: Scanner producing the ordered item list.
            session_store: Debounced persistence for decisions and the cursor.
            image_cache: Derived-image cache with `get`, `prefetch`,
                `request_zoom` and `close` (defaults to `ImageService`).
            move_service: Performs reject/keep/undo file moves.
            undo_depth: Maximum number of undoable actions kept.
        """
        self.root = Path(root)
        self._scanner = scanner or MediaScanner(self.root)
        self._session = session_store or SessionStore(self.root)
        self._cache = image_cache if image_cache is not None else ImageService()
        self._mover = move_service or MoveService(self.root)
        self._undo = UndoStack(undo_depth)

        self.items: list[MediaItem] = []
        self.current_index: int = 0
        self.is_loading: bool = False
        self.scan_progress: ScanProgress | None = None
        self.active_filter: GalleryFilter = GalleryFilter.ALL

        self._kept_count = 0
        self._rejected_count = 0
        self._index_by_id: dict[str, int] = {}
        self._listeners: list[Listener] = []
        self._preview_token: CancellationToken | None = None

    @classmethod
    def from_settings(cls, root: str | Path, settings: Any) -> TriageEngine:
        """Build an engine and its collaborators from a `JsonSettings`."""
        return cls(
            root,
            scanner=MediaScanner(
                root,
                max_workers=int(settings.get("scan.max_workers", 8)),
                progress_batch=int(settings.get("scan.progress_batch", 50)),
            ),
            session_store=SessionStore(
                root, debounce_ms=int(settings.get("session.debounce_ms", DEFAULT_DEBOUNCE_MS))
            ),
            image_cache=ImageService(settings),
            undo_depth=int(settings.get("undo.max_depth", DEFAULT_MAX_DEPTH)),
        )

    # Observable state
    @property
    def current_item(self) -> MediaItem | None:
        if not self.items or not 0 <= self.current_index < len(self.items):
            return None
        return self.items[self.current_index]

    @property
    def kept_count(self) -> int:
        return self._kept_count

    @property
    def rejected_count(self) -> int:
        return self._rejected_count

    @property
    def total_count(self) -> int:
        return len(self.items)

    @property
    def remaining_count(self) -> int:
        return len(self.items) - self._kept_count - self._rejected_count

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    def filter_count(self, active: GalleryFilter) -> int:
        """Number of items visible under `active`."""
        return {
            GalleryFilter.ALL: self.total_count,
            GalleryFilter.UNDECIDED: self.remaining_count,
            GalleryFilter.KEPT: self._kept_count,
            GalleryFilter.REJECTED: self._rejected_count,
        }[active]

    def indices_for_filter(self, active: GalleryFilter) -> list[tuple[int, MediaItem]]:
        return matching_indices(self.items, active)

    def item_by_id(self, identity: str) -> MediaItem | None:
        idx = self._index_by_id.get(identity)
        if idx is None or idx >= len(self.items):
            return None
        return self.items[idx]

    # Notifications
    def subscribe(self, listener: Listener) -> Listener:
        self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(
        self,
        kind: str,
        index: int | None = None,
        identity: str | None = None,
        detail: str | None = None,
    ) -> None:
        change = StateChange(kind=kind, index=index, identity=identity, detail=detail)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as ex:  # pylint: disable=broad-exception-caught
                logger.error("State listener failed on {}: {}", kind, ex)

    # Scanning
    def start_scan(self) -> None:
        """Scan the root folder and replace the item list with the result."""
        self.is_loading = True
        self.scan_progress = None
        items = self._scanner.scan(self._on_scan_progress)
        self.load_items(items)

    def _on_scan_progress(self, progress: ScanProgress) -> None:
        self.scan_progress = progress
        self._notify("scan_progress", detail=f"{progress.processed}/{progress.total}")

    def load_items(self, items: Sequence[MediaItem]) -> None:
        """Install a freshly scanned, already ordered item list.

        Persisted decisions are merged by identity, counts are recomputed,
        the undo history is cleared and the saved cursor is restored.
        """
        self.items = list(items)
        self._rebuild_index()
        self._session.apply_to_items(self.items)
        self._recompute_counts()
        self._undo.clear()
        self.current_index = min(self._session.current_position, max(len(self.items) - 1, 0))
        self.is_loading = False
        logger.info(
            "Loaded {} items ({} kept, {} rejected), resuming at {}",
            self.total_count,
            self._kept_count,
            self._rejected_count,
            self.current_index,
        )
        self._notify("scan_finished", index=self.current_index)
        self._prefetch_adjacent()

    # Navigation
    def go_to_next(self) -> None:
        nxt = next_matching_index(self.items, self.current_index, self.active_filter)
        if nxt is not None:
            self._move_cursor(nxt)

    def go_to_previous(self) -> None:
        prev = previous_matching_index(self.items, self.current_index, self.active_filter)
        if prev is not None:
            self._move_cursor(prev)

    def go_to(self, index: int) -> None:
        """Jump to an absolute index; out-of-range values are ignored."""
        if 0 <= index < len(self.items):
            self._move_cursor(index)

    def set_filter(self, active: GalleryFilter) -> None:
        if active is self.active_filter:
            return
        self.active_filter = active
        self._notify("filter", index=self.current_index, detail=active.value)

    def _move_cursor(self, index: int) -> None:
        if index != self.current_index and self._preview_token is not None:
            self._preview_token.cancel()
            self._preview_token = None
        self.current_index = index
        self._session.set_cursor(index)
        self._notify("cursor", index=index, identity=self.items[index].id)
        self._prefetch_adjacent()

    # Triage actions
    def keep_current(self) -> None:
        """Mark the current item kept, restoring it from `_rejected/` if needed."""
        item = self.current_item
        if item is None:
            return
        idx = self.current_index
        previous = item.decision
        source = destination = None
        if previous is Decision.REJECTED and item.is_in_rejected_folder:
            result = self._mover.move_to_root(item.path)
            if self._apply_move(idx, item, result):
                source, destination = result.source, result.destination

        self._undo.push(
            UndoAction(
                item_id=item.id,
                kind=UndoKind.KEEP,
                previous_decision=previous,
                source_path=source,
                destination_path=destination,
                item_index=idx,
            )
        )
        self._set_decision(idx, item, Decision.KEPT)
        self.go_to_next()

    def reject_current(self) -> None:
        """Move the current item into `_rejected/` and mark it rejected."""
        item = self.current_item
        if item is None:
            return
        idx = self.current_index
        previous = item.decision
        source = destination = None
        if not item.is_in_rejected_folder:
            result = self._mover.move_to_rejected(item.path)
            if self._apply_move(idx, item, result):
                source, destination = result.source, result.destination

        self._undo.push(
            UndoAction(
                item_id=item.id,
                kind=UndoKind.REJECT,
                previous_decision=previous,
                source_path=source,
                destination_path=destination,
                item_index=idx,
            )
        )
        self._set_decision(idx, item, Decision.REJECTED)
        self.go_to_next()

    def set_rating(self, rating: int) -> None:
        """Set 0-5 stars on the current item; only kept items take a rating."""
        item = self.current_item
        if item is None or item.decision is not Decision.KEPT:
            return
        clamped = max(0, min(MAX_STARS, int(rating)))
        self._undo.push(
            UndoAction(
                item_id=item.id,
                kind=UndoKind.RATE,
                previous_decision=item.decision,
                previous_rating=item.star_rating,
                item_index=self.current_index,
            )
        )
        item.star_rating = clamped
        self._persist(item)
        self._notify("rating", index=self.current_index, identity=item.id)

    def undo(self) -> None:
        """Reverse the most recent action and jump to the affected item."""
        action = self._undo.pop()
        if action is None:
            return
        idx = self._undo_target(action)
        if idx is None:
            logger.warning("Undo target {} no longer loaded", action.item_id)
            return
        item = self.items[idx]

        if (
            action.source_path is not None
            and action.destination_path is not None
            and item.path == action.destination_path
        ):
            self._apply_move(idx, item, self._mover.move(item.path, action.source_path))
        if action.kind is UndoKind.RATE:
            item.star_rating = action.previous_rating

        self._set_decision(idx, item, action.previous_decision, notify=False)
        self._notify("undo", index=idx, identity=item.id, detail=action.kind.value)
        self._move_cursor(idx)

    def _undo_target(self, action: UndoAction) -> int | None:
        idx = action.item_index
        if idx is not None and 0 <= idx < len(self.items) and self.items[idx].id == action.item_id:
            return idx
        return self._index_by_id.get(action.item_id)

    # Images
    def request_preview(
        self,
        tier: CacheTier = CacheTier.PREVIEW,
        callback: Callable[[str, CacheTier, Any], None] | None = None,
    ) -> Any:
        """Fetch the current item's image for `tier`.

        Returns the cached image, or None after scheduling a load whose
        result reaches `callback` only if the cursor has not moved since.
        """
        item = self.current_item
        if item is None:
            return None
        if self._preview_token is None or self._preview_token.identity != item.id:
            if self._preview_token is not None:
                self._preview_token.cancel()
            self._preview_token = CancellationToken(item.id)
        return self._cache.get(item, tier, callback, self._preview_token)

    def request_zoom(self, callback: Callable[[str, Any], None]) -> None:
        """Render the current photo at zoom resolution; dropped if the cursor moves."""
        item = self.current_item
        if item is None or item.is_video:
            return
        if self._preview_token is None or self._preview_token.identity != item.id:
            self._preview_token = CancellationToken(item.id)
        self._cache.request_zoom(item, callback, self._preview_token)

    def _prefetch_adjacent(self) -> None:
        for idx in (self.current_index - 1, self.current_index + 1, self.current_index + 2):
            if 0 <= idx < len(self.items):
                try:
                    self._cache.prefetch(self.items[idx], CacheTier.PREVIEW)
                except Exception as ex:  # pylint: disable=broad-exception-caught
                    logger.debug("Prefetch failed for {}: {}", self.items[idx].id, ex)

    # Lifecycle
    def close(self) -> None:
        """Flush the session and stop background image work."""
        if self._preview_token is not None:
            self._preview_token.cancel()
        self._session.flush()
        self._cache.close()

    # Index & counts
    def _rebuild_index(self) -> None:
        self._index_by_id = {}
        for i, item in enumerate(self.items):
            first = self._index_by_id.setdefault(item.id, i)
            if first != i:
                logger.warning(
                    "Duplicate identity {} at {} and {}: {} / {}",
                    item.id,
                    first,
                    i,
                    self.items[first].path,
                    item.path,
                )

    def _recompute_counts(self) -> None:
        self._kept_count = sum(1 for it in self.items if it.decision is Decision.KEPT)
        self._rejected_count = sum(1 for it in self.items if it.decision is Decision.REJECTED)

    def _update_counts(self, old: Decision, new: Decision) -> None:
        if old is new:
            return
        if old is Decision.KEPT:
            self._kept_count -= 1
        elif old is Decision.REJECTED:
            self._rejected_count -= 1
        if new is Decision.KEPT:
            self._kept_count += 1
        elif new is Decision.REJECTED:
            self._rejected_count += 1

    def _set_decision(
        self, index: int, item: MediaItem, decision: Decision, notify: bool = True
    ) -> None:
        self._update_counts(item.decision, decision)
        item.decision = decision
        self._persist(item)
        if notify:
            self._notify("decision", index=index, identity=item.id)

    def _persist(self, item: MediaItem) -> None:
        """Stage the item's state under its identity and its on-disk name.

        A collision-renamed file (`_rejected/a_1.jpg`) is rescanned as
        `a_1.jpg`, so its state is also stored under that key.
        """
        self._session.update_item(item)
        on_disk = relative_id(self.root, item.path)
        if on_disk != item.id:
            self._session.update_item(item, identity=on_disk)

    def _apply_move(self, index: int, item: MediaItem, result: MoveResult) -> bool:
        """Record a move outcome on `item`; on failure the decision still proceeds."""
        if result.success:
            old_key = relative_id(self.root, item.path)
            item.path = result.destination
            item.move_error = None
            if old_key != item.id and old_key != relative_id(self.root, item.path):
                self._session.forget(old_key)
            return True
        item.move_error = result.reason or "move failed"
        logger.error("Move failed for {}: {}", item.id, item.move_error)
        self._notify("move_failed", index=index, identity=item.id, detail=item.move_error)
        return False
