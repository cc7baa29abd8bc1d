"""JSON persistence for per-item triage decisions and the last cursor.

The session lives at `<root>/.sift_session.json`. Mutations are staged in
memory and flushed after a quiet period; every flush writes a temporary
file next to the target and atomically replaces it.
"""

from __future__ import annotations

from collections.abc import Iterable
import json
import os
from pathlib import Path
import tempfile
import threading
from typing import Any

from loguru import logger

from core.models import SESSION_FILE_NAME, Decision, FileState, MediaItem, SessionRecord

DEFAULT_DEBOUNCE_MS = 500
MAX_STARS = 5


def session_path(root: str | Path) -> Path:
    return Path(root) / SESSION_FILE_NAME


def _clamp_rating(value: Any) -> int:
    try:
        return max(0, min(MAX_STARS, int(value)))
    except (TypeError, ValueError):
        return 0


def record_from_dict(data: Any) -> SessionRecord:
    """Build a `SessionRecord` from decoded JSON, dropping malformed entries."""
    if not isinstance(data, dict):
        raise ValueError(f"session root must be an object, got {type(data).__name__}")
    states: dict[str, FileState] = {}
    raw_states = data.get("fileStates", {})
    if isinstance(raw_states, dict):
        for key, entry in raw_states.items():
            if not isinstance(entry, dict):
                logger.warning("Ignoring malformed session entry for {}", key)
                continue
            states[str(key)] = FileState(
                decision=Decision.parse(entry.get("decision")),
                star_rating=_clamp_rating(entry.get("starRating", 0)),
            )
    try:
        position = max(0, int(data.get("currentPosition", 0)))
    except (TypeError, ValueError):
        position = 0
    return SessionRecord(file_states=states, current_position=position)


def record_to_dict(record: SessionRecord) -> dict[str, Any]:
    return {
        "currentPosition": int(record.current_position),
        "fileStates": {
            key: {"decision": st.decision.value, "starRating": int(st.star_rating)}
            for key, st in record.file_states.items()
        },
    }


def load_session(root: str | Path) -> SessionRecord:
    """Load the session for `root`; return an empty record on any failure."""
    path = session_path(root)
    if not path.exists():
        return SessionRecord()
    try:
        with path.open("r", encoding="utf-8") as f:
            return record_from_dict(json.load(f))
    except (OSError, ValueError, TypeError) as ex:
        logger.warning("Session file unreadable, starting fresh: {} ({})", path, ex)
        return SessionRecord()


def write_session(path: str | Path, record: SessionRecord) -> None:
    """Write `record` to `path` atomically with sorted keys."""
    target = Path(path)
    payload = json.dumps(record_to_dict(record), indent=2, sort_keys=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".sift_session.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def apply_to_items(items: Iterable[MediaItem], record: SessionRecord) -> None:
    """Merge persisted decisions into freshly scanned items by identity.

    Items without a matching entry keep their defaults.
    """
    for item in items:
        state = record.file_states.get(item.id)
        if state is None:
            continue
        item.decision = state.decision
        item.star_rating = state.star_rating


class SessionStore:
    """Debounced, atomic session persistence for one root folder."""

    def __init__(self, root: str | Path, debounce_ms: int = DEFAULT_DEBOUNCE_MS) -> None:
        self._path = session_path(root)
        self._delay = max(0, int(debounce_ms)) / 1000.0
        self._lock = threading.Lock()
        # Serializes snapshot-and-write so writes land in snapshot order
        self._write_lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._dirty = False
        self._record = load_session(root)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def record(self) -> SessionRecord:
        return self._record

    @property
    def current_position(self) -> int:
        return self._record.current_position

    @property
    def has_pending_write(self) -> bool:
        return self._dirty

    def apply_to_items(self, items: Iterable[MediaItem]) -> None:
        apply_to_items(items, self._record)

    def update_item(self, item: MediaItem, identity: str | None = None) -> None:
        """Stage the item's decision and rating for the next flush.

        `identity` overrides the key, for files renamed on disk.
        """
        with self._lock:
            self._record.file_states[identity or item.id] = FileState(
                decision=item.decision, star_rating=_clamp_rating(item.star_rating)
            )
        self._schedule_save()

    def forget(self, identity: str) -> None:
        """Drop the staged state for `identity`, if any."""
        with self._lock:
            if self._record.file_states.pop(identity, None) is None:
                return
        self._schedule_save()

    def set_cursor(self, index: int) -> None:
        with self._lock:
            self._record.current_position = max(0, int(index))
        self._schedule_save()

    def flush(self) -> bool:
        """Cancel any pending timer and write now if there are staged changes."""
        with self._lock:
            self._cancel_timer()
            self._generation += 1
            if not self._dirty:
                return True
        return self._save()

    def close(self) -> None:
        self.flush()

    # Internal helpers
    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule_save(self) -> None:
        """Restart the quiet-period timer; only the last mutation's timer writes."""
        with self._lock:
            self._dirty = True
            self._cancel_timer()
            self._generation += 1
            gen = self._generation
            timer = threading.Timer(self._delay, self._on_timer, args=(gen,))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _on_timer(self, gen: int) -> None:
        with self._lock:
            if gen != self._generation or not self._dirty:
                return
            self._timer = None
        self._save()

    def _save(self) -> bool:
        with self._write_lock:
            with self._lock:
                if not self._dirty:
                    return True
                snapshot = SessionRecord(
                    file_states={
                        k: FileState(v.decision, v.star_rating)
                        for k, v in self._record.file_states.items()
                    },
                    current_position=self._record.current_position,
                )
                self._dirty = False
            try:
                self._write_record(snapshot)
            except (OSError, ValueError, TypeError) as ex:
                # Stay dirty; the next mutation's flush retries
                with self._lock:
                    self._dirty = True
                logger.error("Failed to save session {}: {}", self._path, ex)
                return False
        logger.debug("Session saved: {} ({} entries)", self._path, len(snapshot.file_states))
        return True

    def _write_record(self, record: SessionRecord) -> None:
        write_session(self._path, record)
