"""Core domain models for triage items, decisions, undo records and sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

REJECTED_DIR_NAME = "_rejected"
SESSION_FILE_NAME = ".sift_session.json"


class Decision(str, Enum):
    """Triage outcome for a single item."""

    UNDECIDED = "undecided"
    KEPT = "kept"
    REJECTED = "rejected"

    @classmethod
    def parse(cls, value: object) -> Decision:
        """Return the member for `value`, falling back to UNDECIDED."""
        try:
            return cls(str(value))
        except ValueError:
            return cls.UNDECIDED


class GalleryFilter(str, Enum):
    """Navigation scope restricting which items next/previous visit."""

    ALL = "all"
    UNDECIDED = "undecided"
    KEPT = "kept"
    REJECTED = "rejected"


@dataclass
class MediaItem:
    """A single photo or video discovered by the scanner.

    `id` is the path relative to the root with the reject-folder segment
    stripped; it never changes while the file moves between root and
    `_rejected/`.
    """

    id: str
    path: str
    capture_date: datetime
    is_video: bool
    aspect_ratio: float = 1.0
    decision: Decision = Decision.UNDECIDED
    star_rating: int = 0
    # Last move failure for this item, None when location and decision agree
    move_error: str | None = None

    @property
    def filename(self) -> str:
        """Base name of the current file location."""
        return Path(self.path).name

    @property
    def is_in_rejected_folder(self) -> bool:
        """True if the file currently lives directly inside `_rejected/`."""
        return Path(self.path).parent.name == REJECTED_DIR_NAME


class UndoKind(str, Enum):
    REJECT = "reject"
    KEEP = "keep"
    RATE = "rate"


@dataclass(frozen=True)
class UndoAction:
    """A reversible record pushed by every mutating engine operation.

    Attributes:
        item_id: Identity of the acted-on item.
        kind: Which operation produced the record.
        previous_decision: Decision before the operation.
        source_path: File location before the operation moved it, if it did.
        destination_path: File location the operation moved it to, if it did.
        previous_rating: Star rating before a RATE operation.
        item_index: Position of the item in the scanned list; identities can
            repeat when the same name exists in the root and in `_rejected/`.
    """

    item_id: str
    kind: UndoKind
    previous_decision: Decision
    source_path: str | None = None
    destination_path: str | None = None
    previous_rating: int = 0
    item_index: int | None = None


@dataclass
class FileState:
    """Persisted decision and rating for one identity."""

    decision: Decision = Decision.UNDECIDED
    star_rating: int = 0


@dataclass
class SessionRecord:
    """Persisted mapping of identity to `FileState` plus the last cursor."""

    file_states: dict[str, FileState] = field(default_factory=dict)
    current_position: int = 0


@dataclass(frozen=True)
class ScanProgress:
    found: int
    processed: int
    total: int


@dataclass(frozen=True)
class StateChange:
    """Notification emitted by the engine after its observable state changes.

    `kind` is one of: scan_progress, scan_finished, cursor, decision, rating,
    undo, filter, move_failed.
    """

    kind: str
    index: int | None = None
    identity: str | None = None
    detail: str | None = None
