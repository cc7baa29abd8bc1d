"""Bounded undo history for triage actions."""

from __future__ import annotations

from collections import deque

from core.models import UndoAction

DEFAULT_MAX_DEPTH = 50


class UndoStack:
    """LIFO stack of `UndoAction` that silently drops the oldest entry on overflow."""

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self._max_depth = max(1, int(max_depth or DEFAULT_MAX_DEPTH))
        self._actions: deque[UndoAction] = deque(maxlen=self._max_depth)

    def push(self, action: UndoAction) -> None:
        self._actions.append(action)

    def pop(self) -> UndoAction | None:
        """Return the most recent action, or None when the history is empty."""
        if not self._actions:
            return None
        return self._actions.pop()

    def clear(self) -> None:
        self._actions.clear()

    @property
    def max_depth(self) -> int:
        return self._max_depth

    def __len__(self) -> int:
        return len(self._actions)
