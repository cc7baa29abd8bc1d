"""Reject-folder move service.

Moves files between the root folder and its `_rejected/` subfolder and
back. Files are never deleted or overwritten: an occupied destination gets
a numeric suffix. Failures are reported through `MoveResult`, not raised.
"""

from __future__ import annotations

import os
from pathlib import Path
import shutil

from loguru import logger

from core.models import REJECTED_DIR_NAME
from core.services.interfaces import MoveResult


def unique_destination(dst: str | Path) -> Path:
    """If `dst` already exists, append `_1`, `_2`, ... to the stem."""
    dst = Path(dst)
    if not dst.exists():
        return dst
    stem, suffix = dst.stem, dst.suffix
    i = 1
    candidate = dst
    while candidate.exists():
        candidate = dst.parent / f"{stem}_{i}{suffix}"
        i += 1
    return candidate


class MoveService:
    """Coordinates file moves for one root folder."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.rejected_dir = self.root / REJECTED_DIR_NAME

    def move_to_rejected(self, path: str) -> MoveResult:
        """Move `path` into `_rejected/`, creating the folder if absent."""
        try:
            self.rejected_dir.mkdir(parents=True, exist_ok=True)
        except OSError as ex:
            logger.error("Cannot create reject folder {}: {}", self.rejected_dir, ex)
            return MoveResult(False, path, str(self.rejected_dir / Path(path).name), str(ex))
        return self.move(path, self.rejected_dir / Path(path).name)

    def move_to_root(self, path: str) -> MoveResult:
        """Move `path` back to the top level of the root folder."""
        return self.move(path, self.root / Path(path).name)

    def move(self, source: str, destination: str | Path) -> MoveResult:
        """Move `source` to `destination` (disambiguated if occupied)."""
        src = os.path.normpath(source)
        if not os.path.exists(src):
            logger.error("File does not exist: {}", src)
            return MoveResult(False, source, str(destination), "File does not exist")
        dst = Path(destination)
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            dst = unique_destination(dst)
            shutil.move(src, str(dst))
        except (OSError, shutil.Error) as ex:
            logger.error("Move failed {} -> {}: {}", src, dst, ex)
            return MoveResult(False, source, str(dst), str(ex))
        logger.info("Moved {} -> {}", src, dst)
        return MoveResult(True, source, str(dst))
