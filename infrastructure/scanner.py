"""Folder scanning with concurrent metadata extraction.

Scans the root folder (top level only) plus everything under its
`_rejected/` subfolder, classifies files by extension, extracts metadata
for each candidate on a bounded thread pool, and returns the items sorted
by capture time.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
import os
from pathlib import Path

from loguru import logger

from core.models import REJECTED_DIR_NAME, MediaItem, ScanProgress
from core.services.format_service import is_supported, is_video
from core.services.interfaces import MediaMetadata
from core.services.sort_service import SortService
from infrastructure.metadata import extract_metadata, get_filesystem_modified_datetime

DEFAULT_MAX_WORKERS = 8
DEFAULT_PROGRESS_BATCH = 50

ProgressCallback = Callable[[ScanProgress], None]


def relative_id(root: str | Path, path: str | Path) -> str:
    """Create a stable identity from the path relative to `root`.

    A leading `_rejected/` segment is stripped so the identity survives
    moves between root and the reject folder. Files outside `root` fall
    back to their base name.
    """
    try:
        rel = Path(path).relative_to(Path(root))
    except ValueError:
        return Path(path).name
    parts = rel.parts
    if len(parts) > 1 and parts[0] == REJECTED_DIR_NAME:
        parts = parts[1:]
    return "/".join(parts)


def _is_hidden(name: str) -> bool:
    return name.startswith(".")


def collect_files(root: str | Path) -> list[str]:
    """List supported media under `root` and `root/_rejected/` (recursive).

    Other subdirectories are skipped entirely. Hidden entries and
    unsupported extensions are ignored. The result is sorted by path so
    tie-breaking during ordering is reproducible.
    """
    root_path = Path(root)
    found: list[str] = []
    try:
        entries = list(os.scandir(root_path))
    except OSError as ex:
        logger.error("Cannot list folder {}: {}", root_path, ex)
        return []

    for entry in entries:
        if _is_hidden(entry.name):
            continue
        try:
            if entry.is_dir(follow_symlinks=False):
                if entry.name == REJECTED_DIR_NAME:
                    found.extend(_walk_rejected(Path(entry.path)))
                continue
            if entry.is_file() and is_supported(entry.name):
                found.append(entry.path)
        except OSError as ex:
            logger.debug("Skip unreadable entry {}: {}", entry.path, ex)
    found.sort()
    return found


def _walk_rejected(rejected_dir: Path) -> list[str]:
    out: list[str] = []
    for dirpath, dirnames, filenames in os.walk(rejected_dir):
        dirnames[:] = [d for d in dirnames if not _is_hidden(d)]
        for fname in filenames:
            if not _is_hidden(fname) and is_supported(fname):
                out.append(os.path.join(dirpath, fname))
    return out


class MediaScanner:
    """Builds the ordered item list for one root folder."""

    def __init__(
        self,
        root: str | Path,
        *,
        max_workers: int = DEFAULT_MAX_WORKERS,
        progress_batch: int = DEFAULT_PROGRESS_BATCH,
        extractor: Callable[[str], MediaMetadata] = extract_metadata,
        sorter: SortService | None = None,
    ) -> None:
        self.root = Path(root)
        self._max_workers = max(1, int(max_workers))
        self._progress_batch = max(1, int(progress_batch))
        self._extract = extractor
        self._sorter = sorter or SortService()

    def relative_id(self, path: str | Path) -> str:
        return relative_id(self.root, path)

    def scan(self, progress: ProgressCallback | None = None) -> list[MediaItem]:
        """Scan the folder and return items sorted by capture time.

        `progress` is invoked on the calling thread: once at 0/N, after every
        `progress_batch` completions, and once at N/N.
        """
        paths = collect_files(self.root)
        total = len(paths)
        report = progress or (lambda _p: None)
        report(ScanProgress(found=total, processed=0, total=total))

        slots: list[MediaItem | None] = [None] * total
        processed = 0
        if total:
            with ThreadPoolExecutor(
                max_workers=min(self._max_workers, total), thread_name_prefix="sift-scan"
            ) as executor:
                future_to_idx = {
                    executor.submit(self._process_file, p): i for i, p in enumerate(paths)
                }
                for future in as_completed(future_to_idx):
                    idx = future_to_idx[future]
                    try:
                        slots[idx] = future.result()
                    except Exception as ex:  # pylint: disable=broad-exception-caught
                        logger.warning("Metadata extraction crashed for {}: {}", paths[idx], ex)
                        slots[idx] = self._fallback_item(paths[idx])
                    processed += 1
                    if processed % self._progress_batch == 0 and processed < total:
                        report(ScanProgress(found=total, processed=processed, total=total))

        report(ScanProgress(found=total, processed=total, total=total))
        items = self._sorter.sort_by_capture(it for it in slots if it is not None)
        logger.info("Scanned {}: {} media items", self.root, len(items))
        return items

    def _process_file(self, path: str) -> MediaItem:
        meta = self._extract(path)
        return MediaItem(
            id=self.relative_id(path),
            path=path,
            capture_date=meta.capture_date,
            is_video=is_video(path),
            aspect_ratio=meta.aspect_ratio if meta.aspect_ratio > 0 else 1.0,
        )

    def _fallback_item(self, path: str) -> MediaItem:
        return MediaItem(
            id=self.relative_id(path),
            path=path,
            capture_date=get_filesystem_modified_datetime(path),
            is_video=is_video(path),
        )
