from __future__ import annotations

import argparse
import os
from pathlib import Path
import sys

from loguru import logger

from app.viewmodels.triage_vm import TriageEngine
from core.models import GalleryFilter, StateChange
from infrastructure.logging import find_latest_log_file, init_logging
from infrastructure.settings import JsonSettings


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sift", description="Scan a folder of photos and videos for triage."
    )
    parser.add_argument("folder", help="Folder to triage")
    parser.add_argument("--settings", help="Path to a settings.json file")
    parser.add_argument("--log-dir", help="Directory for log files")
    return parser.parse_args(argv)


def _print_progress(change: StateChange) -> None:
    if change.kind == "scan_progress" and change.detail:
        print(f"\rScanning {change.detail}", end="", file=sys.stderr, flush=True)
    elif change.kind == "scan_finished":
        print(file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = JsonSettings(args.settings)
    log_dir = init_logging(
        args.log_dir or settings.get("logging.dir"),
        level=str(settings.get("logging.level", "INFO")),
    )

    root = Path(os.path.expanduser(args.folder))
    if not root.is_dir():
        logger.error("Not a folder: {}", root)
        print(f"Not a folder: {root}", file=sys.stderr)
        return 2

    engine = TriageEngine.from_settings(root, settings)
    engine.subscribe(_print_progress)
    try:
        engine.start_scan()
        print(f"{root}: {engine.total_count} items")
        for flt in GalleryFilter:
            print(f"  {flt.value:<10} {engine.filter_count(flt)}")
        current = engine.current_item
        if current is not None:
            print(f"Resume at #{engine.current_index + 1}: {current.id}")
    finally:
        engine.close()
    latest = find_latest_log_file(log_dir)
    if latest is not None:
        print(f"Log: {latest}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
