"""Logging initialization utilities using loguru."""

from __future__ import annotations

from pathlib import Path

from loguru import logger

LOG_FILE_PREFIX = "sift_"


def get_log_directory() -> str:
    """Get the default log directory path."""
    return str(Path.home() / ".local" / "state" / "sift" / "logs")


def init_logging(log_dir: str | Path | None = None, level: str = "INFO") -> Path:
    """Replace the default stderr sink with a rotating daily log file.

    Returns the directory the log files are written to.
    """
    log_path = Path(log_dir or get_log_directory()).expanduser()
    log_path.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(
        str(log_path / (LOG_FILE_PREFIX + "{time:YYYYMMDD}.log")),
        rotation="10 MB",
        retention="10 days",
        compression="zip",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        level=level.upper(),
    )
    logger.debug("Logging to {} at {}", log_path, level)
    return log_path


def find_latest_log_file(log_dir: str | Path | None = None) -> Path | None:
    """Return the most recently modified sift log file, if any."""
    log_path = Path(log_dir or get_log_directory())
    try:
        candidates = [p for p in log_path.glob(f"{LOG_FILE_PREFIX}*.log") if p.is_file()]
        return max(candidates, key=lambda p: p.stat().st_mtime, default=None)
    except OSError:
        return None
