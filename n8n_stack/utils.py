"""Utility functions shared by the bundle and stack modules."""

from datetime import datetime
from pathlib import Path

from .constants import BUNDLE_TIMESTAMP_FORMAT, SNAPSHOT_SUFFIX


def format_size(size_bytes: int) -> str:
    """Format bytes into human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Human-readable size string with appropriate unit

    Examples:
        >>> format_size(0)
        '0 B'
        >>> format_size(1024)
        '1.0 KB'
        >>> format_size(1536870912)
        '1.4 GB'
    """
    if size_bytes == 0:
        return "0 B"

    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_bytes < 1024.0:
            if unit == "B":
                return f"{int(size_bytes)} {unit}"
            else:
                return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"


def bundle_timestamp(now: datetime | None = None) -> str:
    """Timestamp used in bundle and export directory names, e.g. 2024-09-02-120000."""
    return (now or datetime.now()).strftime(BUNDLE_TIMESTAMP_FORMAT)


def snapshot_filename(volume: str) -> str:
    """Archive name a volume snapshot is stored under inside a bundle."""
    return f"{volume}{SNAPSHOT_SUFFIX}"


def file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0
