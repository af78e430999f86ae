"""Utility functions for Lectern."""

from __future__ import annotations

from pathlib import Path


def short_path(path: Path) -> str:
    """Return abbreviated path showing only parent folder + filename.

    Example: /very/long/path/to/folder/book.epub -> folder/book.epub
    """
    return f"{path.parent.name}/{path.name}"


def human_size(num_bytes: int) -> str:
    """Format a byte count for display (e.g. 1536 -> '1.5 KB')."""
    if num_bytes < 1024:
        return f"{num_bytes} B"
    size = num_bytes / 1024
    for unit in ("KB", "MB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"
