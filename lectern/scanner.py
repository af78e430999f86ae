"""Filesystem scanner for Lectern.

Responsible for syncing the filesystem state into the catalog.

Implements:
- change detection against the scan watermark (walk_changed)
- one full scan cycle: walk, reconcile, advance the watermark (scan_library)
"""

from __future__ import annotations

import os
import stat
import time
from pathlib import Path
from typing import Callable, Iterable, Iterator, NamedTuple, Optional, Tuple

from sqlmodel import Session

from .config import LecternConfig
from .database import get_engine
from .ids import IdAllocator
from .logging_config import get_logger
from .models import Format
from .reconciler import Reconciler
from .repository import Repository

logger = get_logger(__name__)


class DirectoryEntry(NamedTuple):
    path: Path
    modified: float


class FileEntry(NamedTuple):
    path: Path
    modified: float
    size: int
    created: int


def _should_ignore(name: str, ignore_patterns: Iterable[str]) -> bool:
    """Hidden entries (and macOS ._ resource forks) are always skipped."""
    if name.startswith("."):
        return True
    return name in ignore_patterns


def _changed_at(st: os.stat_result) -> float:
    # ctime moves on rename/copy-in even when mtime is preserved.
    return max(st.st_mtime, st.st_ctime)


def _created_at(st: os.stat_result) -> int:
    return int(getattr(st, "st_birthtime", st.st_ctime))


def _stat(path: Path) -> Optional[os.stat_result]:
    try:
        return os.stat(path)
    except OSError as exc:
        logger.warning(f"✗ {path} - Unable to stat: {exc}")
        return None


def _log_walk_error(exc: OSError) -> None:
    logger.warning(f"✗ {exc.filename} - Unable to list directory: {exc.strerror}")


def _is_storable(directory: str, name: str) -> bool:
    """Names that are not valid UTF-8 cannot be recorded in the catalog."""
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        logger.warning(
            f"✗ {directory}/{name.encode('utf-8', 'backslashreplace').decode('utf-8')} "
            "- Name is not valid UTF-8, skipped"
        )
        return False
    return True


def _visible(directory: str, names: list, ignore_patterns: Tuple[str, ...]) -> list:
    return sorted(
        n for n in names
        if not _should_ignore(n, ignore_patterns) and _is_storable(directory, n)
    )


def _walk(root: Path, ignore_patterns: Tuple[str, ...]) -> Iterator[Tuple[Path, list]]:
    """Yield (directory, visible filenames) for every directory under root."""
    for dirpath, dirnames, filenames in os.walk(root, onerror=_log_walk_error):
        # Filter in place so os.walk doesn't descend into ignored directories
        dirnames[:] = _visible(dirpath, dirnames, ignore_patterns)
        yield Path(dirpath), _visible(dirpath, filenames, ignore_patterns)


def iter_changed_directories(
    root: Path,
    watermark: float,
    ignore_patterns: Tuple[str, ...] = (),
) -> Iterator[DirectoryEntry]:
    """Yield directories (root included) changed after the watermark."""
    for dir_path, _ in _walk(root, ignore_patterns):
        st = _stat(dir_path)
        if st is None:
            continue
        modified = _changed_at(st)
        if modified > watermark:
            logger.debug(f"Directory changed: {dir_path}")
            yield DirectoryEntry(dir_path, modified)


def iter_changed_files(
    root: Path,
    watermark: float,
    ignore_patterns: Tuple[str, ...] = (),
    supported_formats: Optional[Iterable[str]] = None,
) -> Iterator[FileEntry]:
    """Yield supported regular files changed after the watermark."""
    formats = set(supported_formats) if supported_formats is not None else None

    for dir_path, filenames in _walk(root, ignore_patterns):
        for name in filenames:
            fmt = Format.from_filename(name)
            if fmt is Format.OTHER or (formats is not None and fmt.value not in formats):
                continue

            file_path = dir_path / name
            st = _stat(file_path)
            if st is None or not stat.S_ISREG(st.st_mode):
                continue

            modified = _changed_at(st)
            if modified > watermark:
                yield FileEntry(file_path, modified, st.st_size, _created_at(st))


def walk_changed(
    root: Path,
    watermark: float,
    ignore_patterns: Tuple[str, ...] = (),
    supported_formats: Optional[Iterable[str]] = None,
) -> Tuple[Iterator[DirectoryEntry], Iterator[FileEntry]]:
    """Return lazy (directories, files) sequences of entries changed after `watermark`.

    Each sequence walks the tree on its own when consumed and can be consumed once.
    """
    root = root.resolve()
    return (
        iter_changed_directories(root, watermark, ignore_patterns),
        iter_changed_files(root, watermark, ignore_patterns, supported_formats),
    )


def scan_library(
    config: LecternConfig,
    now: Callable[[], float] = time.time,
    allocator: Optional[IdAllocator] = None,
) -> dict:
    """Run one scan cycle and sync the library into the catalog.

    The cycle start time becomes the new watermark, and only once both reconcile
    passes have finished without a store error. Anything changed while the cycle
    ran is therefore picked up again by the next one.

    :return: Dictionary with scan statistics.
    """
    root = config.library_path.resolve()
    if not root.is_dir():
        raise FileNotFoundError(f"Library path does not exist: {root}")

    with Session(get_engine()) as session:
        repo = Repository(session)
        watermark = repo.get_watermark()
        started_at = now()
        logger.info(f"[SCAN] {root} (changes since {watermark:.0f})")

        directories, files = walk_changed(
            root,
            watermark,
            ignore_patterns=tuple(config.scanner.ignore_patterns),
            supported_formats=config.scanner.supported_formats,
        )
        stats = Reconciler(repo, allocator).reconcile(directories, files)

        if stats["errors"]:
            logger.warning(
                f"Scan finished with {stats['errors']} store errors; watermark kept at {watermark:.0f}"
            )
        else:
            repo.set_watermark(started_at)
            repo.commit()

    return stats
