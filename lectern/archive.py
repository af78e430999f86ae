"""Archive handling for Lectern.

Provides a unified interface for reading comic archives (zip, rar, 7z), with
format fallback detection for misnamed files. Each backend declares whether one
open handle can serve several reads or a fresh handle is needed per entry.
"""

from __future__ import annotations

import enum
import zipfile
from pathlib import Path, PurePosixPath
from typing import ClassVar, List, Protocol, Tuple, Type

import py7zr
import rarfile

from .logging_config import get_logger

logger = get_logger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}


class HandleMode(enum.Enum):
    """How a container handle may be reused between page reads."""

    STATELESS_PER_PAGE = "stateless-per-page"
    STATEFUL_SEQUENTIAL = "stateful-sequential"


def is_image(name: str) -> bool:
    """True for image entries, excluding macOS metadata (__MACOSX/, ._ forks)."""
    entry = PurePosixPath(name.replace("\\", "/"))
    if "__MACOSX" in entry.parts or entry.name.startswith("._"):
        return False
    return entry.suffix.lower() in IMAGE_EXTENSIONS


class Archive(Protocol):
    handle_mode: ClassVar[HandleMode]

    def list_entries(self) -> List[str]:
        """List all file names in the archive (for finding ComicInfo.xml etc.)."""
        ...

    def list_images(self) -> List[str]:
        """Image entries sorted by path: the page order."""
        ...

    def read(self, name: str) -> bytes:
        ...

    def close(self) -> None:
        ...

    def __enter__(self) -> "Archive":
        ...

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        ...


class _ArchiveBase:
    handle_mode: ClassVar[HandleMode] = HandleMode.STATEFUL_SEQUENTIAL

    def list_entries(self) -> List[str]:
        raise NotImplementedError

    def list_images(self) -> List[str]:
        return sorted(n for n in self.list_entries() if is_image(n))

    def close(self) -> None:
        raise NotImplementedError

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class ZipArchive(_ArchiveBase):
    handle_mode = HandleMode.STATEFUL_SEQUENTIAL

    def __init__(self, path: Path):
        self.zf = zipfile.ZipFile(path, mode="r")

    def list_entries(self) -> List[str]:
        return [info.filename for info in self.zf.infolist() if not info.is_dir()]

    def read(self, name: str) -> bytes:
        return self.zf.read(name)

    def close(self) -> None:
        self.zf.close()


class RarArchive(_ArchiveBase):
    # Solid rar archives are decompressed through the unrar tool; reopen per entry.
    handle_mode = HandleMode.STATELESS_PER_PAGE

    def __init__(self, path: Path):
        self.rf = rarfile.RarFile(path, mode="r")

    def list_entries(self) -> List[str]:
        return [info.filename for info in self.rf.infolist() if not info.is_dir()]

    def read(self, name: str) -> bytes:
        return self.rf.read(name)

    def close(self) -> None:
        self.rf.close()


class SevenZipArchive(_ArchiveBase):
    # py7zr handles must be reset after every read; a fresh handle per entry is simpler.
    handle_mode = HandleMode.STATELESS_PER_PAGE

    def __init__(self, path: Path):
        self.sz = py7zr.SevenZipFile(path, mode="r")

    def list_entries(self) -> List[str]:
        return [info.filename for info in self.sz.list() if not info.is_directory]

    def read(self, name: str) -> bytes:
        contents = self.sz.read(targets=[name])
        if name not in contents:
            raise KeyError(f"There is no item named {name!r} in the archive")
        return contents[name].read()

    def close(self) -> None:
        self.sz.close()


_BACKENDS_BY_SUFFIX = {
    ".cbz": ZipArchive,
    ".zip": ZipArchive,
    ".cbr": RarArchive,
    ".rar": RarArchive,
    ".cb7": SevenZipArchive,
    ".7z": SevenZipArchive,
}


def _candidate_backends(path: Path) -> Tuple[Type[_ArchiveBase], ...]:
    primary = _BACKENDS_BY_SUFFIX.get(path.suffix.lower())
    if primary is None:
        raise ValueError(f"Unsupported archive format: {path.suffix}")
    others = tuple(
        backend
        for backend in (ZipArchive, RarArchive, SevenZipArchive)
        if backend is not primary
    )
    return (primary,) + others


def get_archive(path: Path) -> Archive:
    """Open an archive, detecting format by extension with fallback.

    Tries the expected backend first (cbz->zip, cbr->rar, cb7->7z). If that
    fails, tries the others (handles misnamed files) and re-raises the first
    error when none can open it.
    """
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    first_error = None
    for backend in _candidate_backends(path):
        try:
            return backend(path)
        except Exception as exc:
            if first_error is None:
                first_error = exc
            logger.debug(f"{backend.__name__} cannot open {path.name}: {exc}")

    raise first_error
