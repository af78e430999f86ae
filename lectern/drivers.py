"""Per-format content drivers.

A driver opens one catalog item's file and answers: how many pages, what is
page N, what cover and metadata does it carry. Drivers are context managers and
declare a `handle_mode`:

- STATEFUL_SEQUENTIAL: one container handle serves every read of the driver
- STATELESS_PER_PAGE: each page read opens its own container handle
"""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar, Dict, List, Optional, Type

import fitz

from .archive import Archive, HandleMode, get_archive
from .comicinfo import find_comicinfo, parse_comicinfo_xml
from .epub import EpubPackage
from .errors import ExtractionError, PageExtractionError, PageNotFoundError, UnsupportedFormatError
from .imaging import Page, RenderOptions, render_page
from .logging_config import get_logger
from .models import Format

logger = get_logger(__name__)


class FormatDriver:
    """Base class for format drivers."""

    handle_mode: ClassVar[HandleMode] = HandleMode.STATELESS_PER_PAGE

    def __init__(self, path: Path):
        self.path = path

    def page_count(self) -> Optional[int]:
        """Number of pages, or None when this driver does not paginate."""
        return None

    def page(self, index: int, options: RenderOptions) -> Page:
        raise NotImplementedError

    def cover_image(self) -> Optional[bytes]:
        """Raw bytes of a representative image, if the format has one."""
        return None

    def metadata(self) -> Dict[str, object]:
        return {}

    def close(self) -> None:
        pass

    def __enter__(self) -> "FormatDriver":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _check_index(self, index: int, count: int) -> None:
        if not 0 <= index < count:
            raise PageNotFoundError(
                f"Page {index} out of range for {self.path.name} ({count} pages)"
            )


class ArchiveDriver(FormatDriver):
    """Comic archives: pages are image entries in sorted path order."""

    def __init__(self, path: Path):
        super().__init__(path)
        try:
            archive = get_archive(path)
        except Exception as exc:
            raise ExtractionError(f"Cannot open archive {path.name}: {exc}") from exc

        self._backend = type(archive)
        try:
            self._entries: List[str] = archive.list_entries()
            self._images: List[str] = archive.list_images()
        except Exception as exc:
            archive.close()
            raise ExtractionError(f"Cannot list entries of {path.name}: {exc}") from exc

        self._archive: Optional[Archive] = None
        if self.handle_mode is HandleMode.STATEFUL_SEQUENTIAL:
            self._archive = archive
        else:
            archive.close()

    @property
    def handle_mode(self) -> HandleMode:  # type: ignore[override]
        return self._backend.handle_mode

    @property
    def images(self) -> List[str]:
        return list(self._images)

    def _read(self, name: str) -> bytes:
        try:
            if self._archive is not None:
                return self._archive.read(name)
            with self._backend(self.path) as archive:
                return archive.read(name)
        except Exception as exc:
            raise PageExtractionError(
                f"Cannot extract {name!r} from {self.path.name}: {exc}"
            ) from exc

    def page_count(self) -> int:
        return len(self._images)

    def page(self, index: int, options: RenderOptions) -> Page:
        self._check_index(index, len(self._images))
        name = self._images[index]
        data = self._read(name)
        try:
            return render_page(data, options)
        except PageExtractionError as exc:
            raise PageExtractionError(f"{self.path.name} [{name}]: {exc}") from exc

    def cover_image(self) -> Optional[bytes]:
        if not self._images:
            return None
        return self._read(self._images[0])

    def metadata(self) -> Dict[str, object]:
        name = find_comicinfo(self._entries)
        if name is None:
            return {}
        try:
            raw = self._read(name)
        except PageExtractionError as exc:
            logger.warning(f"Unreadable ComicInfo.xml in {self.path.name}: {exc}")
            return {}
        return parse_comicinfo_xml(raw).model_dump(exclude_none=True)

    def close(self) -> None:
        if self._archive is not None:
            self._archive.close()
            self._archive = None


class EpubDriver(FormatDriver):
    """Structured packages: pages are spine resources."""

    handle_mode = HandleMode.STATEFUL_SEQUENTIAL

    def __init__(self, path: Path):
        super().__init__(path)
        try:
            self.package = EpubPackage(path)
        except Exception as exc:
            raise ExtractionError(f"Cannot open e-book {path.name}: {exc}") from exc

    def page_count(self) -> int:
        return self.package.resource_count()

    def page(self, index: int, options: RenderOptions) -> Page:
        self._check_index(index, self.package.resource_count())
        try:
            data = self.package.resource(index)
        except PageNotFoundError:
            raise
        except Exception as exc:
            raise PageExtractionError(
                f"Cannot read resource {index} of {self.path.name}: {exc}"
            ) from exc
        return Page(data, "application/xhtml+xml")

    def cover_image(self) -> Optional[bytes]:
        return self.package.cover_image()

    def metadata(self) -> Dict[str, object]:
        meta: Dict[str, object] = {"title": self.package.title}
        for key in ("creator", "language", "publisher", "date"):
            value = self.package.metadata(key)
            if value is not None:
                meta[key] = value
        return meta


class FixedLayoutDriver(FormatDriver):
    """Whole-file formats: the raw stream goes to an external renderer."""

    handle_mode = HandleMode.STATELESS_PER_PAGE
    media_types = {
        Format.PDF: "application/pdf",
        Format.TXT: "text/plain; charset=utf-8",
    }

    def __init__(self, path: Path):
        super().__init__(path)
        if not path.is_file():
            raise ExtractionError(f"File not found: {path}")

    def page(self, index: int, options: RenderOptions) -> Page:
        # No internal pagination: every index maps to the whole document.
        try:
            data = self.path.read_bytes()
        except OSError as exc:
            raise PageExtractionError(f"Cannot read {self.path.name}: {exc}") from exc
        media_type = self.media_types.get(
            Format.from_filename(self.path.name), "application/octet-stream"
        )
        return Page(data, media_type)


class PdfDriver(FixedLayoutDriver):
    """PDF: served whole, with the first page rendered as the cover."""

    cover_dpi = 150

    def cover_image(self) -> Optional[bytes]:
        try:
            with fitz.open(str(self.path)) as doc:
                if doc.page_count == 0:
                    return None
                page = doc.load_page(0)
                zoom = self.cover_dpi / 72.0
                pixmap = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom))
                return pixmap.tobytes("png")
        except Exception as exc:
            raise PageExtractionError(f"Cannot render first page of {self.path.name}: {exc}") from exc


DRIVERS: Dict[Format, Type[FormatDriver]] = {
    Format.CBZ: ArchiveDriver,
    Format.CBR: ArchiveDriver,
    Format.CB7: ArchiveDriver,
    Format.EPUB: EpubDriver,
    Format.PDF: PdfDriver,
    Format.TXT: FixedLayoutDriver,
}


def open_driver(fmt: str, path: Path) -> FormatDriver:
    """Open the driver registered for `fmt` on `path`."""
    try:
        driver_cls = DRIVERS[Format(fmt)]
    except (KeyError, ValueError):
        raise UnsupportedFormatError(f"No driver for format {fmt!r} ({path.name})") from None
    return driver_cls(path)
