"""E-book package reading with EbookLib.

The spine is resolved once into an index-addressable resource table when the
package is opened, so any resource can be fetched directly. A sequential cursor
(current_resource / advance) is kept on top of the table for callers that page
through a book in order.
"""

from __future__ import annotations

import posixpath
import re
from html.parser import HTMLParser
from pathlib import Path
from typing import List, Optional

import ebooklib
from bs4 import BeautifulSoup
from ebooklib import epub

from .errors import PageNotFoundError
from .logging_config import get_logger

logger = get_logger(__name__)

UNTITLED = "Untitled"
RESOURCE_SCHEME = "epub://"

_LINK_ATTRIBUTES = ("src", "href")
_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")


class _HTMLToText(HTMLParser):
    """Collect visible text from an HTML document."""

    _BLOCK_TAGS = {"p", "div", "br", "li", "h1", "h2", "h3", "h4", "h5", "h6"}

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self._parts: List[str] = []
        self._skip = 0

    def handle_starttag(self, tag, attrs):
        if tag in ("script", "style"):
            self._skip += 1
        elif tag in self._BLOCK_TAGS:
            self._parts.append("\n")

    def handle_endtag(self, tag):
        if tag in ("script", "style") and self._skip:
            self._skip -= 1

    def handle_data(self, data):
        if not self._skip:
            self._parts.append(data)

    def get_text(self) -> str:
        text = "".join(self._parts)
        return re.sub(r"\n\s*\n+", "\n\n", text).strip()


def html_to_text(raw: bytes) -> str:
    parser = _HTMLToText()
    parser.feed(raw.decode("utf-8", errors="replace"))
    parser.close()
    return parser.get_text()


def _is_relative(ref: str) -> bool:
    return bool(ref) and not ref.startswith(("#", "/")) and not _SCHEME_RE.match(ref)


def rewrite_references(html: str, resource_name: str, scheme: str = RESOURCE_SCHEME) -> str:
    """Point relative src, href and srcset references at package-absolute `scheme` URIs.

    Only element attributes are touched; script bodies and comments pass through.
    """
    base = posixpath.dirname(resource_name)

    def resolve(ref: str) -> str:
        if not _is_relative(ref):
            return ref
        return f"{scheme}{posixpath.normpath(posixpath.join(base, ref))}"

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(True):
        for attr in _LINK_ATTRIBUTES:
            value = tag.get(attr)
            if isinstance(value, str):
                tag[attr] = resolve(value)

        srcset = tag.get("srcset")
        if isinstance(srcset, str):
            candidates = []
            # Each candidate is "url [descriptor]"
            for candidate in srcset.split(","):
                parts = candidate.split(None, 1)
                if parts:
                    parts[0] = resolve(parts[0])
                    candidates.append(" ".join(parts))
            tag["srcset"] = ", ".join(candidates)

    return str(soup)


def render_resource(item) -> bytes:
    """Return a spine resource as HTML with rewritten references.

    Falls back to the plain text of the resource when it cannot be decoded.
    """
    # Raw file content; EpubHtml.get_content() would re-render it through a template.
    raw = item.content
    try:
        html = raw.decode("utf-8")
        return rewrite_references(html, item.get_name()).encode("utf-8")
    except UnicodeDecodeError as exc:
        logger.debug(f"Falling back to plain text for {item.get_name()}: {exc}")
        return html_to_text(raw).encode("utf-8")


class EpubPackage:
    """An opened EPUB container with its spine indexed."""

    def __init__(self, path: Path):
        self.path = path
        self.book = epub.read_epub(str(path), options={"ignore_ncx": True})
        self._resources = self._index_spine()
        self._cursor = 0

    def _index_spine(self) -> list:
        resources = []
        for entry in self.book.spine:
            idref = entry[0] if isinstance(entry, tuple) else entry
            item = self.book.get_item_with_id(idref)
            if item is None:
                logger.warning(f"{self.path.name}: spine entry {idref!r} missing from manifest")
                continue
            resources.append(item)
        return resources

    def metadata(self, key: str, namespace: str = "DC") -> Optional[str]:
        values = self.book.get_metadata(namespace, key)
        if not values:
            return None
        value = values[0][0]
        return value.strip() if isinstance(value, str) and value.strip() else None

    @property
    def title(self) -> str:
        return self.metadata("title") or UNTITLED

    def resource_count(self) -> int:
        return len(self._resources)

    def resource(self, index: int) -> bytes:
        if not 0 <= index < len(self._resources):
            raise PageNotFoundError(
                f"Resource {index} out of range (0-{len(self._resources) - 1}) in {self.path.name}"
            )
        return render_resource(self._resources[index])

    # --- Sequential cursor ---

    @property
    def position(self) -> int:
        return self._cursor

    def seek(self, index: int) -> None:
        if not 0 <= index < len(self._resources):
            raise PageNotFoundError(f"Cannot seek to resource {index} in {self.path.name}")
        self._cursor = index

    def current_resource(self) -> bytes:
        return self.resource(self._cursor)

    def advance(self) -> bool:
        """Move to the next resource. Returns False at the end of the spine."""
        if self._cursor + 1 >= len(self._resources):
            return False
        self._cursor += 1
        return True

    # --- Cover ---

    def cover_image(self) -> Optional[bytes]:
        """Raw bytes of the declared cover image, else of the first image resource."""
        for _, attrs in self.book.get_metadata("OPF", "cover"):
            cover_id = (attrs or {}).get("content")
            item = self.book.get_item_with_id(cover_id) if cover_id else None
            if item is not None and item.get_type() in (ebooklib.ITEM_IMAGE, ebooklib.ITEM_COVER):
                return item.get_content()

        for item in self.book.get_items_of_type(ebooklib.ITEM_COVER):
            return item.get_content()

        images = list(self.book.get_items_of_type(ebooklib.ITEM_IMAGE))
        named_cover = [item for item in images if "cover" in item.get_name().lower()]
        for item in named_cover or images:
            return item.get_content()
        return None
