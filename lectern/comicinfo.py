"""ComicInfo.xml parsing for Lectern.

Comic archives may carry a ComicInfo.xml entry describing the issue. Tag
lookups are case-insensitive and ignore XML namespaces.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from pathlib import PurePosixPath
from typing import Iterable, Optional

from pydantic import BaseModel

COMICINFO_NAME = "comicinfo.xml"

# ComicInfo tag (lowercased) -> model field
TAG_MAP = {
    "title": "title",
    "series": "series",
    "number": "number",
    "volume": "volume",
    "writer": "writer",
    "penciller": "penciller",
    "publisher": "publisher",
    "year": "year",
    "summary": "summary",
    "languageiso": "language",
}
INT_FIELDS = {"volume", "year"}


class ComicInfo(BaseModel):
    """Metadata parsed from ComicInfo.xml (all optional)."""

    model_config = {"extra": "ignore"}

    title: Optional[str] = None
    series: Optional[str] = None
    number: Optional[str] = None
    volume: Optional[int] = None
    writer: Optional[str] = None
    penciller: Optional[str] = None
    publisher: Optional[str] = None
    year: Optional[int] = None
    summary: Optional[str] = None
    language: Optional[str] = None


def _local_name(tag: str) -> str:
    """Return tag without namespace, lowercased ('{http://...}Title' -> 'title')."""
    return tag.rsplit("}", 1)[-1].lower()


def parse_comicinfo_xml(xml_bytes: bytes) -> ComicInfo:
    """Parse ComicInfo.xml content. Invalid XML yields an empty model."""
    try:
        root = ET.fromstring(xml_bytes)
    except ET.ParseError:
        return ComicInfo()

    raw: dict[str, object] = {}
    for elem in root:
        key = TAG_MAP.get(_local_name(elem.tag))
        text = (elem.text or "").strip()
        if key is None or not text:
            continue
        if key in INT_FIELDS:
            try:
                raw[key] = int(text)
            except ValueError:
                continue
        else:
            raw[key] = text

    return ComicInfo.model_validate(raw)


def find_comicinfo(names: Iterable[str]) -> Optional[str]:
    """Return the archive entry holding ComicInfo.xml, if any."""
    return next(
        (n for n in names if PurePosixPath(n).name.lower() == COMICINFO_NAME),
        None,
    )
