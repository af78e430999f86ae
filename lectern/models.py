"""SQLModel database models for Lectern."""

import enum
from pathlib import Path

from sqlalchemy import Index
from sqlmodel import Field, SQLModel


class Format(str, enum.Enum):
    """Media formats recognised by the scanner, keyed by file extension."""

    CBZ = "cbz"
    CBR = "cbr"
    CB7 = "cb7"
    EPUB = "epub"
    PDF = "pdf"
    TXT = "txt"
    OTHER = "other"

    @classmethod
    def from_filename(cls, filename: str) -> "Format":
        suffix = Path(filename).suffix.lower().lstrip(".")
        try:
            return cls(suffix)
        except ValueError:
            return cls.OTHER


class CatalogItemBase(SQLModel):
    filename: str
    parent_path: str = Field(index=True)  # absolute directory path
    size: int = 0
    added_date: int = 0  # creation epoch, seconds
    format: str = Format.OTHER.value
    scan_pending: bool = True
    total_pages: int = 0


class CatalogItem(CatalogItemBase, table=True):
    __tablename__ = "files"
    # Not unique: duplicates are a corruption the reconciler must be able to see.
    __table_args__ = (Index("ix_files_identity", "filename", "parent_path"),)

    id: str = Field(primary_key=True)

    @property
    def path(self) -> Path:
        return Path(self.parent_path) / self.filename


class Cover(SQLModel, table=True):
    __tablename__ = "covers"

    id: str = Field(primary_key=True)  # catalog item id
    data: bytes


class ScanState(SQLModel, table=True):
    """Single-row table holding the scan watermark."""

    __tablename__ = "scan_state"

    id: int = Field(default=1, primary_key=True)
    last_scan_at: float = 0.0
