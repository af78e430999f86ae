"""Data access layer for Lectern.

Encapsulates catalog storage using SQLModel/SQLAlchemy. Every query is built from
SQLAlchemy expressions, so values are always bound parameters.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import delete, update
from sqlmodel import Session, col, func, select

from .models import CatalogItem, Cover, ScanState

WATERMARK_ROW_ID = 1


class Repository:
    """Catalog store over one session. Callers control when to commit."""

    def __init__(self, session: Session):
        self.session = session

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    # --- Catalog items ---

    def get_item(self, item_id: str) -> Optional[CatalogItem]:
        return self.session.get(CatalogItem, item_id)

    def find_by_parent_path(self, parent_path: str) -> List[CatalogItem]:
        statement = select(CatalogItem).where(CatalogItem.parent_path == parent_path)
        return list(self.session.exec(statement).all())

    def find_by_identity(self, filename: str, parent_path: str) -> List[CatalogItem]:
        """Return every item recorded for (filename, parent_path).

        More than one result is a corruption; detecting it is the caller's job.
        """
        statement = select(CatalogItem).where(
            CatalogItem.filename == filename,
            CatalogItem.parent_path == parent_path,
        )
        return list(self.session.exec(statement).all())

    def parent_paths_under(self, directory: str) -> List[str]:
        """Distinct parent paths recorded strictly below `directory`."""
        prefix = directory.rstrip("/") + "/"
        statement = (
            select(CatalogItem.parent_path)
            .where(col(CatalogItem.parent_path).startswith(prefix, autoescape=True))
            .distinct()
        )
        return list(self.session.exec(statement).all())

    def find_pending(self, limit: Optional[int] = None) -> List[CatalogItem]:
        statement = (
            select(CatalogItem)
            .where(CatalogItem.scan_pending == True)  # noqa: E712
            .order_by(CatalogItem.id)
        )
        if limit is not None:
            statement = statement.limit(limit)
        return list(self.session.exec(statement).all())

    def upsert(self, item: CatalogItem) -> CatalogItem:
        """Insert a new item or persist changes made to a loaded one."""
        self.session.add(item)
        self.session.flush()
        return item

    def delete(self, item_id: str) -> bool:
        """Delete an item and its cover. Returns False if the item did not exist."""
        cover = self.session.get(Cover, item_id)
        if cover is not None:
            self.session.delete(cover)

        item = self.session.get(CatalogItem, item_id)
        if item is None:
            self.session.flush()
            return False

        self.session.delete(item)
        self.session.flush()
        return True

    def mark_extracted(self, item: CatalogItem, total_pages: Optional[int]) -> bool:
        """Record a successful extraction of `item` as it was read before extracting.

        The write only lands while the stored row still matches that read, so a
        reconciler update committed in the meantime keeps the item pending.
        `total_pages=None` leaves the count as is. Returns whether the row changed.
        """
        values = {"scan_pending": False}
        if total_pages is not None:
            values["total_pages"] = total_pages
        statement = (
            update(CatalogItem)
            .where(
                col(CatalogItem.id) == item.id,
                col(CatalogItem.scan_pending) == True,  # noqa: E712
                col(CatalogItem.size) == item.size,
                col(CatalogItem.added_date) == item.added_date,
                col(CatalogItem.format) == item.format,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(statement).rowcount > 0

    def count_items(self) -> int:
        return self.session.exec(select(func.count()).select_from(CatalogItem)).one()

    def count_pending(self) -> int:
        statement = (
            select(func.count())
            .select_from(CatalogItem)
            .where(CatalogItem.scan_pending == True)  # noqa: E712
        )
        return self.session.exec(statement).one()

    # --- Covers ---

    def set_cover(self, item_id: str, data: bytes) -> None:
        cover = self.session.get(Cover, item_id)
        if cover is None:
            cover = Cover(id=item_id, data=data)
        else:
            cover.data = data
        self.session.add(cover)
        self.session.flush()

    def delete_cover(self, item_id: str) -> None:
        self.session.execute(delete(Cover).where(col(Cover.id) == item_id))

    def get_cover(self, item_id: str) -> Optional[bytes]:
        cover = self.session.get(Cover, item_id)
        return cover.data if cover is not None else None

    # --- Watermark ---

    def get_watermark(self) -> float:
        state = self.session.get(ScanState, WATERMARK_ROW_ID)
        return state.last_scan_at if state is not None else 0.0

    def set_watermark(self, timestamp: float) -> None:
        state = self.session.get(ScanState, WATERMARK_ROW_ID)
        if state is None:
            state = ScanState(id=WATERMARK_ROW_ID, last_scan_at=timestamp)
        else:
            state.last_scan_at = timestamp
        self.session.add(state)
        self.session.flush()
