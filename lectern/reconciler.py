"""Catalog reconciliation.

Aligns the catalog with the disk for the entries a walk flagged as changed:
- changed directories: drop items whose backing file (or whole directory) is gone
- changed files: insert new items, refresh known ones under their existing id

Both passes only compare current disk state with current catalog state, so running
them again over the same entries gives the same catalog.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from .ids import IdAllocator, new_id
from .logging_config import get_logger
from .models import CatalogItem, Format
from .repository import Repository
from .utils import short_path

if TYPE_CHECKING:
    from .scanner import DirectoryEntry, FileEntry

logger = get_logger(__name__)


def _file_is_missing(path: Path) -> bool:
    """True only when the path is definitely gone. Other stat errors keep the item."""
    try:
        os.stat(path)
    except (FileNotFoundError, NotADirectoryError):
        return True
    except OSError as exc:
        logger.warning(f"✗ {short_path(path)} - Unable to stat, keeping record: {exc}")
    return False


class Reconciler:
    """Apply deletions and upserts for one scan cycle."""

    def __init__(self, repo: Repository, allocator: Optional[IdAllocator] = None):
        self.repo = repo
        self.allocate = allocator.allocate if allocator is not None else new_id

    def reconcile(
        self,
        directories: Iterable["DirectoryEntry"],
        files: Iterable["FileEntry"],
    ) -> dict:
        stats = {"added": 0, "updated": 0, "deleted": 0, "ambiguous": 0, "errors": 0}

        for entry in directories:
            self._check_directory(entry.path, stats)

        for entry in files:
            self._upsert_file(entry, stats)

        logger.info(
            f"Reconciled: {stats['added']} added, {stats['updated']} updated, "
            f"{stats['deleted']} deleted, {stats['ambiguous']} ambiguous, "
            f"{stats['errors']} errors"
        )
        return stats

    def _delete(self, item: CatalogItem, stats: dict) -> None:
        item_id, path = item.id, item.path
        self.repo.delete(item_id)
        self.repo.commit()
        stats["deleted"] += 1
        logger.info(f"[-] Removed: {short_path(path)}")

    def _check_directory(self, directory: Path, stats: dict) -> None:
        dir_str = str(directory)
        try:
            for item in self.repo.find_by_parent_path(dir_str):
                if _file_is_missing(item.path):
                    self._delete(item, stats)

            # Subdirectories that disappeared take their items with them.
            for parent_path in self.repo.parent_paths_under(dir_str):
                if os.path.isdir(parent_path):
                    continue
                logger.info(f"[-] Directory gone: {parent_path}")
                for item in self.repo.find_by_parent_path(parent_path):
                    if _file_is_missing(item.path):
                        self._delete(item, stats)
        except SQLAlchemyError as exc:
            self.repo.rollback()
            stats["errors"] += 1
            logger.error(f"✗ {directory} - Store error during deletion check: {exc}")
        except Exception as exc:
            self.repo.rollback()
            stats["errors"] += 1
            logger.error(f"✗ {directory} - Deletion check failed: {exc}", exc_info=True)

    def _upsert_file(self, entry: "FileEntry", stats: dict) -> None:
        filename = entry.path.name
        parent_path = str(entry.path.parent)
        fmt = Format.from_filename(filename).value

        try:
            matches = self.repo.find_by_identity(filename, parent_path)

            if len(matches) > 1:
                stats["ambiguous"] += 1
                ids = ", ".join(item.id for item in matches)
                logger.error(
                    f"✗ {short_path(entry.path)} - Catalog possibly corrupted, "
                    f"{len(matches)} records for one file ({ids}); left untouched"
                )
                return

            if matches:
                item = matches[0]
                item.size = entry.size
                item.added_date = entry.created
                item.format = fmt
                item.scan_pending = True
                item.total_pages = 0
                self.repo.upsert(item)
                self.repo.commit()
                stats["updated"] += 1
                logger.info(f"[~] Modified: {short_path(entry.path)}")
            else:
                item = CatalogItem(
                    id=self.allocate(),
                    filename=filename,
                    parent_path=parent_path,
                    size=entry.size,
                    added_date=entry.created,
                    format=fmt,
                    scan_pending=True,
                    total_pages=0,
                )
                self.repo.upsert(item)
                self.repo.commit()
                stats["added"] += 1
                logger.info(f"[+] New: {short_path(entry.path)}")
        except SQLAlchemyError as exc:
            self.repo.rollback()
            stats["errors"] += 1
            logger.error(f"✗ {short_path(entry.path)} - Store error: {exc}")
        except Exception as exc:
            self.repo.rollback()
            stats["errors"] += 1
            logger.error(f"✗ {short_path(entry.path)} - Failed to reconcile: {exc}", exc_info=True)
