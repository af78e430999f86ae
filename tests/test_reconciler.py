"""Tests for catalog reconciliation."""

import os
import shutil
import time
from pathlib import Path

from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from lectern import scanner
from lectern.ids import IdAllocator
from lectern.models import CatalogItem, ScanState
from lectern.reconciler import Reconciler
from lectern.repository import Repository
from lectern.scanner import FileEntry, walk_changed


def _touch(path: Path, data: bytes = b"x") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def _bump(path: Path) -> None:
    """Push a path's mtime past any watermark taken before now."""
    future = time.time() + 3600
    os.utime(path, (future, future))


def _reconcile(session: Session, root: Path, watermark: float = 0) -> dict:
    directories, files = walk_changed(root, watermark)
    return Reconciler(Repository(session)).reconcile(directories, files)


def _snapshot(session: Session) -> list:
    session.expire_all()
    items = session.exec(select(CatalogItem).order_by(CatalogItem.id)).all()
    return [item.model_dump() for item in items]


def test_first_cycle_inserts_pending_items(session, library):
    _touch(library / "dir" / "a.cbz")

    stats = _reconcile(session, library)

    assert stats["added"] == 1
    (item,) = session.exec(select(CatalogItem)).all()
    assert item.filename == "a.cbz"
    assert item.parent_path == str((library / "dir").resolve())
    assert item.scan_pending is True
    assert item.total_pages == 0
    assert len(item.id) == 26


def test_reconcile_twice_is_byte_identical(session, library):
    _touch(library / "dir" / "a.cbz")
    _touch(library / "dir" / "sub" / "b.epub")
    _touch(library / "c.txt")

    _reconcile(session, library)
    first = _snapshot(session)
    _reconcile(session, library)
    second = _snapshot(session)

    assert first == second
    assert len(first) == 3


def test_every_file_gets_exactly_one_record(session, library):
    paths = [
        _touch(library / "x" / f"issue{n:02}.cbz") for n in range(5)
    ] + [_touch(library / "y" / "book.epub")]

    _reconcile(session, library)
    _reconcile(session, library)

    repo = Repository(session)
    for path in paths:
        resolved = path.resolve()
        assert len(repo.find_by_identity(resolved.name, str(resolved.parent))) == 1


def test_modified_file_keeps_its_id(session, library):
    path = _touch(library / "dir" / "a.cbz", b"one")
    _reconcile(session, library)
    (original,) = session.exec(select(CatalogItem)).all()
    original_id = original.id

    repo = Repository(session)
    assert repo.mark_extracted(original, 12)
    repo.commit()

    path.write_bytes(b"longer content")
    stats = _reconcile(session, library)

    session.expire_all()
    (item,) = session.exec(select(CatalogItem)).all()
    assert stats["updated"] == 1
    assert item.id == original_id
    assert item.size == len(b"longer content")
    # Content changed: back to pending.
    assert item.scan_pending is True
    assert item.total_pages == 0


def test_new_ids_come_from_allocator(session, library):
    _touch(library / "a.cbz")
    allocator = IdAllocator(clock=lambda: 0.001)
    directories, files = walk_changed(library, 0)

    Reconciler(Repository(session), allocator).reconcile(directories, files)

    (item,) = session.exec(select(CatalogItem)).all()
    assert item.id.startswith("0000000001")


def test_deleted_file_is_removed(library, catalog_db, make_config):
    path = _touch(library / "dir" / "a.cbz")
    config = make_config(library)
    scanner.scan_library(config)

    path.unlink()
    _bump(library / "dir")
    stats = scanner.scan_library(config)

    assert stats["deleted"] == 1
    with Session(catalog_db) as session:
        assert session.exec(select(CatalogItem)).all() == []


def test_deletion_also_drops_cover(session, library):
    path = _touch(library / "a.cbz")
    _reconcile(session, library)
    (item,) = session.exec(select(CatalogItem)).all()
    repo = Repository(session)
    repo.set_cover(item.id, b"cover")
    repo.commit()

    path.unlink()
    _reconcile(session, library)

    assert repo.get_cover(item.id) is None


def test_vanished_subtree_is_purged(library, catalog_db, make_config):
    _touch(library / "A" / "B" / "x.cbz")
    _touch(library / "keep.cbz")
    config = make_config(library)
    scanner.scan_library(config)

    shutil.rmtree(library / "A")
    _bump(library)
    stats = scanner.scan_library(config)

    assert stats["deleted"] == 1
    with Session(catalog_db) as session:
        names = [item.filename for item in session.exec(select(CatalogItem)).all()]
    assert names == ["keep.cbz"]


def test_ambiguous_identity_left_untouched(session, library):
    parent = str((library / "dir").resolve())
    _touch(library / "dir" / "b.epub", b"new content")
    session.add(CatalogItem(id="A" * 26, filename="b.epub", parent_path=parent, size=1, format="epub"))
    session.add(CatalogItem(id="B" * 26, filename="b.epub", parent_path=parent, size=2, format="epub"))
    session.commit()
    before = _snapshot(session)

    stats = _reconcile(session, library)

    assert stats["ambiguous"] == 1
    assert stats["added"] == stats["updated"] == stats["deleted"] == 0
    assert _snapshot(session) == before


def test_ambiguity_is_logged(session, library, caplog):
    parent = str((library / "dir").resolve())
    _touch(library / "dir" / "b.epub")
    for item_id in ("A" * 26, "B" * 26):
        session.add(CatalogItem(id=item_id, filename="b.epub", parent_path=parent, format="epub"))
    session.commit()

    with caplog.at_level("ERROR"):
        _reconcile(session, library)

    assert "possibly corrupted" in caplog.text


def test_store_error_skips_entry_and_continues(session, library, monkeypatch):
    _touch(library / "bad.cbz")
    _touch(library / "good.cbz")
    original = Repository.find_by_identity

    def flaky(self, filename, parent_path):
        if filename == "bad.cbz":
            raise OperationalError("SELECT", {}, Exception("database is locked"))
        return original(self, filename, parent_path)

    monkeypatch.setattr(Repository, "find_by_identity", flaky)
    stats = _reconcile(session, library)

    assert stats["errors"] == 1
    assert stats["added"] == 1
    names = [item.filename for item in session.exec(select(CatalogItem)).all()]
    assert names == ["good.cbz"]


def test_store_error_keeps_watermark(library, catalog_db, make_config, monkeypatch):
    _touch(library / "bad.cbz")

    def broken(self, filename, parent_path):
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(Repository, "find_by_identity", broken)
    stats = scanner.scan_library(make_config(library), now=lambda: 999.0)

    assert stats["errors"] == 1
    with Session(catalog_db) as session:
        assert session.get(ScanState, 1) is None


def test_reconcile_accepts_plain_file_entries(session, library):
    path = _touch(library / "loose.pdf", b"%PDF")
    entry = FileEntry(path=path, modified=time.time(), size=4, created=42)

    stats = Reconciler(Repository(session)).reconcile([], [entry])

    assert stats["added"] == 1
    (item,) = session.exec(select(CatalogItem)).all()
    assert item.format == "pdf"
    assert item.added_date == 42


def test_unexpected_entry_error_is_counted_and_cycle_continues(session, library, monkeypatch):
    _touch(library / "a.cbz")
    _touch(library / "b.cbz")
    original = Repository.find_by_identity

    def broken(self, filename, parent_path):
        if filename == "a.cbz":
            raise ValueError("cannot bind parameter")
        return original(self, filename, parent_path)

    monkeypatch.setattr(Repository, "find_by_identity", broken)
    stats = _reconcile(session, library)

    assert stats["errors"] == 1
    assert stats["added"] == 1
    names = [item.filename for item in session.exec(select(CatalogItem)).all()]
    assert names == ["b.cbz"]
