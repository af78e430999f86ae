import os
import time
from pathlib import Path

import pytest
from sqlmodel import Session, SQLModel, select

from lectern import scanner
from lectern.models import CatalogItem, ScanState
from lectern.scanner import walk_changed


def _touch(path: Path, data: bytes = b"x", mtime: float = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


def _collect(root: Path, watermark: float, **kwargs):
    dirs, files = walk_changed(root, watermark, **kwargs)
    return [d.path for d in dirs], [f.path for f in files]


def test_walk_yields_supported_files_and_directories(library):
    _touch(library / "Series" / "issue01.cbz")
    _touch(library / "Books" / "novel.epub")
    _touch(library / "Books" / "notes.docx")

    dirs, files = _collect(library.resolve(), 0)

    root = library.resolve()
    assert set(dirs) == {root, root / "Series", root / "Books"}
    assert set(files) == {root / "Series" / "issue01.cbz", root / "Books" / "novel.epub"}


def test_walk_skips_hidden_and_ignored_entries(library):
    _touch(library / ".hidden" / "secret.cbz")
    _touch(library / "@eaDir" / "thumb.cbz")
    _touch(library / "._resource.cbz")
    _touch(library / "visible.cbz")

    dirs, files = _collect(library.resolve(), 0, ignore_patterns=("@eaDir",))

    assert [p.name for p in files] == ["visible.cbz"]
    assert [p.name for p in dirs] == [library.resolve().name]


def test_walk_respects_supported_formats(library):
    _touch(library / "a.cbz")
    _touch(library / "b.pdf")

    _, files = _collect(library.resolve(), 0, supported_formats=("cbz",))

    assert [p.name for p in files] == ["a.cbz"]


def test_walk_only_yields_entries_newer_than_watermark(library):
    _touch(library / "old.cbz")
    future = time.time() + 3600
    _touch(library / "new.cbz", mtime=future + 10)

    dirs, files = _collect(library.resolve(), future)

    assert [p.name for p in files] == ["new.cbz"]
    # The root's own timestamps are not newer than the watermark.
    assert dirs == []


def test_walk_descends_into_unchanged_directories(library):
    future = time.time() + 3600
    _touch(library / "deep" / "nested" / "fresh.cbz", mtime=future + 10)

    dirs, files = _collect(library.resolve(), future)

    assert [p.name for p in files] == ["fresh.cbz"]
    assert dirs == []


def test_walk_skips_broken_symlinks(library):
    _touch(library / "ok.cbz")
    (library / "dangling.cbz").symlink_to(library / "missing.cbz")

    _, files = _collect(library.resolve(), 0)

    assert [p.name for p in files] == ["ok.cbz"]


def test_walk_sequences_are_lazy(library):
    _touch(library / "a.cbz")
    dirs, files = walk_changed(library, 0)

    # Files added before consumption are still seen.
    _touch(library / "b.cbz")

    assert sorted(f.path.name for f in files) == ["a.cbz", "b.cbz"]
    assert len(list(dirs)) == 1


def test_file_entry_carries_size(library):
    _touch(library / "a.cbz", data=b"12345")
    _, files = walk_changed(library, 0)
    (entry,) = list(files)
    assert entry.size == 5
    assert entry.created > 0


def test_scan_library_missing_root_raises(tmp_path, catalog_db, make_config):
    with pytest.raises(FileNotFoundError):
        scanner.scan_library(make_config(tmp_path / "nope"))


def test_scan_library_smoke(library, catalog_db, make_config, make_cbz, png):
    make_cbz(library / "Series" / "issue01.cbz", {"page001.png": png()})
    _touch(library / "Books" / "novel.txt", b"hello")

    stats = scanner.scan_library(make_config(library), now=lambda: 1234.0)

    assert stats["added"] == 2
    assert stats["errors"] == 0
    with Session(catalog_db) as session:
        items = session.exec(select(CatalogItem)).all()
        state = session.get(ScanState, 1)

    by_name = {item.filename: item for item in items}
    assert set(by_name) == {"issue01.cbz", "novel.txt"}
    assert by_name["issue01.cbz"].parent_path == str((library / "Series").resolve())
    assert by_name["issue01.cbz"].format == "cbz"
    assert by_name["novel.txt"].size == 5
    assert all(item.scan_pending and item.total_pages == 0 for item in items)
    assert state.last_scan_at == 1234.0


def test_scan_library_uses_cycle_start_as_watermark(library, catalog_db, make_config):
    _touch(library / "a.cbz")
    clock = iter([1000.0, 5000.0])

    scanner.scan_library(make_config(library), now=lambda: next(clock))

    with Session(catalog_db) as session:
        assert session.get(ScanState, 1).last_scan_at == 1000.0


def test_second_scan_with_unchanged_tree_is_noop(library, catalog_db, make_config):
    _touch(library / "a.cbz")
    config = make_config(library)
    future = time.time() + 3600

    scanner.scan_library(config, now=lambda: future)
    stats = scanner.scan_library(config, now=lambda: future + 1)

    assert stats == {"added": 0, "updated": 0, "deleted": 0, "ambiguous": 0, "errors": 0}


def test_non_utf8_name_is_skipped_and_cycle_completes(library, catalog_db, make_config):
    _touch(library / "a.cbz")
    with open(os.fsencode(library) + b"/b\xff.cbz", "wb") as handle:
        handle.write(b"x")
    _touch(library / "c.cbz")

    stats = scanner.scan_library(make_config(library), now=lambda: 4321.0)

    assert stats["added"] == 2
    assert stats["errors"] == 0
    with Session(catalog_db) as session:
        names = sorted(item.filename for item in session.exec(select(CatalogItem)).all())
        assert session.get(ScanState, 1).last_scan_at == 4321.0
    assert names == ["a.cbz", "c.cbz"]


def test_non_utf8_directory_is_not_descended(library):
    bad_dir = os.fsencode(library) + b"/bad\xfe"
    os.mkdir(bad_dir)
    with open(bad_dir + b"/inner.cbz", "wb") as handle:
        handle.write(b"x")
    _touch(library / "ok.cbz")

    dirs, files = _collect(library.resolve(), 0)

    assert [p.name for p in files] == ["ok.cbz"]
    assert dirs == [library.resolve()]


def test_scan_cycle_does_not_recreate_schema(library, catalog_db, make_config, monkeypatch):
    _touch(library / "a.cbz")

    def unexpected(*args, **kwargs):
        raise AssertionError("schema setup belongs to startup")

    monkeypatch.setattr(SQLModel.metadata, "create_all", unexpected)
    stats = scanner.scan_library(make_config(library))

    assert stats["added"] == 1
