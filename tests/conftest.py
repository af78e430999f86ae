import io
import zipfile
from pathlib import Path

import pytest
from PIL import Image
from sqlmodel import Session, create_engine

from lectern.config import CoverConfig, ExtractionConfig, LecternConfig, LibraryConfig, ScannerConfig
from lectern.database import init_db


def _png_bytes(color: str = "red", size=(10, 10)) -> bytes:
    img = Image.new("RGB", size, color=color)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png():
    """Factory for small solid-colour PNG images."""
    return _png_bytes


@pytest.fixture
def catalog_db(tmp_path, monkeypatch):
    """Point the global engine at a fresh SQLite file."""
    db_file = tmp_path / "library.db"
    engine = create_engine(f"sqlite:///{db_file}", connect_args={"check_same_thread": False})
    monkeypatch.setattr("lectern.database.DB_PATH", db_file, raising=True)
    monkeypatch.setattr("lectern.database.engine", engine, raising=True)
    init_db()
    yield engine
    engine.dispose()


@pytest.fixture
def session(catalog_db):
    with Session(catalog_db) as session:
        yield session


@pytest.fixture
def library(tmp_path) -> Path:
    lib = tmp_path / "lib"
    lib.mkdir()
    return lib


@pytest.fixture
def make_config():
    def _make(library_path: Path, **extraction) -> LecternConfig:
        return LecternConfig(
            library=LibraryConfig(path=library_path, name="Test Library"),
            scanner=ScannerConfig(interval_seconds=1),
            extraction=ExtractionConfig(**{"workers": 2, "timeout_seconds": 30, **extraction}),
            covers=CoverConfig(width=50, height=80, quality=75),
        )

    return _make


@pytest.fixture
def make_cbz():
    """Write a zip with the given {entry name: bytes} members."""

    def _make(path: Path, entries: dict) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, "w") as zf:
            for name, data in entries.items():
                zf.writestr(name, data)
        return path

    return _make
