"""Database engine and session management using SQLModel."""

from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from .config import DATA_DIR

DB_PATH = DATA_DIR / "library.db"
SQLITE_URL = f"sqlite:///{DB_PATH}"

# check_same_thread=False: sessions are opened from the scan loop and extraction workers.
engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})


def init_db() -> None:
    """Create database tables.

    Raises sqlalchemy.exc.OperationalError when the database cannot be opened.
    """
    # Import models to ensure they are registered with SQLModel.metadata
    from . import models  # noqa: F401

    DB_PATH.parent.mkdir(parents=True, exist_ok=True)

    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL;")

    SQLModel.metadata.create_all(engine)


def reset_database() -> None:
    """Delete the database file and recreate it."""
    engine.dispose()
    if DB_PATH.exists():
        DB_PATH.unlink()
    init_db()


def get_engine() -> Engine:
    """Return the global engine instance."""
    return engine
