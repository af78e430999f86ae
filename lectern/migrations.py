"""Schema migrations for the catalog database.

Alembic runs on a connection taken from the application engine and handed to
``migrations/env.py`` through ``Config.attributes``. A database created by
``init_db`` (create_all) has no revision yet and is stamped at head.
"""

from __future__ import annotations

import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Optional, Tuple

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy.engine import Connection

from . import database
from .config import PROJECT_ROOT
from .logging_config import get_logger

logger = get_logger(__name__)


def _alembic_cfg(connection: Optional[Connection] = None) -> Config:
    cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    if connection is not None:
        cfg.attributes["connection"] = connection
    return cfg


def backup_database() -> Optional[Path]:
    """Snapshot library.db to library.db.bak with SQLite's online backup.

    Pages still in the WAL are included. Returns None when there is no database.
    """
    if not database.DB_PATH.exists():
        return None
    target = database.DB_PATH.with_suffix(".db.bak")
    raw = database.get_engine().raw_connection()
    try:
        with closing(sqlite3.connect(target)) as dest:
            raw.driver_connection.backup(dest)
    finally:
        raw.close()
    logger.info(f"Catalog backed up to {target}")
    return target


def current_revision() -> Optional[str]:
    if not database.DB_PATH.exists():
        return None
    with database.get_engine().connect() as conn:
        return MigrationContext.configure(conn).get_current_revision()


def head_revision() -> str:
    return ScriptDirectory.from_config(_alembic_cfg()).get_current_head() or "unknown"


def get_status() -> Tuple[Optional[str], str]:
    """(current revision or None, head revision)"""
    return current_revision(), head_revision()


def stamp_if_needed() -> bool:
    """Stamp an unversioned database at head. Returns True when it did."""
    if not database.DB_PATH.exists() or current_revision() is not None:
        return False
    with database.get_engine().begin() as conn:
        command.stamp(_alembic_cfg(conn), "head")
    logger.info("Unversioned catalog stamped at head")
    return True


def run_migrations(backup: bool = True) -> None:
    """Upgrade the catalog to head, backing it up first when asked."""
    if backup:
        backup_database()
    with database.get_engine().begin() as conn:
        command.upgrade(_alembic_cfg(conn), "head")
