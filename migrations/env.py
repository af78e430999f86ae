"""Alembic environment for the Lectern catalog.

lectern.migrations passes an open connection in ``config.attributes``. The
plain ``alembic`` command line gets one from the lectern.database engine.
"""

from __future__ import annotations

from alembic import context
from sqlmodel import SQLModel

from lectern import models  # noqa: F401  registers the tables
from lectern.database import get_engine

target_metadata = SQLModel.metadata


def _run(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=True,
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connection = context.config.attributes.get("connection")
    if connection is not None:
        _run(connection)
        return

    with get_engine().connect() as connection:
        _run(connection)


# Revisions inspect sqlite_master before creating tables, so they need a live database.
if context.is_offline_mode():
    raise RuntimeError("lectern migrations cannot be rendered as SQL; run them without --sql")

run_migrations_online()
