"""Initial schema: files, covers, scan_state

Revision ID: 0001
Revises: None
Create Date: 2026-10-19 00:00:00
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None


def _table_exists(name: str) -> bool:
    conn = op.get_bind()
    result = conn.execute(
        sa.text("SELECT 1 FROM sqlite_master WHERE type='table' AND name=:n"),
        {"n": name},
    )
    return result.fetchone() is not None


def upgrade() -> None:
    # Guarded so the migration can run against a database built by init_db().

    if not _table_exists("files"):
        op.create_table(
            "files",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("filename", sa.String(), nullable=False),
            sa.Column("parent_path", sa.String(), nullable=False),
            sa.Column("size", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("added_date", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("format", sa.String(), nullable=False),
            sa.Column("scan_pending", sa.Boolean(), nullable=False, server_default="1"),
            sa.Column("total_pages", sa.Integer(), nullable=False, server_default="0"),
        )
        op.create_index("ix_files_parent_path", "files", ["parent_path"])
        # Not unique: duplicate identities are detected by the reconciler.
        op.create_index("ix_files_identity", "files", ["filename", "parent_path"])

    if not _table_exists("covers"):
        op.create_table(
            "covers",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("data", sa.LargeBinary(), nullable=False),
        )

    if not _table_exists("scan_state"):
        op.create_table(
            "scan_state",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("last_scan_at", sa.Float(), nullable=False, server_default="0"),
        )


def downgrade() -> None:
    op.drop_table("scan_state")
    op.drop_table("covers")
    op.drop_index("ix_files_identity", table_name="files")
    op.drop_index("ix_files_parent_path", table_name="files")
    op.drop_table("files")
