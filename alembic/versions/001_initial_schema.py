"""Initial schema: documents, audiobooks and audiobook chapters.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. Documents ──────────────────────────────────────────────
    op.create_table(
        "documents",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("size", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("last_modified", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("file_path", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", "user_id"),
    )
    op.create_index("idx_documents_user", "documents", ["user_id"])

    # ── 2. Audiobooks ─────────────────────────────────────────────
    op.create_table(
        "audiobooks",
        sa.Column("id", sa.String(128), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("title", sa.Text, nullable=False, server_default=""),
        sa.Column("author", sa.Text, nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("cover_path", sa.Text, nullable=True),
        sa.Column("duration", sa.Float, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", "user_id"),
    )
    op.create_index("idx_audiobooks_user", "audiobooks", ["user_id"])

    # ── 3. Audiobook chapters ─────────────────────────────────────
    op.create_table(
        "audiobook_chapters",
        sa.Column("id", sa.String(160), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("book_id", sa.String(128), nullable=False),
        sa.Column("chapter_index", sa.Integer, nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("duration", sa.Float, nullable=True),
        sa.Column("file_path", sa.Text, nullable=False),
        sa.Column("format", sa.String(8), nullable=False),
        sa.PrimaryKeyConstraint("id", "user_id"),
    )
    op.create_index("idx_audiobook_chapters_book", "audiobook_chapters", ["book_id", "user_id"])


def downgrade() -> None:
    op.drop_index("idx_audiobook_chapters_book", table_name="audiobook_chapters")
    op.drop_table("audiobook_chapters")
    op.drop_index("idx_audiobooks_user", table_name="audiobooks")
    op.drop_table("audiobooks")
    op.drop_index("idx_documents_user", table_name="documents")
    op.drop_table("documents")
