"""Create notes and attachments tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Initial schema: `notes` addressed by a unique code, and `attachments`
       owned by a note.
How:   Portable column types (Uuid, DateTime with time zone) so the same
       migration applies to PostgreSQL and SQLite.

Rollback: downgrade() drops both tables (destructive).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "notes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "code",
            sa.String(500),
            nullable=False,
            comment="User-supplied access code, unique across all notes",
        ),
        sa.Column(
            "content",
            sa.Text(),
            nullable=False,
            server_default=sa.text("''"),
            comment="Note body, at most 50 000 characters",
        ),
        sa.Column(
            "pin",
            sa.String(500),
            nullable=True,
            comment="Encrypted PIN, NULL when the note is unlocked",
        ),
        sa.Column(
            "pin_version",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
            comment="Incremented on every PIN change; invalidates older verifications",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    # Settles concurrent creation of the same code
    op.create_index("idx_notes_code", "notes", ["code"], unique=True)

    op.create_table(
        "attachments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("note_id", sa.Uuid(), nullable=False),
        sa.Column("original_file_name", sa.String(255), nullable=False),
        sa.Column("stored_identifier", sa.String(255), nullable=False),
        sa.Column(
            "category",
            sa.String(50),
            nullable=False,
            comment="document, image, video or other",
        ),
        sa.Column("content_type", sa.String(100), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("remote_url", sa.String(1000), nullable=False),
        sa.Column(
            "remote_object_id",
            sa.String(500),
            nullable=False,
            comment="Identifier used to delete the object from the store",
        ),
        sa.Column(
            "uploaded_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["note_id"], ["notes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_attachments_note_uploaded",
        "attachments",
        ["note_id", "uploaded_at"],
    )


def downgrade() -> None:
    """WARNING: drops every note and attachment record. Remote objects stay."""
    op.drop_index("idx_attachments_note_uploaded", table_name="attachments")
    op.drop_table("attachments")
    op.drop_index("idx_notes_code", table_name="notes")
    op.drop_table("notes")
