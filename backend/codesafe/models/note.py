"""
CodeSafe Backend — Note and Attachment SQLAlchemy Models
==========================================================

What:  ORM models for the `notes` and `attachments` tables.
Why:   Maps Python objects to database rows for type-safe database operations.
How:   Inherits from the shared DeclarativeBase; Alembic reads this for migrations.
Who:   Used by the note and attachment services, and by Alembic.

Table Design Rationale:
    - notes.code is the only way users address a note, so it carries a
      unique index. Creation relies on that index to settle races.
    - notes.pin stores AES-GCM ciphertext, never the PIN itself.
    - notes.pin_version increases on every PIN change; session verification
      flags remember the version they were granted for.
    - attachments.note_id cascades on delete so a note row never leaves
      attachment rows behind.
    - Column types are dialect-neutral (Uuid, DateTime) so the same models
      run on PostgreSQL in production and SQLite in tests.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from codesafe.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Note(Base):
    """
    A text note addressed by a user-chosen code.

    Lifecycle:
        1. Created empty (no PIN) the first time a code is opened
        2. Content overwritten by explicit saves
        3. PIN set, changed or removed by its owner
        4. Destroyed explicitly, after all of its attachments
    """

    __tablename__ = "notes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    code: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="User-supplied access code, unique across all notes",
    )

    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        comment="Note body, at most 50 000 characters",
    )

    # Ciphertext is base64url(nonce + ciphertext + tag); a 64 character PIN
    # encrypts to well under 500 characters.
    pin: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        default=None,
        comment="Encrypted PIN, NULL when the note is unlocked",
    )

    pin_version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Incremented on every PIN change; invalidates older verifications",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    # passive_deletes: the database cascade removes attachment rows, the
    # ORM never loads the collection just to delete it
    attachments: Mapped[List["Attachment"]] = relationship(
        back_populates="note",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_notes_code", "code", unique=True),
    )

    @property
    def has_pin(self) -> bool:
        return bool(self.pin)

    def __repr__(self) -> str:
        return f"<Note(id={self.id}, has_pin={self.has_pin}, updated_at='{self.updated_at}')>"


class Attachment(Base):
    """
    A file attached to a note, stored on the remote object store.

    A row exists only for objects whose upload succeeded; the upload
    service deletes the remote object again if the row cannot be written.
    """

    __tablename__ = "attachments"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    note_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("notes.id", ondelete="CASCADE"),
        nullable=False,
    )

    original_file_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Unique name given to the object on the store: "<uuid hex>_<stem>"
    stored_identifier: Mapped[str] = mapped_column(String(255), nullable=False)

    category: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="document, image, video or other",
    )

    content_type: Mapped[str] = mapped_column(String(100), nullable=False)

    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)

    remote_url: Mapped[str] = mapped_column(String(1000), nullable=False)

    remote_object_id: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="Identifier used to delete the object from the store",
    )

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    note: Mapped[Note] = relationship(back_populates="attachments")

    # Listing is always "attachments of one note, newest first"
    __table_args__ = (
        Index("idx_attachments_note_uploaded", "note_id", "uploaded_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Attachment(id={self.id}, category='{self.category}', "
            f"size_bytes={self.size_bytes})>"
        )
