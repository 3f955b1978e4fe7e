"""
CodeSafe Backend — Note Service (Business Logic)
==================================================

What:  Note lifecycle: open/create by code, content saves, the PIN lifecycle
       and destroying a note together with its attachments.
Why:   Keeps every note rule in one place, independent of HTTP concerns.
How:   Stateless service. Operations on an existing note take a NoteAccess
       token from note_access, so they can only run after the access check.
       Changes are flushed, never committed; the request's session
       dependency commits once at the end.
Who:   Called by the note routes.

Creation and races:
    There is no "does this code exist?" pre-check. The insert is attempted
    and the unique index on notes.code rejects the loser of a race with an
    IntegrityError, which becomes NoteAlreadyExistsError. open_note() treats
    that as "someone else just created it" and proceeds to open it.

PIN rules:
    - Minimum length is enforced before anything is encrypted or stored;
      a PIN made only of whitespace is rejected
    - Set: PIN and confirmation required and equal; note must have no PIN
    - Update: all three fields required, current PIN must match, new PIN
      and confirmation equal
    - Remove: current PIN required and must match
    Setting or changing a PIN marks the acting session as verified;
    removing it clears the flag. Each change bumps pin_version.
"""

import logging
from typing import TYPE_CHECKING, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from codesafe.config import settings
from codesafe.database import flush_or_raise
from codesafe.exceptions import (
    DatabaseError,
    InvalidPinError,
    NoteAlreadyExistsError,
    ValidationError,
)
from codesafe.models.note import Note, utcnow
from codesafe.services.note_access import (
    AccessDecision,
    NoteAccess,
    PinVerificationStore,
    authorize,
    fetch_note,
    grant,
    pin_matches,
)
from codesafe.services.pin_cipher import pin_cipher

if TYPE_CHECKING:
    from codesafe.services.attachment_service import AttachmentService

logger = logging.getLogger(__name__)


class NoteService:
    """
    Business logic layer for notes.

    Responsibilities:
        - open_note() / create_note(): find or make the note for a code
        - save_content(): overwrite the note body
        - set_pin() / update_pin() / remove_pin(): PIN lifecycle
        - validate_pin(): plain PIN check by note id
        - destroy_note(): remove attachments, then the note
    """

    # ── Lookup ────────────────────────────────────────────────────────────

    @staticmethod
    def clean_code(code: Optional[str]) -> str:
        value = (code or "").strip()
        if not value:
            raise ValidationError(message="Please enter a code.", field="code")
        if len(value) > settings.note_code_max_length:
            raise ValidationError(
                message=f"Code must be at most {settings.note_code_max_length} characters.",
                field="code",
            )
        return value

    async def get_note_by_code(self, db: AsyncSession, code: Optional[str]) -> Optional[Note]:
        if not code or not code.strip():
            return None
        return await fetch_note(db, code)

    async def get_note_by_id(self, db: AsyncSession, note_id: UUID) -> Optional[Note]:
        result = await db.execute(select(Note).where(Note.id == note_id))
        return result.scalar_one_or_none()

    # ── Create / open ─────────────────────────────────────────────────────

    async def create_note(
        self,
        db: AsyncSession,
        code: Optional[str],
        store: PinVerificationStore,
    ) -> NoteAccess:
        """
        Insert an empty, unlocked note for `code`.

        Raises:
            ValidationError: blank or over-long code
            NoteAlreadyExistsError: the code is taken (decided by the
                unique index, so concurrent creators cannot both win)
            DatabaseError: any other insert failure
        """
        code = self.clean_code(code)
        note = Note(code=code, content="", pin=None, pin_version=0)
        db.add(note)
        try:
            await db.flush()
        except IntegrityError as e:
            await db.rollback()
            logger.info("Note creation lost to an existing code")
            raise NoteAlreadyExistsError(code=code) from e
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Note creation failed: %s", str(e), exc_info=True)
            raise DatabaseError(context={"operation": "create note"}) from e

        logger.info("Created note %s", note.id)
        return grant(note, store)

    async def open_note(
        self,
        db: AsyncSession,
        code: Optional[str],
        store: PinVerificationStore,
    ) -> Tuple[AccessDecision, bool]:
        """
        Open the note for `code`, creating it when it does not exist yet.

        Returns:
            (decision, created). A new note is always GRANTED; an existing
            protected note comes back as NEEDS_VERIFICATION unless this
            session already verified its PIN.
        """
        code = self.clean_code(code)
        created = False
        if await fetch_note(db, code) is None:
            try:
                await self.create_note(db, code, store)
                created = True
            except NoteAlreadyExistsError:
                logger.info("Note appeared concurrently; opening the existing one")

        decision = await authorize(db, code, store)
        return decision, created

    # ── Content ───────────────────────────────────────────────────────────

    async def save_content(
        self,
        db: AsyncSession,
        access: NoteAccess,
        content: Optional[str],
    ) -> Note:
        content = content or ""
        if len(content) > settings.note_content_max_length:
            raise ValidationError(
                message=(
                    f"Note content must be at most {settings.note_content_max_length} "
                    f"characters (got {len(content)})."
                ),
                field="content",
            )
        note = access.note
        note.content = content
        note.updated_at = utcnow()
        await flush_or_raise(db, "save note content")
        logger.info("Saved note %s (%d chars)", note.id, len(content))
        return note

    # ── PIN lifecycle ─────────────────────────────────────────────────────

    def _check_pin_length(self, pin: str, field: str) -> None:
        # Blank PINs can never be verified (see pin_matches), so never store one
        if not pin.strip():
            raise ValidationError(message="PIN cannot be blank.", field=field)
        if len(pin) < settings.pin_min_length:
            raise ValidationError(
                message=f"PIN must be at least {settings.pin_min_length} characters.",
                field=field,
            )

    async def _store_pin(self, db: AsyncSession, access: NoteAccess, pin: Optional[str]) -> Note:
        note = access.note
        note.pin = pin_cipher.encrypt(pin, note.code) if pin is not None else None
        note.pin_version += 1
        note.updated_at = utcnow()
        await flush_or_raise(db, "store PIN")
        return note

    async def set_pin(
        self,
        db: AsyncSession,
        access: NoteAccess,
        pin: Optional[str],
        confirm_pin: Optional[str],
    ) -> Note:
        if not pin or not confirm_pin:
            raise ValidationError(message="PIN and Confirm PIN are required.", field="pin")
        if pin != confirm_pin:
            raise ValidationError(message="PINs do not match.", field="confirm_pin")
        self._check_pin_length(pin, "pin")
        if access.note.has_pin:
            raise ValidationError(
                message="This note already has a PIN. Use change PIN instead.",
                field="pin",
            )

        note = await self._store_pin(db, access, pin)
        access.store.mark_verified(note)
        logger.info("PIN set for note %s", note.id)
        return note

    async def update_pin(
        self,
        db: AsyncSession,
        access: NoteAccess,
        current_pin: Optional[str],
        new_pin: Optional[str],
        confirm_new_pin: Optional[str],
    ) -> Note:
        if not current_pin or not new_pin or not confirm_new_pin:
            raise ValidationError(message="All fields are required.", field="pin")
        if not access.note.has_pin:
            raise ValidationError(message="This note has no PIN. Set one first.", field="pin")
        if not pin_matches(access.note, current_pin):
            logger.warning("PIN change rejected for note %s: wrong current PIN", access.note_id)
            raise InvalidPinError(message="Current PIN is incorrect.")
        if new_pin != confirm_new_pin:
            raise ValidationError(message="New PINs do not match.", field="confirm_new_pin")
        self._check_pin_length(new_pin, "new_pin")

        note = await self._store_pin(db, access, new_pin)
        access.store.mark_verified(note)
        logger.info("PIN changed for note %s", note.id)
        return note

    async def remove_pin(
        self,
        db: AsyncSession,
        access: NoteAccess,
        current_pin: Optional[str],
    ) -> Note:
        if not current_pin:
            raise ValidationError(message="Please enter the current PIN.", field="pin")
        note = access.note
        if note.has_pin:
            if not pin_matches(note, current_pin):
                logger.warning("PIN removal rejected for note %s: wrong PIN", note.id)
                raise InvalidPinError(message="Invalid PIN. Cannot unlock note.")
            note = await self._store_pin(db, access, None)
            logger.info("PIN removed for note %s", note.id)
        access.store.clear(note.code)
        return note

    async def validate_pin(self, db: AsyncSession, note_id: UUID, pin: Optional[str]) -> bool:
        """
        True when `pin` opens the note: always for unlocked notes, otherwise
        only for the exact PIN. Unknown notes never validate.
        """
        note = await self.get_note_by_id(db, note_id)
        if note is None:
            return False
        return pin_matches(note, pin)

    # ── Destroy ───────────────────────────────────────────────────────────

    async def destroy_note(
        self,
        db: AsyncSession,
        access: NoteAccess,
        pin: Optional[str],
        attachments: "AttachmentService",
    ) -> None:
        """
        Delete the note and everything attached to it.

        Order: each attachment (remote object best-effort, then row), the
        note row, then a best-effort sweep of the note's remote folder.
        A protected note needs its PIN again even in a verified session.
        """
        note = access.note
        if note.has_pin:
            if not pin:
                raise ValidationError(
                    message="Please enter the PIN to destroy this note.",
                    field="pin",
                )
            if not pin_matches(note, pin):
                logger.warning("Destroy rejected for note %s: wrong PIN", note.id)
                raise InvalidPinError()

        removed = await attachments.delete_all(db, access)
        await db.delete(note)
        await flush_or_raise(db, "destroy note")
        await attachments.purge_remote_folder(note.code)
        access.store.clear(note.code)
        logger.info("Destroyed note %s with %d attachments", note.id, removed)


# ── Singleton Instance ────────────────────────────────────────────────────
note_service = NoteService()
