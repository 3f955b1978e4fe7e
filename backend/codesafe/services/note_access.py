"""
CodeSafe Backend — Note Access Control
========================================

What:  Decides whether the current client may read or change a note, and
       records successful PIN verifications in the client's session.
Why:   Every note and attachment operation goes through one check, so a
       PIN-protected note cannot be reached by a route that forgot to ask.
How:   authorize() looks the note up and returns an AccessDecision. A granted
       decision carries a NoteAccess token; the note and attachment services
       take that token instead of a bare note or code.

Access decision:
    code empty                                → DENIED
    note absent                               → DENIED
    note present, no PIN                      → GRANTED
    note present, PIN, session flag current   → GRANTED
    note present, PIN, no current flag        → NEEDS_VERIFICATION

    NEEDS_VERIFICATION is resolved by verify_pin(). A match sets the session
    flag and grants access; a mismatch raises InvalidPinError and leaves the
    client where it was.

Session flags:
    Stored in the signed cookie session under a hash of the note code (codes
    can be 500 characters and the cookie is readable by its holder). The
    value is the note's pin_version at verification time. Any PIN change
    bumps the version, which silently invalidates flags held by every
    other session.
"""

import enum
import hashlib
import logging
from dataclasses import dataclass
from typing import Any, MutableMapping, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codesafe.exceptions import (
    InvalidPinError,
    NotFoundError,
    PinVerificationRequiredError,
    ValidationError,
)
from codesafe.models.note import Note
from codesafe.services.pin_cipher import pin_cipher

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "pin_verified:"


class PinVerificationStore:
    """Per-client PIN verification flags, backed by the request session."""

    def __init__(self, session: MutableMapping[str, Any]):
        self._session = session

    @staticmethod
    def key_for(code: str) -> str:
        digest = hashlib.sha256(code.encode("utf-8")).hexdigest()[:24]
        return f"{SESSION_KEY_PREFIX}{digest}"

    def is_verified(self, note: Note) -> bool:
        return self._session.get(self.key_for(note.code)) == note.pin_version

    def mark_verified(self, note: Note) -> None:
        self._session[self.key_for(note.code)] = note.pin_version

    def clear(self, code: str) -> None:
        self._session.pop(self.key_for(code), None)


class AccessState(str, enum.Enum):
    GRANTED = "granted"
    NEEDS_VERIFICATION = "needs_verification"
    DENIED = "denied"


@dataclass(frozen=True)
class NoteAccess:
    """
    Proof that the access check passed for one note in this request.

    Built only by authorize() and verify_pin() (and by note creation, where
    the creator owns the note). Services accept it in place of a note.
    """

    note: Note
    store: PinVerificationStore

    @property
    def note_id(self) -> UUID:
        return self.note.id

    @property
    def code(self) -> str:
        return self.note.code


@dataclass(frozen=True)
class AccessDecision:
    state: AccessState
    code: str
    access: Optional[NoteAccess] = None

    @property
    def granted(self) -> bool:
        return self.state is AccessState.GRANTED


async def fetch_note(db: AsyncSession, code: str) -> Optional[Note]:
    result = await db.execute(select(Note).where(Note.code == code))
    return result.scalar_one_or_none()


def pin_matches(note: Note, pin: Optional[str]) -> bool:
    """
    Whether `pin` opens `note`.

    A note without a PIN accepts anything. A protected note needs a
    non-blank PIN equal to the stored one; undecryptable ciphertext never
    matches.
    """
    if not note.has_pin:
        return True
    if not pin or not pin.strip():
        return False
    return pin_cipher.matches(note.pin, pin, note.code)


def grant(note: Note, store: PinVerificationStore) -> NoteAccess:
    return NoteAccess(note=note, store=store)


async def authorize(
    db: AsyncSession,
    code: Optional[str],
    store: PinVerificationStore,
) -> AccessDecision:
    """Run the access check for `code` in the current session."""
    if not code or not code.strip():
        return AccessDecision(state=AccessState.DENIED, code=code or "")

    note = await fetch_note(db, code)
    if note is None:
        return AccessDecision(state=AccessState.DENIED, code=code)

    if not note.has_pin or store.is_verified(note):
        return AccessDecision(
            state=AccessState.GRANTED,
            code=code,
            access=grant(note, store),
        )

    return AccessDecision(state=AccessState.NEEDS_VERIFICATION, code=code)


async def require_access(
    db: AsyncSession,
    code: Optional[str],
    store: PinVerificationStore,
) -> NoteAccess:
    """
    authorize(), raising for anything but GRANTED.

    Raises:
        NotFoundError: DENIED (empty code or no such note)
        PinVerificationRequiredError: NEEDS_VERIFICATION
    """
    decision = await authorize(db, code, store)
    if decision.state is AccessState.DENIED:
        raise NotFoundError(resource="note")
    if decision.state is AccessState.NEEDS_VERIFICATION:
        raise PinVerificationRequiredError(code=decision.code)
    return decision.access


async def verify_pin(
    db: AsyncSession,
    code: Optional[str],
    pin: Optional[str],
    store: PinVerificationStore,
) -> NoteAccess:
    """
    Check `pin` against the note and remember a match in the session.

    Raises:
        ValidationError: blank PIN
        NotFoundError: no such note
        InvalidPinError: PIN does not match
    """
    if not code or not code.strip():
        raise NotFoundError(resource="note")
    if not pin or not pin.strip():
        raise ValidationError(message="Please enter the PIN.", field="pin")

    note = await fetch_note(db, code)
    if note is None:
        raise NotFoundError(resource="note")

    if not note.has_pin:
        return grant(note, store)

    if not pin_matches(note, pin):
        logger.warning("PIN verification failed for note %s", note.id)
        raise InvalidPinError()

    store.mark_verified(note)
    logger.info("PIN verified for note %s", note.id)
    return grant(note, store)
