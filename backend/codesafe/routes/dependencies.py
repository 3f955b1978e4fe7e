"""
CodeSafe Backend — Shared Route Dependencies
==============================================

What:  FastAPI dependencies that resolve the PIN verification store and the
       NoteAccess token for `{code}` routes.
Why:   Every note and attachment route needs the same access check. Putting
       it behind Depends() means a route cannot skip it by accident.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from codesafe.database import get_db_session
from codesafe.services.note_access import NoteAccess, PinVerificationStore, require_access


def get_pin_store(request: Request) -> PinVerificationStore:
    """PIN flags of the calling client, kept in its signed session cookie."""
    return PinVerificationStore(request.session)


async def require_note_access(
    code: str,
    db: AsyncSession = Depends(get_db_session),
    store: PinVerificationStore = Depends(get_pin_store),
) -> NoteAccess:
    """
    Resolve `{code}` to a NoteAccess or fail the request.

    404 when the note does not exist, 401 with error "pin_required" when it
    is protected and this session has not verified the PIN.
    """
    return await require_access(db, code, store)
