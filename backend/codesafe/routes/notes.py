"""
CodeSafe Backend — Notes Route Handlers
=========================================

What:  Note endpoints: open/create by code, read, save, the PIN lifecycle
       and destroy.
Why:   The code-addressed notepad is the whole product; these routes are its
       HTTP surface.
How:   Thin handlers. Access checks come from routes.dependencies, business
       rules from NoteService and note_access.
Who:   Called by the frontend note page.

Access flow:
    POST /api/notes/open {code}
        → state=granted            note is returned, client edits it
        → state=needs_verification client asks for the PIN, then
          POST /api/notes/{code}/verify-pin {pin}
    Every other {code} route answers 401 "pin_required" until the session
    holds a current verification flag for that note.

Caching:
    Note data is private and changes on every save; all responses carry
    Cache-Control: no-store.
"""

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from codesafe.database import get_db_session
from codesafe.routes.dependencies import get_pin_store, require_note_access
from codesafe.schemas.note import (
    ErrorResponse,
    MessageResponse,
    NoteCodeRequest,
    NoteContentRequest,
    NoteDestroyRequest,
    NoteOpenResponse,
    NoteResponse,
    PinRemoveRequest,
    PinSetRequest,
    PinUpdateRequest,
    PinVerifyRequest,
)
from codesafe.services.attachment_service import AttachmentService, get_attachment_service
from codesafe.services.note_access import NoteAccess, PinVerificationStore, verify_pin
from codesafe.services.note_service import note_service

logger = logging.getLogger(__name__)

# ── Router Configuration ──────────────────────────────────────────────────
router = APIRouter(prefix="/api/notes", tags=["Notes"])

NO_STORE = "no-store"

_gated_responses = {
    401: {"description": "PIN verification required", "model": ErrorResponse},
    404: {"description": "Note not found", "model": ErrorResponse},
}


# ── Open / create ─────────────────────────────────────────────────────────


@router.post(
    "/open",
    response_model=NoteOpenResponse,
    responses={400: {"description": "Blank or over-long code", "model": ErrorResponse}},
    summary="Open the note for a code, creating it if needed",
)
async def open_note(
    body: NoteCodeRequest,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
    store: PinVerificationStore = Depends(get_pin_store),
) -> NoteOpenResponse:
    """
    The front door. Anyone who knows a code can reach its note; a new code
    gets a fresh, unlocked note. Protected notes come back without content
    until the PIN is verified.
    """
    decision, created = await note_service.open_note(db, body.code, store)
    response.headers["Cache-Control"] = NO_STORE
    if created:
        response.status_code = 201

    note = NoteResponse.from_note(decision.access.note) if decision.granted else None
    return NoteOpenResponse(
        state=decision.state,
        code=decision.code,
        created=created,
        note=note,
    )


@router.post(
    "",
    status_code=201,
    response_model=NoteResponse,
    responses={
        400: {"description": "Blank or over-long code", "model": ErrorResponse},
        409: {"description": "Code already taken", "model": ErrorResponse},
    },
    summary="Create a note for a new code",
)
async def create_note(
    body: NoteCodeRequest,
    db: AsyncSession = Depends(get_db_session),
    store: PinVerificationStore = Depends(get_pin_store),
) -> NoteResponse:
    access = await note_service.create_note(db, body.code, store)
    return NoteResponse.from_note(access.note)


# ── Read / save ───────────────────────────────────────────────────────────


@router.get(
    "/{code}",
    response_model=NoteResponse,
    responses=_gated_responses,
    summary="Read a note",
)
async def get_note(
    response: Response,
    access: NoteAccess = Depends(require_note_access),
) -> NoteResponse:
    response.headers["Cache-Control"] = NO_STORE
    return NoteResponse.from_note(access.note)


@router.put(
    "/{code}/content",
    response_model=NoteResponse,
    responses={**_gated_responses, 400: {"description": "Content too long", "model": ErrorResponse}},
    summary="Save the note body",
)
async def save_content(
    body: NoteContentRequest,
    access: NoteAccess = Depends(require_note_access),
    db: AsyncSession = Depends(get_db_session),
) -> NoteResponse:
    note = await note_service.save_content(db, access, body.content)
    return NoteResponse.from_note(note)


# ── PIN lifecycle ─────────────────────────────────────────────────────────


@router.post(
    "/{code}/verify-pin",
    response_model=NoteResponse,
    responses={
        400: {"description": "PIN missing", "model": ErrorResponse},
        403: {"description": "Wrong PIN", "model": ErrorResponse},
        404: {"description": "Note not found", "model": ErrorResponse},
    },
    summary="Verify a note's PIN for this session",
)
async def verify_note_pin(
    code: str,
    body: PinVerifyRequest,
    db: AsyncSession = Depends(get_db_session),
    store: PinVerificationStore = Depends(get_pin_store),
) -> NoteResponse:
    access = await verify_pin(db, code, body.pin, store)
    return NoteResponse.from_note(access.note)


@router.post(
    "/{code}/pin",
    response_model=NoteResponse,
    responses={**_gated_responses, 400: {"description": "Invalid PIN input", "model": ErrorResponse}},
    summary="Protect a note with a PIN",
)
async def set_pin(
    body: PinSetRequest,
    access: NoteAccess = Depends(require_note_access),
    db: AsyncSession = Depends(get_db_session),
) -> NoteResponse:
    note = await note_service.set_pin(db, access, body.pin, body.confirm_pin)
    return NoteResponse.from_note(note)


@router.put(
    "/{code}/pin",
    response_model=NoteResponse,
    responses={
        **_gated_responses,
        400: {"description": "Invalid PIN input", "model": ErrorResponse},
        403: {"description": "Current PIN is wrong", "model": ErrorResponse},
    },
    summary="Change a note's PIN",
)
async def update_pin(
    body: PinUpdateRequest,
    access: NoteAccess = Depends(require_note_access),
    db: AsyncSession = Depends(get_db_session),
) -> NoteResponse:
    note = await note_service.update_pin(
        db,
        access,
        body.current_pin,
        body.new_pin,
        body.confirm_new_pin,
    )
    return NoteResponse.from_note(note)


@router.post(
    "/{code}/pin/remove",
    response_model=NoteResponse,
    responses={
        **_gated_responses,
        400: {"description": "PIN missing", "model": ErrorResponse},
        403: {"description": "Wrong PIN", "model": ErrorResponse},
    },
    summary="Remove a note's PIN",
)
async def remove_pin(
    body: PinRemoveRequest,
    access: NoteAccess = Depends(require_note_access),
    db: AsyncSession = Depends(get_db_session),
) -> NoteResponse:
    note = await note_service.remove_pin(db, access, body.current_pin)
    return NoteResponse.from_note(note)


# ── Destroy ───────────────────────────────────────────────────────────────


@router.post(
    "/{code}/destroy",
    response_model=MessageResponse,
    responses={
        **_gated_responses,
        400: {"description": "PIN missing", "model": ErrorResponse},
        403: {"description": "Wrong PIN", "model": ErrorResponse},
    },
    summary="Delete a note and all its attachments",
)
async def destroy_note(
    body: NoteDestroyRequest,
    access: NoteAccess = Depends(require_note_access),
    db: AsyncSession = Depends(get_db_session),
    attachments: AttachmentService = Depends(get_attachment_service),
) -> MessageResponse:
    """
    Irreversible. A protected note asks for its PIN again here, even when
    the session already verified it.
    """
    await note_service.destroy_note(db, access, body.pin, attachments)
    return MessageResponse(message="Note destroyed.")
