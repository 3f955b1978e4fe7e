"""
CodeSafe Backend — Note Request/Response Schemas
==================================================

What:  Pydantic models defining the API contract for notes and PINs.
Why:   Input validation, response serialization and OpenAPI docs.
How:   FastAPI validates request bodies against these models and serializes
       return values through them.

Business rules (PIN length, confirmation match, content length) are checked
by the services and answered with 400, not here. Request fields are
therefore optional strings; only hard upper bounds live in the schema.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from codesafe.models.note import Note
from codesafe.services.note_access import AccessState


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class NoteCodeRequest(BaseModel):
    """Body of POST /api/notes/open and POST /api/notes."""
    code: Optional[str] = Field(
        default=None,
        max_length=1000,
        description="Access code chosen by the user",
    )


class NoteContentRequest(BaseModel):
    content: Optional[str] = Field(default=None, description="New note body")


class PinVerifyRequest(BaseModel):
    pin: Optional[str] = Field(default=None, max_length=128)


class PinSetRequest(BaseModel):
    pin: Optional[str] = Field(default=None, max_length=128)
    confirm_pin: Optional[str] = Field(default=None, max_length=128)


class PinUpdateRequest(BaseModel):
    current_pin: Optional[str] = Field(default=None, max_length=128)
    new_pin: Optional[str] = Field(default=None, max_length=128)
    confirm_new_pin: Optional[str] = Field(default=None, max_length=128)


class PinRemoveRequest(BaseModel):
    current_pin: Optional[str] = Field(default=None, max_length=128)


class NoteDestroyRequest(BaseModel):
    pin: Optional[str] = Field(
        default=None,
        max_length=128,
        description="Required when the note is PIN-protected",
    )


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class NoteResponse(BaseModel):
    """
    What:  A note as the owner sees it. Never includes the PIN.
    Who:   Returned by every note endpoint that grants access.
    """
    id: uuid.UUID
    code: str
    content: str
    has_pin: bool = Field(description="Whether the note is PIN-protected")
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_note(cls, note: Note) -> "NoteResponse":
        return cls(
            id=note.id,
            code=note.code,
            content=note.content or "",
            has_pin=note.has_pin,
            created_at=note.created_at,
            updated_at=note.updated_at,
        )


class NoteOpenResponse(BaseModel):
    """
    What:  Outcome of opening a code.

    state:
        granted             → `note` is filled in
        needs_verification  → show PIN entry, then POST .../verify-pin
    """
    state: AccessState
    code: str
    created: bool = Field(description="True when this call created the note")
    note: Optional[NoteResponse] = None


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    """
    What:  Standardized error response format for all API errors.

    Example:
        {
            "error": "pin_required",
            "message": "This note is protected. Enter its PIN to continue.",
            "details": {"code": "groceries"},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str
    database: str = Field(description="connected, disconnected")
    storage: str = Field(description="available, unavailable")
    storage_backend: str = Field(description="cloudinary or local")
    uptime_seconds: float
