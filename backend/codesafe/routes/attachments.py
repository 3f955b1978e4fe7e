"""
CodeSafe Backend — Attachment Route Handlers
==============================================

What:  Upload, list, download and delete the files attached to a note, plus
       the accepted file types and the local-backend file server.
Why:   Attachments are the second half of a note; they share its PIN gate.
How:   Every /api/notes/{code}/attachments route depends on
       require_note_access, then hands the NoteAccess token to
       AttachmentService.
Who:   Called by the frontend attachment panel.

Request Flow (upload):
    1. Client sends multipart/form-data: `file`, optional `category`
    2. Oversized files are refused from the reported size; otherwise the
       file is read into memory
    3. AttachmentService runs validate → remote upload → insert
    4. 201 with the attachment; failures map to 400 / 502 / 504 / 500
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile
from fastapi.responses import FileResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from codesafe.database import get_db_session
from codesafe.exceptions import NotFoundError
from codesafe.routes.dependencies import require_note_access
from codesafe.schemas.attachment import (
    AttachmentListResponse,
    AttachmentResponse,
    SupportedTypesResponse,
)
from codesafe.schemas.note import ErrorResponse, MessageResponse
from codesafe.services.attachment_service import (
    AttachmentService,
    get_attachment_service,
    get_storage_gateway,
)
from codesafe.services.file_rules import human_size
from codesafe.services.local_storage import LocalStorageGateway
from codesafe.services.note_access import NoteAccess

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Attachments"])


@router.get(
    "/attachments/supported-types",
    response_model=SupportedTypesResponse,
    summary="Accepted file types and size limit",
)
async def supported_types(
    attachments: AttachmentService = Depends(get_attachment_service),
) -> SupportedTypesResponse:
    rules = attachments.rules
    return SupportedTypesResponse(
        categories={rule.name: sorted(rule.extensions) for rule in rules.categories},
        forbidden_extensions=sorted(rules.forbidden_extensions),
        max_file_size=rules.max_file_size,
        max_file_size_display=human_size(rules.max_file_size),
        message=rules.supported_types_message(),
    )


@router.post(
    "/notes/{code}/attachments",
    status_code=201,
    response_model=AttachmentResponse,
    responses={
        400: {"description": "File rejected by the attachment rules", "model": ErrorResponse},
        401: {"description": "PIN verification required", "model": ErrorResponse},
        404: {"description": "Note not found", "model": ErrorResponse},
        500: {"description": "Upload stored but not recorded", "model": ErrorResponse},
        502: {"description": "Storage provider failed", "model": ErrorResponse},
        504: {"description": "Storage provider timed out", "model": ErrorResponse},
    },
    summary="Attach a file to a note",
)
async def upload_attachment(
    file: UploadFile = File(..., description="The file to attach"),
    category: Optional[str] = Form(
        default=None,
        description="document, image, video or other; detected from the extension when omitted",
    ),
    access: NoteAccess = Depends(require_note_access),
    db: AsyncSession = Depends(get_db_session),
    attachments: AttachmentService = Depends(get_attachment_service),
) -> AttachmentResponse:
    try:
        # Multipart parsing already spooled the body to disk; refuse oversized
        # files before pulling them into memory
        if file.size is not None and file.size > attachments.rules.max_file_size:
            attachments.rules.check_size(file.size)
        content = await file.read()
        logger.info(
            "Received attachment for note %s: size=%d bytes, category=%s",
            access.note_id,
            len(content),
            category or "auto",
        )
        attachment = await attachments.upload(
            db,
            access,
            filename=file.filename,
            content=content,
            content_type=file.content_type,
            declared_category=category,
        )
    finally:
        await file.close()
    return AttachmentResponse.from_attachment(attachment)


@router.get(
    "/notes/{code}/attachments",
    response_model=AttachmentListResponse,
    responses={
        400: {"description": "Unknown category", "model": ErrorResponse},
        401: {"description": "PIN verification required", "model": ErrorResponse},
        404: {"description": "Note not found", "model": ErrorResponse},
    },
    summary="List a note's attachments, newest first",
)
async def list_attachments(
    response: Response,
    category: Optional[str] = Query(default=None, description="Only this category"),
    access: NoteAccess = Depends(require_note_access),
    db: AsyncSession = Depends(get_db_session),
    attachments: AttachmentService = Depends(get_attachment_service),
) -> AttachmentListResponse:
    items = await attachments.list_attachments(db, access, category=category)
    response.headers["Cache-Control"] = "no-store"
    return AttachmentListResponse(
        attachments=[AttachmentResponse.from_attachment(item) for item in items],
        count=len(items),
        category=category,
    )


@router.get(
    "/notes/{code}/attachments/{attachment_id}/download",
    status_code=302,
    responses={
        401: {"description": "PIN verification required", "model": ErrorResponse},
        404: {"description": "Note or attachment not found", "model": ErrorResponse},
    },
    summary="Redirect to the stored file",
)
async def download_attachment(
    attachment_id: UUID,
    access: NoteAccess = Depends(require_note_access),
    db: AsyncSession = Depends(get_db_session),
    attachments: AttachmentService = Depends(get_attachment_service),
) -> RedirectResponse:
    attachment = await attachments.get(db, access, attachment_id)
    return RedirectResponse(url=attachment.remote_url, status_code=302)


@router.delete(
    "/notes/{code}/attachments/{attachment_id}",
    response_model=MessageResponse,
    responses={
        401: {"description": "PIN verification required", "model": ErrorResponse},
        404: {"description": "Note or attachment not found", "model": ErrorResponse},
    },
    summary="Delete an attachment",
)
async def delete_attachment(
    attachment_id: UUID,
    access: NoteAccess = Depends(require_note_access),
    db: AsyncSession = Depends(get_db_session),
    attachments: AttachmentService = Depends(get_attachment_service),
) -> MessageResponse:
    deleted = await attachments.delete(db, access, attachment_id)
    if not deleted:
        raise NotFoundError(resource="attachment", resource_id=str(attachment_id))
    return MessageResponse(message="Attachment deleted.")


@router.get(
    "/files/{file_path:path}",
    summary="Serve files stored by the local backend",
    responses={404: {"description": "File not found", "model": ErrorResponse}},
)
async def serve_file(file_path: str) -> FileResponse:
    """
    Only active with STORAGE_BACKEND=local; Cloudinary serves its own URLs.
    Object ids are random, so knowing the URL is the capability, as it is
    for Cloudinary links.
    """
    gateway = get_storage_gateway()
    if not isinstance(gateway, LocalStorageGateway):
        raise NotFoundError(resource="file", resource_id=file_path)

    path = gateway.open_path(file_path)
    if path is None:
        raise NotFoundError(resource="file", resource_id=file_path)

    return FileResponse(
        path=str(path),
        headers={"Cache-Control": "private, max-age=86400"},
    )
