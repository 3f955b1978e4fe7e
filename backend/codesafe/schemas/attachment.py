"""
CodeSafe Backend — Attachment Response Schemas
================================================

Upload is multipart (file + optional category form field), so there is no
request model here.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from codesafe.models.note import Attachment
from codesafe.services.file_rules import human_size


class AttachmentResponse(BaseModel):
    id: uuid.UUID
    original_file_name: str
    category: str = Field(description="document, image, video or other")
    content_type: str
    size_bytes: int
    size_display: str = Field(description="Human-readable size, e.g. '1.5 MB'")
    url: str = Field(description="Direct URL of the stored object")
    uploaded_at: datetime

    @classmethod
    def from_attachment(cls, attachment: Attachment) -> "AttachmentResponse":
        return cls(
            id=attachment.id,
            original_file_name=attachment.original_file_name,
            category=attachment.category,
            content_type=attachment.content_type,
            size_bytes=attachment.size_bytes,
            size_display=human_size(attachment.size_bytes),
            url=attachment.remote_url,
            uploaded_at=attachment.uploaded_at,
        )


class AttachmentListResponse(BaseModel):
    attachments: List[AttachmentResponse]
    count: int
    category: Optional[str] = Field(default=None, description="Filter that was applied")


class SupportedTypesResponse(BaseModel):
    """Accepted extensions per category and the size ceiling."""
    categories: dict
    forbidden_extensions: List[str]
    max_file_size: int
    max_file_size_display: str
    message: str
