"""
CodeSafe Backend — Attachment Service (Upload Saga)
=====================================================

What:  Upload, list, fetch and delete the files attached to a note.
Why:   An attachment lives in two places: the object on the remote store and
       its row in the database. This service keeps the two in step.
How:   Composes FileRules (validation), a StorageGateway (remote objects) and
       the request's database session. Every operation takes a NoteAccess
       token, so it can only run after the note's access check passed.
Who:   Attachment routes; NoteService.destroy_note().

Upload Saga:
    ┌────────────┐    ┌──────────────┐    ┌──────────────┐
    │  Validate  │───▶│ Remote upload│───▶│ Insert row   │───▶ Attachment
    │ (FileRules)│    │  (gateway)   │    │  (commit)    │
    └────────────┘    └──────────────┘    └──────┬───────┘
                                                 │ insert failed
                                                 ▼
                                       ┌───────────────────┐
                                       │ Compensate: delete│
                                       │ remote object     │
                                       │ (tenacity retry)  │
                                       └─────────┬─────────┘
                              deleted ◀──────────┴──────────▶ still there
              AttachmentPersistError(compensated=True)   AttachmentPersistError(
                                                            compensated=False,
                                                            orphaned_object_id=...)

    A validation failure never touches the store. An upload failure never
    touches the database. The insert error is always what the caller sees;
    a failing compensation only adds the orphan id and a log line.

    The row is committed inside the saga rather than by the request's
    session dependency, so a failing commit is compensated like a failing
    insert. This is the only service call that commits.

Deletes:
    Remote object first (best effort, failures logged), then the row,
    unconditionally. A missing remote object counts as deleted.
"""

import logging
from functools import lru_cache
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential_jitter,
)

from codesafe.config import settings
from codesafe.database import flush_or_raise
from codesafe.exceptions import AttachmentPersistError, NotFoundError, ValidationError
from codesafe.models.note import Attachment
from codesafe.services.file_rules import DEFAULT_FILE_RULES, FileRules, base_name, normalize_category
from codesafe.services.note_access import NoteAccess
from codesafe.services.storage_base import StorageGateway, StoredObject

logger = logging.getLogger(__name__)


class AttachmentService:
    """
    Attachment operations bound to one storage gateway and one rule set.

    Args:
        gateway: Where objects are stored
        rules: Validation policy (built once at startup)
        compensation_attempts: Tries for the delete that undoes an upload
        compensation_min_wait / compensation_max_wait: Backoff bounds in seconds
    """

    def __init__(
        self,
        gateway: StorageGateway,
        rules: FileRules = DEFAULT_FILE_RULES,
        compensation_attempts: int = settings.compensation_max_attempts,
        compensation_min_wait: float = settings.compensation_min_wait,
        compensation_max_wait: float = settings.compensation_max_wait,
    ):
        self.gateway = gateway
        self.rules = rules
        self.compensation_attempts = compensation_attempts
        self.compensation_min_wait = compensation_min_wait
        self.compensation_max_wait = compensation_max_wait

    # ── Upload ────────────────────────────────────────────────────────────

    async def upload(
        self,
        db: AsyncSession,
        access: NoteAccess,
        filename: Optional[str],
        content: bytes,
        content_type: Optional[str] = None,
        declared_category: Optional[str] = None,
    ) -> Attachment:
        """
        Validate, store remotely, then record the attachment.

        Raises:
            ValidationError: the file breaks a rule (nothing was stored)
            StorageUploadError: the remote store failed or timed out
            AttachmentPersistError: the row could not be written; see
                `compensated` / `orphaned_object_id` for the remote side
        """
        check = self.rules.evaluate(
            filename,
            content,
            content_type=content_type,
            declared_category=declared_category,
        )
        name = base_name(filename)

        stored = await self.gateway.upload(content, check.category, access.code, name)
        logger.info(
            "Uploaded %s attachment for note %s: %s (%d bytes)",
            check.category,
            access.note_id,
            stored.object_id,
            len(content),
        )

        attachment = Attachment(
            note_id=access.note_id,
            original_file_name=name[:255],
            stored_identifier=stored.name[:255],
            category=check.category,
            content_type=check.content_type,
            size_bytes=len(content),
            remote_url=stored.url,
            remote_object_id=stored.object_id,
        )
        try:
            db.add(attachment)
            await db.commit()
        except Exception as e:
            await self._rollback(db)
            logger.error(
                "Recording attachment %s failed: %s",
                stored.object_id,
                str(e),
                exc_info=True,
            )
            compensated = await self._compensate(stored, check.category)
            if compensated:
                logger.info("Compensating delete removed %s", stored.object_id)
                raise AttachmentPersistError(original_error=e, compensated=True) from e
            logger.error(
                "Compensating delete failed; remote object %s is orphaned",
                stored.object_id,
            )
            raise AttachmentPersistError(
                original_error=e,
                compensated=False,
                orphaned_object_id=stored.object_id,
            ) from e

        return attachment

    async def _rollback(self, db: AsyncSession) -> None:
        try:
            await db.rollback()
        except Exception as e:
            logger.warning("Rollback after a failed attachment insert raised: %s", str(e))

    async def _compensate(self, stored: StoredObject, category: str) -> bool:
        """Delete an object whose row was never written. Returns True when it is gone."""
        retrying = AsyncRetrying(
            retry=retry_if_result(lambda deleted: deleted is False)
            | retry_if_exception_type(Exception),
            stop=stop_after_attempt(self.compensation_attempts),
            wait=wait_exponential_jitter(
                initial=self.compensation_min_wait,
                max=self.compensation_max_wait,
                jitter=self.compensation_min_wait,
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            retry_error_callback=lambda retry_state: False,
        )
        return await retrying(self.gateway.delete, stored.object_id, category)

    # ── Queries ───────────────────────────────────────────────────────────

    async def list_attachments(
        self,
        db: AsyncSession,
        access: NoteAccess,
        category: Optional[str] = None,
    ) -> List[Attachment]:
        """Attachments of the note, newest first, optionally for one category."""
        query = select(Attachment).where(Attachment.note_id == access.note_id)
        if category:
            wanted = normalize_category(category)
            if wanted not in self.rules.category_names:
                raise ValidationError(
                    message=(
                        f"Unknown file category '{category}'. "
                        f"Expected one of: {', '.join(self.rules.category_names)}."
                    ),
                    field="category",
                )
            query = query.where(Attachment.category == wanted)
        query = query.order_by(Attachment.uploaded_at.desc())
        result = await db.execute(query)
        return list(result.scalars().all())

    async def find(
        self,
        db: AsyncSession,
        access: NoteAccess,
        attachment_id: UUID,
    ) -> Optional[Attachment]:
        result = await db.execute(
            select(Attachment).where(
                Attachment.id == attachment_id,
                Attachment.note_id == access.note_id,
            )
        )
        return result.scalar_one_or_none()

    async def get(
        self,
        db: AsyncSession,
        access: NoteAccess,
        attachment_id: UUID,
    ) -> Attachment:
        attachment = await self.find(db, access, attachment_id)
        if attachment is None:
            raise NotFoundError(resource="attachment", resource_id=str(attachment_id))
        return attachment

    # ── Deletes ───────────────────────────────────────────────────────────

    async def _delete_remote(self, attachment: Attachment) -> bool:
        try:
            deleted = await self.gateway.delete(attachment.remote_object_id, attachment.category)
        except Exception as e:
            logger.warning("Remote delete of %s raised: %s", attachment.remote_object_id, str(e))
            deleted = False
        if not deleted:
            logger.warning(
                "Remote object %s of attachment %s was not deleted",
                attachment.remote_object_id,
                attachment.id,
            )
        return deleted

    async def delete(
        self,
        db: AsyncSession,
        access: NoteAccess,
        attachment_id: UUID,
    ) -> bool:
        """
        Remove one attachment. Returns False only when the note has no such
        attachment; a failed remote delete still removes the row.
        """
        attachment = await self.find(db, access, attachment_id)
        if attachment is None:
            return False
        await self._delete_remote(attachment)
        await db.delete(attachment)
        await flush_or_raise(db, "delete attachment")
        logger.info("Deleted attachment %s of note %s", attachment_id, access.note_id)
        return True

    async def delete_all(self, db: AsyncSession, access: NoteAccess) -> int:
        """Remove every attachment of the note. Returns how many rows went."""
        attachments = await self.list_attachments(db, access)
        for attachment in attachments:
            await self._delete_remote(attachment)
            await db.delete(attachment)
        await flush_or_raise(db, "delete attachments")
        return len(attachments)

    async def purge_remote_folder(self, code: str) -> bool:
        """Best-effort sweep of the note's remote folder after it is destroyed."""
        try:
            return await self.gateway.delete_folder(code)
        except Exception as e:
            logger.warning("Remote folder sweep failed: %s", str(e))
            return False


# ══════════════════════════════════════════════════════════════════════════
# Dependency Factories
# ══════════════════════════════════════════════════════════════════════════

@lru_cache
def get_storage_gateway() -> StorageGateway:
    """The configured gateway, built on first use and reused afterwards."""
    if settings.storage_backend == "local":
        from codesafe.services.local_storage import LocalStorageGateway

        return LocalStorageGateway(
            storage_root=settings.storage_root,
            public_base_url=settings.public_base_url,
            folder_prefix=settings.storage_folder_prefix,
            upload_timeout=settings.storage_upload_timeout,
        )

    from codesafe.services.cloudinary_storage import CloudinaryStorageGateway

    return CloudinaryStorageGateway(
        cloud_name=settings.cloudinary_cloud_name,
        api_key=settings.cloudinary_api_key,
        api_secret=settings.cloudinary_api_secret,
        folder_prefix=settings.storage_folder_prefix,
        upload_timeout=settings.storage_upload_timeout,
    )


@lru_cache
def get_attachment_service() -> AttachmentService:
    return AttachmentService(gateway=get_storage_gateway(), rules=DEFAULT_FILE_RULES)
