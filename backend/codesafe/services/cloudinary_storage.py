"""
CodeSafe Backend — Cloudinary Storage Gateway
===============================================

What:  StorageGateway backed by Cloudinary.
Why:   Attachments (including videos up to the size ceiling) are served
       straight from Cloudinary's CDN; the backend only keeps metadata.
How:   The official `cloudinary` SDK is synchronous, so every call runs in a
       worker thread via asyncio.to_thread. Uploads are additionally bounded
       by asyncio.wait_for with the configured timeout.

Resource types:
    image → "image", video → "video", document / other → "raw".
    Raw objects keep their file extension in the public id, otherwise the
    delivery URL would have none. Image and video objects get their format
    appended by Cloudinary.

Error mapping:
    upload:        anything raised → StorageUploadError (timeout flag set when
                   the SDK or wait_for reports a timeout)
    destroy:       result "ok" or "not found" → True, anything else → False
    prefix delete: all three resource types are cleared; any failure → False
"""

import asyncio
import io
import logging
from typing import Any, Dict

import cloudinary
import cloudinary.api
import cloudinary.uploader

from codesafe.exceptions import StorageUploadError
from codesafe.services.storage_base import (
    RESOURCE_IMAGE,
    RESOURCE_RAW,
    RESOURCE_VIDEO,
    StorageGateway,
    StoredObject,
    bounded_upload,
    organizing_folder,
    resource_type_for,
    unique_object_name,
)

logger = logging.getLogger(__name__)


def _is_timeout(error: BaseException) -> bool:
    if isinstance(error, TimeoutError):
        return True
    text = str(error).lower()
    return "timed out" in text or "timeout" in text


class CloudinaryStorageGateway(StorageGateway):
    name = "cloudinary"

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        folder_prefix: str = "codesafe",
        upload_timeout: float = 300.0,
    ):
        if not (cloud_name and api_key and api_secret):
            raise ValueError(
                "Cloudinary is not configured. Set CLOUDINARY_CLOUD_NAME, "
                "CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET."
            )
        cloudinary.config(
            cloud_name=cloud_name,
            api_key=api_key,
            api_secret=api_secret,
            secure=True,
        )
        self.folder_prefix = folder_prefix
        self.upload_timeout = upload_timeout
        logger.info(
            "CloudinaryStorageGateway initialized (cloud=%s, prefix=%s, timeout=%.0fs)",
            cloud_name,
            folder_prefix,
            upload_timeout,
        )

    async def upload(
        self,
        content: bytes,
        category: str,
        organizing_key: str,
        filename: str,
    ) -> StoredObject:
        resource_type = resource_type_for(category)
        folder = organizing_folder(self.folder_prefix, organizing_key, category)
        public_id = unique_object_name(filename, keep_extension=resource_type == RESOURCE_RAW)
        context = {"folder": folder, "resource_type": resource_type, "size_bytes": len(content)}

        logger.info(
            "Uploading to Cloudinary: folder=%s resource_type=%s size=%d",
            folder,
            resource_type,
            len(content),
        )

        try:
            result: Dict[str, Any] = await bounded_upload(
                asyncio.to_thread(
                    cloudinary.uploader.upload,
                    io.BytesIO(content),
                    folder=folder,
                    public_id=public_id,
                    resource_type=resource_type,
                    overwrite=False,
                    use_filename=False,
                    unique_filename=False,
                    timeout=self.upload_timeout,
                ),
                timeout=self.upload_timeout,
                context=context,
            )
        except StorageUploadError:
            logger.error("Cloudinary upload timed out after %.0fs: %s", self.upload_timeout, folder)
            raise
        except Exception as e:
            timed_out = _is_timeout(e)
            logger.error(
                "Cloudinary upload failed (timeout=%s): %s",
                timed_out,
                str(e),
                exc_info=not timed_out,
            )
            raise StorageUploadError(timeout=timed_out, context=context) from e

        url = result.get("secure_url")
        object_id = result.get("public_id")
        if not url or not object_id:
            logger.error("Cloudinary upload returned no URL or public id: %s", result)
            raise StorageUploadError(context=context)

        return StoredObject(
            url=url,
            object_id=object_id,
            name=public_id,
            resource_type=result.get("resource_type", resource_type),
        )

    async def delete(self, object_id: str, category: str) -> bool:
        resource_type = resource_type_for(category)
        try:
            result = await asyncio.to_thread(
                cloudinary.uploader.destroy,
                object_id,
                resource_type=resource_type,
                invalidate=True,
            )
        except Exception as e:
            logger.error("Error deleting %s from Cloudinary: %s", object_id, str(e))
            return False

        outcome = (result or {}).get("result")
        if outcome in ("ok", "not found"):
            logger.info("Deleted %s from Cloudinary (%s)", object_id, outcome)
            return True

        logger.warning("Cloudinary refused to delete %s: %s", object_id, outcome)
        return False

    async def delete_folder(self, organizing_key: str) -> bool:
        # Prefix match is on the raw public id; the slash keeps sibling folders out
        prefix = organizing_folder(self.folder_prefix, organizing_key) + "/"
        try:
            for resource_type in (RESOURCE_IMAGE, RESOURCE_VIDEO, RESOURCE_RAW):
                result = await asyncio.to_thread(
                    cloudinary.api.delete_resources_by_prefix,
                    prefix,
                    resource_type=resource_type,
                )
                deleted = (result or {}).get("deleted") or {}
                logger.info(
                    "Cleared Cloudinary folder %s (%s): %d objects",
                    prefix,
                    resource_type,
                    len(deleted),
                )
        except Exception as e:
            logger.error("Error clearing Cloudinary folder %s: %s", prefix, str(e))
            return False
        return True

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(cloudinary.api.ping)
            return True
        except Exception as e:
            logger.warning("Cloudinary health check failed: %s", str(e))
            return False
