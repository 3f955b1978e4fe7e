"""
CodeSafe Backend — Local Disk Storage Gateway
===============================================

What:  StorageGateway that keeps attachments on the local file system.
Why:   Development and test runs without Cloudinary credentials. The
       backend serves the files itself through GET /api/files/{path}.
How:   Objects are written with aiofiles under STORAGE_ROOT using the same
       folder layout as the Cloudinary gateway. The object id is the path
       relative to the root; the URL points at the files route.

Directory Structure:
    storage/
    └── codesafe/
        └── my-note-1a2b3c4d5e/
            ├── image/
            │   └── 9f0c..._holiday.jpg
            └── document/
                └── 41aa..._report.pdf

Security:
    resolve() refuses any object id that would escape the storage root, so
    neither a crafted id in the database nor a crafted URL reaches other files.
"""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Optional

import aiofiles

from codesafe.exceptions import StorageUploadError
from codesafe.services.file_rules import extension_of
from codesafe.services.storage_base import (
    StorageGateway,
    StoredObject,
    bounded_upload,
    organizing_folder,
    resource_type_for,
    unique_object_name,
)

logger = logging.getLogger(__name__)


class LocalStorageGateway(StorageGateway):
    name = "local"

    def __init__(
        self,
        storage_root: str,
        public_base_url: str,
        folder_prefix: str = "codesafe",
        upload_timeout: float = 300.0,
    ):
        self.storage_root = Path(storage_root).resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")
        self.folder_prefix = folder_prefix
        self.upload_timeout = upload_timeout
        logger.info("LocalStorageGateway initialized with storage_root=%s", self.storage_root)

    def resolve(self, object_id: str) -> Path:
        """
        Absolute path for an object id.

        Raises:
            ValueError: the id points outside the storage root.
        """
        candidate = (self.storage_root / object_id).resolve()
        if candidate != self.storage_root and self.storage_root not in candidate.parents:
            raise ValueError(f"Object id escapes storage root: {object_id}")
        return candidate

    def url_for(self, object_id: str) -> str:
        return f"{self.public_base_url}/api/files/{object_id}"

    async def _write(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "wb") as f:
            await f.write(content)

    async def upload(
        self,
        content: bytes,
        category: str,
        organizing_key: str,
        filename: str,
    ) -> StoredObject:
        folder = organizing_folder(self.folder_prefix, organizing_key, category)
        name = unique_object_name(filename)
        object_id = f"{folder}/{name}{extension_of(filename)}"
        path = self.resolve(object_id)
        context = {"folder": folder, "size_bytes": len(content)}

        try:
            await bounded_upload(self._write(path, content), self.upload_timeout, context)
        except StorageUploadError:
            logger.error("Local write timed out: %s", object_id)
            await self._remove_file(path)
            raise
        except OSError as e:
            logger.error("Failed to store file at %s: %s", path, str(e))
            await self._remove_file(path)
            raise StorageUploadError(context={**context, "os_error": str(e)}) from e

        logger.info("File stored: %s (%d bytes)", object_id, len(content))
        return StoredObject(
            url=self.url_for(object_id),
            object_id=object_id,
            name=name,
            resource_type=resource_type_for(category),
        )

    async def _remove_file(self, path: Path) -> None:
        try:
            if path.exists():
                os.remove(path)
        except OSError as e:
            logger.warning("Failed to clean up partial file %s: %s", path.name, str(e))

    async def delete(self, object_id: str, category: str) -> bool:
        try:
            path = self.resolve(object_id)
        except ValueError as e:
            logger.error("Refusing to delete %s: %s", object_id, str(e))
            return False
        try:
            if path.exists():
                os.remove(path)
                logger.info("Deleted file: %s", object_id)
            else:
                logger.debug("Delete: file already gone: %s", object_id)
            return True
        except OSError as e:
            logger.warning("Failed to delete file %s: %s", object_id, str(e))
            return False

    async def delete_folder(self, organizing_key: str) -> bool:
        folder = self.resolve(organizing_folder(self.folder_prefix, organizing_key))
        if not folder.exists():
            return True
        try:
            await asyncio.to_thread(shutil.rmtree, folder)
            logger.info("Deleted folder: %s", folder.relative_to(self.storage_root))
            return True
        except OSError as e:
            logger.warning("Failed to delete folder %s: %s", folder, str(e))
            return False

    async def health_check(self) -> bool:
        return self.storage_root.is_dir() and os.access(self.storage_root, os.W_OK)

    def open_path(self, object_id: str) -> Optional[Path]:
        """Path of an existing stored file, or None when missing or out of bounds."""
        try:
            path = self.resolve(object_id)
        except ValueError:
            return None
        return path if path.is_file() else None
