"""
CodeSafe Backend — Abstract Storage Gateway
=============================================

What:  Contract for the remote object store that holds note attachments.
Why:   The attachment service only needs "put bytes, get URL + id back" and
       "delete by id". Hiding the provider behind this interface lets the
       service run against Cloudinary in production and a local directory
       in development and tests.
How:   Concrete gateways inherit from StorageGateway. Helpers in this module
       compute the folder layout and object names every gateway shares.

Contract:
    upload()        → StoredObject, or raises StorageUploadError
                      (timeout=True when the call ran out of time)
    delete()        → True when the object is gone (including "was never
                      there"), False on failure. Never raises.
    delete_folder() → bulk delete of a note's folder. Never raises.
    health_check()  → True when the store is reachable.

    Gateways do not retry. Whether a failed delete is worth retrying is the
    caller's decision.

Object layout:
    <prefix>/<note folder>/<category>/<uuid hex>_<file stem>
"""

import asyncio
import hashlib
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Optional, TypeVar

from codesafe.exceptions import StorageUploadError
from codesafe.services.file_rules import CATEGORY_IMAGE, CATEGORY_VIDEO, base_name

T = TypeVar("T")

RESOURCE_IMAGE = "image"
RESOURCE_VIDEO = "video"
RESOURCE_RAW = "raw"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


@dataclass(frozen=True)
class StoredObject:
    url: str
    object_id: str
    name: str
    resource_type: str


def resource_type_for(category: str) -> str:
    """image → image, video → video, everything else → raw."""
    if category == CATEGORY_IMAGE:
        return RESOURCE_IMAGE
    if category == CATEGORY_VIDEO:
        return RESOURCE_VIDEO
    return RESOURCE_RAW


def note_folder_name(code: str) -> str:
    """
    Folder name for a note code.

    Codes are free text, so the readable part is slugged and a short hash of
    the exact code is appended. Two codes that slug alike still get
    different folders.
    """
    slug = _UNSAFE_CHARS.sub("-", code).strip("-")[:40]
    digest = hashlib.sha1(code.encode("utf-8")).hexdigest()[:10]
    return f"{slug}-{digest}" if slug else digest


def organizing_folder(prefix: str, code: str, category: Optional[str] = None) -> str:
    parts = [prefix.strip("/"), note_folder_name(code)]
    if category:
        parts.append(category)
    return "/".join(p for p in parts if p)


def unique_object_name(filename: str, keep_extension: bool = False) -> str:
    name = base_name(filename)
    stem, dot, ext = name.rpartition(".")
    if not dot:
        stem, ext = name, ""
    safe_stem = _UNSAFE_CHARS.sub("_", stem).strip("_")[:80] or "file"
    unique = f"{uuid.uuid4().hex}_{safe_stem}"
    if keep_extension and ext:
        unique = f"{unique}.{_UNSAFE_CHARS.sub('', ext).lower()}"
    return unique


async def bounded_upload(operation: Awaitable[T], timeout: float, context: dict) -> T:
    """Await an upload, turning an overrun into StorageUploadError(timeout=True)."""
    try:
        return await asyncio.wait_for(operation, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise StorageUploadError(timeout=True, context=context) from e


class StorageGateway(ABC):
    """Abstract interface for attachment object storage."""

    #: Short name used in logs and the health endpoint
    name: str = "abstract"

    @abstractmethod
    async def upload(
        self,
        content: bytes,
        category: str,
        organizing_key: str,
        filename: str,
    ) -> StoredObject:
        """
        Store `content` under the folder for `organizing_key` (the note code).

        Raises:
            StorageUploadError: transport or remote failure, with
                timeout=True when the configured upload timeout elapsed.
        """
        ...

    @abstractmethod
    async def delete(self, object_id: str, category: str) -> bool:
        ...

    @abstractmethod
    async def delete_folder(self, organizing_key: str) -> bool:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...
