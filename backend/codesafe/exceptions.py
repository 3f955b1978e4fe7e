"""
CodeSafe Backend — Custom Exception Hierarchy
===============================================

What:  Application-specific exceptions for the note, PIN and attachment flows.
Why:   Each failure kind maps to one HTTP status and one user-facing message,
       so services can raise without knowing about HTTP.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses.
Who:   Raised by services; caught by global handlers.

Exception Hierarchy:
    CodeSafeError (base)
    ├── ValidationError               → 400 Bad Request (client can fix)
    ├── NotFoundError                 → 404 Not Found
    ├── NoteAlreadyExistsError        → 409 Conflict
    ├── PinVerificationRequiredError  → 401 (soft redirect to PIN entry)
    ├── AccessDeniedError             → 403 Forbidden
    │   └── InvalidPinError           → 403 Forbidden (wrong PIN)
    ├── StorageUploadError            → 504 on timeout, 502 otherwise
    ├── AttachmentPersistError        → 500 (compensated or orphaned)
    ├── DatabaseError                 → 500 Internal Server Error
    └── RateLimitExceededError        → 429 Too Many Requests

Validation failures are expected outcomes of user input. They are logged at
INFO by the handlers, never as failures.
"""

from typing import Any, Dict, Optional


class CodeSafeError(Exception):
    """
    Base exception for all CodeSafe application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged, returned only by handlers
                  that explicitly expose it)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(CodeSafeError):
    """
    Raised when client input fails a business rule.

    When:    Missing fields, PIN too short, confirmation mismatch, file type
             or size rejected, content too long.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(CodeSafeError):
    """
    Raised when a requested resource does not exist.

    HTTP:    404 Not Found
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class NoteAlreadyExistsError(CodeSafeError):
    """
    Raised when creating a note whose code is already taken.

    The unique index on notes.code decides the race between two concurrent
    creators; the loser gets this error.
    HTTP:    409 Conflict
    """

    def __init__(self, code: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            message="A note with this code already exists",
            context=context,
        )
        self.code = code


class PinVerificationRequiredError(CodeSafeError):
    """
    Raised when a PIN-protected note is accessed without a verified session.

    Not an error from the user's point of view: the client should show the
    PIN entry form for `code` and call the verify endpoint.
    HTTP:    401 Unauthorized
    """

    def __init__(self, code: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            message="This note is protected. Enter its PIN to continue.",
            context=context,
        )
        self.code = code


class AccessDeniedError(CodeSafeError):
    """
    Raised when access is refused outright.

    HTTP:    403 Forbidden
    """

    def __init__(
        self,
        message: str = "Access denied",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class InvalidPinError(AccessDeniedError):
    """Raised when a supplied PIN does not match the note's PIN."""

    def __init__(
        self,
        message: str = "Invalid PIN. Please try again.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class StorageUploadError(CodeSafeError):
    """
    Raised when the remote object store rejects or fails an upload.

    What:    The gateway wraps every transport or remote failure in this
             exception. `timeout` separates "the upload took too long" from
             "the store failed", since the user advice differs.
    HTTP:    504 Gateway Timeout when timeout, else 502 Bad Gateway
    """

    def __init__(
        self,
        message: Optional[str] = None,
        timeout: bool = False,
        context: Optional[Dict[str, Any]] = None,
    ):
        if message is None:
            if timeout:
                message = (
                    "Upload timed out. Please try with a smaller file "
                    "or check your internet connection."
                )
            else:
                message = "File storage is temporarily unavailable. Please try again later."
        ctx = context or {}
        ctx["timeout"] = timeout
        super().__init__(message=message, context=ctx)
        self.timeout = timeout

    @property
    def status_code(self) -> int:
        return 504 if self.timeout else 502


class AttachmentPersistError(CodeSafeError):
    """
    Raised when an uploaded object could not be recorded in the database.

    Outcomes:
        compensated=True:   the remote object was deleted again; nothing leaked
        compensated=False:  the remote delete also failed; `orphaned_object_id`
                            names the object for out-of-band reconciliation

    The database error is kept as `original_error` and chained as __cause__.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        original_error: BaseException,
        compensated: bool,
        orphaned_object_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["compensated"] = compensated
        if orphaned_object_id:
            ctx["orphaned_object_id"] = orphaned_object_id
        super().__init__(
            message="The file could not be saved. Please try again.",
            context=ctx,
        )
        self.original_error = original_error
        self.compensated = compensated
        self.orphaned_object_id = orphaned_object_id


class DatabaseError(CodeSafeError):
    """
    Raised when database operations fail unexpectedly.

    The message returned to the client is always generic; details are
    logged server-side only.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(CodeSafeError):
    """
    Raised when a client exceeds the per-IP request rate limit.

    HTTP:    429 Too Many Requests
    """

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
