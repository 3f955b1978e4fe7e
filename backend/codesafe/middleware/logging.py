"""
CodeSafe Backend — Request Logging Middleware
===============================================

What:  One access log line per HTTP request.
How:   Measures duration around call_next, logs method, path, status and
       request id at a level chosen by status.
When:  After RequestIDMiddleware (uses request ID for correlation).

Privacy:
    Note codes appear in URL paths and whoever knows a code can open an
    unlocked note, so the code segment is replaced by "{code}" before the
    path is logged. Bodies (content, PINs, files) are never logged.
"""

import logging
import re
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from codesafe.middleware.request_id import request_id_var

logger = logging.getLogger("codesafe.access")

_NOTE_PATH = re.compile(r"^/api/notes/(?!open$)[^/]+")


def redact_path(path: str) -> str:
    """'/api/notes/my-secret/pin' → '/api/notes/{code}/pin'"""
    return _NOTE_PATH.sub("/api/notes/{code}", path)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Level by status: 5xx → ERROR, 4xx → WARNING, otherwise INFO.
    /health is not logged.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path == "/health":
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        method = request.method
        path = redact_path(request.url.path)
        rid = request_id_var.get("")

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )

        return response
