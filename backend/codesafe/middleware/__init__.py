# Middleware package init
"""
CodeSafe Backend — Middleware Package
=======================================

Middleware Chain:
    Request → [Rate Limit] → [Request ID] → [Logging] → [Session] → [GZip] → [CORS] → Route

    1. Rate Limit first: rejected requests cost nothing further
    2. Request ID: correlation id for log lines and error bodies
    3. Logging: one access line per request, note codes redacted
    4. Session: Starlette's signed cookie session holding PIN flags
"""
