"""
CodeSafe Backend — Application Package
========================================

A notepad addressed by user-chosen codes: typing a code opens its note,
creating it on first use. Notes can be locked with a PIN and carry file
attachments stored on Cloudinary.

Layers:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │  Access check (note_access)         │  ← NoteAccess tokens
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← notes, PINs, upload saga
    ├─────────────────────────────────────┤
    │  Models & Schemas │ Storage gateway │  ← SQLAlchemy, Pydantic, Cloudinary
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
