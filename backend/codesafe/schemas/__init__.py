# Schemas package init
"""
CodeSafe Backend — API Schemas Package

Schemas:
    - note.py:        note, PIN and error/health payloads
    - attachment.py:  attachment payloads
"""
