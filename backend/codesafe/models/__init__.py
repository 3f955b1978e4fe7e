# Models package init
"""
CodeSafe Backend — ORM Models Package

Models:
    - note.py:  Note (notes table), Attachment (attachments table)
"""
