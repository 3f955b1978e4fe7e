# Services package init
"""
CodeSafe Backend — Services Layer
===================================

Service Inventory:
    - file_rules:          FileRules, the immutable attachment policy
    - pin_cipher:          AES-GCM encryption of note PINs
    - note_access:         access decisions, PIN verification, NoteAccess tokens
    - note_service:        note lifecycle and PIN changes
    - attachment_service:  upload saga, listing and deletes
    - storage_base:        StorageGateway interface and naming helpers
    - cloudinary_storage:  production gateway
    - local_storage:       filesystem gateway for development and tests
"""
