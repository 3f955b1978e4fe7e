# Routes package init
"""
CodeSafe Backend — API Routes Package
=======================================

Route Inventory:
    - notes.py:        POST /api/notes/open                  (open or create by code)
                       POST /api/notes                       (strict create)
                       GET  /api/notes/{code}                (read)
                       PUT  /api/notes/{code}/content        (save)
                       POST /api/notes/{code}/verify-pin     (verify PIN for session)
                       POST /api/notes/{code}/pin            (set PIN)
                       PUT  /api/notes/{code}/pin            (change PIN)
                       POST /api/notes/{code}/pin/remove     (remove PIN)
                       POST /api/notes/{code}/destroy        (delete note + files)
    - attachments.py:  POST   /api/notes/{code}/attachments
                       GET    /api/notes/{code}/attachments
                       GET    /api/notes/{code}/attachments/{id}/download
                       DELETE /api/notes/{code}/attachments/{id}
                       GET    /api/attachments/supported-types
                       GET    /api/files/{path}              (local backend only)
    - health.py:       GET  /health
    - dependencies.py: PIN store and note access dependencies

Routes stay thin: they read the request, call a service and shape the
response. Business rules live in services.
"""
