"""
Taskboard HTTP API.

The FastAPI application lives in `taskboard.api.main`; this package only
groups the server modules so the client engine can import the shared schemas
without pulling in the web stack.
"""
