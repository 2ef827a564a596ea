"""HTTP bridge for Komi Shelf.

Serves /api for the local UI: scan, refresh, item edits, taxonomy, settings
and progress as JSON request/response calls.
"""

from .router import router

__all__ = ["router"]
