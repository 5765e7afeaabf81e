"""
API module for the Megamarket server.

This module provides the external interface:
- HTTP server (FastAPI REST API)

Invariants:
    - Handlers only parse, call CatalogService and render
    - Core errors map to 400/404/409 with a {"code", "message"} body

How to change safely:
    - Keep endpoint paths and field names stable, clients depend on them
"""

from .http_server import create_app, format_timestamp

__all__ = [
    "create_app",
    "format_timestamp",
]
