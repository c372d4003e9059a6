"""
Database abstraction layer.

Provides a unified interface for Supabase and standalone PostgreSQL backends,
the document-style TableAdapter on top of it, and the shared error taxonomy.
Controlled by the DB_PROVIDER environment variable (default: supabase).
"""

from .adapter import TableAdapter, create_adapters
from .errors import DatabaseError, ErrorCode, OperationNotImplementedError
from .factory import get_anon_client, get_db_client, reset_db_client
from .pagination import Page
from .protocol import APIResponse, DatabaseClient

__all__ = [
    "get_db_client",
    "get_anon_client",
    "reset_db_client",
    "DatabaseClient",
    "APIResponse",
    "TableAdapter",
    "create_adapters",
    "DatabaseError",
    "ErrorCode",
    "OperationNotImplementedError",
    "Page",
]
