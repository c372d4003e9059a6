"""
Client Manager Service

Manages backend client connections for the active DB_MODE.
The relational implementation is controlled by DB_PROVIDER (default: supabase).
"""

from __future__ import annotations

from typing import Any

from ..config.logfire_config import get_logger
from ..db.factory import get_db_client, reset_db_client
from ..db.protocol import DatabaseClient
from ..models.router import get_data_access, reset_data_access

logger = get_logger(__name__)


def get_supabase_client() -> DatabaseClient:
    """
    Backward-compatible alias for get_db_client().
    Returns the active DatabaseClient as configured by DB_PROVIDER.
    """
    return get_db_client()


async def connect_db() -> Any:
    """
    Connect the active backend once; later calls reuse the same handle.

    Raises:
        DatabaseError: with code CONNECTION_ERROR when the backend is unreachable.
    """
    data_access = get_data_access()
    handle = await data_access.connect()
    logger.info(f"Database ready (mode={data_access.mode.value})")
    return handle


def reset_clients() -> None:
    """Drop every cached client (tests only)."""
    reset_data_access()
    reset_db_client()


__all__ = [
    "get_supabase_client",
    "get_db_client",
    "reset_db_client",
    "connect_db",
    "reset_clients",
    "DatabaseClient",
]
