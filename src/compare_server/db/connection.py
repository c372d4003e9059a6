"""
Lazy, memoized backend connection.

The first caller starts a connectivity check; every concurrent caller awaits
that same check. Once it succeeds the handle is cached for the process. When
it fails, all waiters receive the same CONNECTION_ERROR and the next call
starts one new shared attempt.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from .adapter import run_query
from .errors import DatabaseError, ErrorCode, translate_error
from .protocol import DatabaseClient

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Memoizes a single connectivity check for a shared backend handle."""

    def __init__(self, name: str, handle: Any, check: Callable[[], Awaitable[Any]]) -> None:
        self.name = name
        self._handle = handle
        self._check = check
        self._connected = False
        self._pending: asyncio.Future | None = None

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> Any:
        if self._connected:
            logger.debug("[%s] Using cached connection", self.name)
            return self._handle

        if self._pending is None:
            logger.info("[%s] Establishing new connection...", self.name)
            self._pending = asyncio.ensure_future(self._run_check())

        pending = self._pending
        try:
            return await asyncio.shield(pending)
        finally:
            if pending.done() and self._pending is pending and not self._connected:
                # Failed check: let the next caller try again
                self._pending = None

    async def _run_check(self) -> Any:
        try:
            await self._check()
        except Exception as e:
            error = translate_error(e, f"{self.name}.connect")
            logger.error("[%s] Connection failed: %s", self.name, error.message)
            raise DatabaseError(
                ErrorCode.CONNECTION_ERROR,
                f"Failed to connect to {self.name}",
                details=error.message,
                context=f"{self.name}.connect",
            ) from e
        self._connected = True
        logger.info("[%s] Connected successfully", self.name)
        return self._handle


def relational_connection(client: DatabaseClient) -> ConnectionManager:
    async def check() -> None:
        await run_query(client.table("profiles").select("id").limit(1))

    return ConnectionManager("supabase", client, check)


def mongo_connection(database: Any) -> ConnectionManager:
    async def check() -> None:
        await asyncio.to_thread(database.client.admin.command, "ping")

    return ConnectionManager("mongodb", database, check)
