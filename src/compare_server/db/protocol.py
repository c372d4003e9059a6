"""
Database Client Protocol

The relational backend is reached through a small fluent builder shaped like
supabase-py's. Both the Supabase wrapper and the psycopg2 adapter satisfy
these Protocols structurally; neither inherits from them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

Row = dict[str, Any]


@dataclass
class APIResponse:
    """
    Result of one executed request.

    ``data`` holds the returned rows; ``count`` is only set when the select
    asked for an exact count.
    """

    data: list[Row] | Row | None = None
    count: int | None = None


@runtime_checkable
class TableQueryBuilder(Protocol):
    """Pending request against one table. Every verb returns the builder."""

    def select(self, columns: str = "*", count: str | None = None) -> "TableQueryBuilder": ...

    def insert(self, data: Row | list[Row]) -> "TableQueryBuilder": ...
    def update(self, data: Row) -> "TableQueryBuilder": ...
    def delete(self) -> "TableQueryBuilder": ...
    def upsert(self, data: Row | list[Row], on_conflict: str = "") -> "TableQueryBuilder": ...

    # One method per filter variant in db.filters
    def eq(self, column: str, value: Any) -> "TableQueryBuilder": ...
    def neq(self, column: str, value: Any) -> "TableQueryBuilder": ...
    def in_(self, column: str, values: list[Any]) -> "TableQueryBuilder": ...
    def gt(self, column: str, value: Any) -> "TableQueryBuilder": ...
    def lt(self, column: str, value: Any) -> "TableQueryBuilder": ...
    def gte(self, column: str, value: Any) -> "TableQueryBuilder": ...
    def lte(self, column: str, value: Any) -> "TableQueryBuilder": ...
    def ilike(self, column: str, pattern: str) -> "TableQueryBuilder": ...
    def is_(self, column: str, value: bool | None) -> "TableQueryBuilder": ...
    def contains(self, column: str, value: list[Any] | Row) -> "TableQueryBuilder": ...

    def order(self, column: str, *, desc: bool = False) -> "TableQueryBuilder": ...
    def limit(self, count: int) -> "TableQueryBuilder": ...
    def range(self, start: int, end: int) -> "TableQueryBuilder": ...

    def execute(self) -> APIResponse: ...


@runtime_checkable
class RpcQueryBuilder(Protocol):
    """Pending call to a database function (increment_counter, ...)."""

    def execute(self) -> APIResponse: ...


@runtime_checkable
class DatabaseClient(Protocol):
    """
    Handle on the relational backend.

    Implemented by SupabaseDatabaseClient (PostgREST over HTTP) and
    PostgresDatabaseClient (pooled psycopg2 connections).
    """

    def table(self, name: str) -> TableQueryBuilder: ...
    def rpc(self, name: str, params: dict[str, Any]) -> RpcQueryBuilder: ...
