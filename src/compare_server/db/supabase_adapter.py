"""
Supabase Database Client Adapter

Wraps the supabase-py Client and exposes the DatabaseClient interface.
Builder calls are handed to the PostgREST request builder as they arrive;
only execute() adds behavior, converting the response and turning APIError
into DatabaseError.

Active when DB_MODE=supabase and DB_PROVIDER=supabase (default).
"""

from __future__ import annotations

import json
from typing import Any, Callable

from postgrest.exceptions import APIError
from supabase import Client

from .errors import translate_error
from .protocol import APIResponse

# Builder verbs whose supabase-py signature already matches TableQueryBuilder
_PASSTHROUGH = frozenset(
    {
        "insert",
        "update",
        "delete",
        "upsert",
        "eq",
        "neq",
        "in_",
        "gt",
        "lt",
        "gte",
        "lte",
        "ilike",
        "order",
        "limit",
        "range",
    }
)


def _null_literal(value: bool | None) -> str:
    if value is None:
        return "null"
    return "true" if value else "false"


def _to_response(native_response: Any) -> APIResponse:
    return APIResponse(data=native_response.data, count=getattr(native_response, "count", None))


class SupabaseQuery:
    """
    One pending PostgREST request against a table.

    Each chained call replaces the wrapped request builder, so the wrapper
    can be returned from every verb like the native builder.
    """

    def __init__(self, native_builder: Any, table: str) -> None:
        self._request = native_builder
        self._table = table

    def __getattr__(self, name: str) -> Callable[..., "SupabaseQuery"]:
        if name.startswith("_") or name not in _PASSTHROUGH:
            raise AttributeError(f"{type(self).__name__} has no builder method {name!r}")
        native = getattr(self._request, name)

        def chained(*args: Any, **kwargs: Any) -> "SupabaseQuery":
            self._request = native(*args, **kwargs)
            return self

        return chained

    def select(self, columns: str = "*", count: str | None = None) -> "SupabaseQuery":
        self._request = self._request.select(columns, count=count) if count else self._request.select(columns)
        return self

    def is_(self, column: str, value: bool | None) -> "SupabaseQuery":
        self._request = self._request.is_(column, _null_literal(value))
        return self

    def contains(self, column: str, value: list[Any] | dict[str, Any]) -> "SupabaseQuery":
        # JSON paths (metadata->tags) take a JSON literal, plain columns an array or object
        operand = json.dumps(value) if "->" in column else value
        self._request = self._request.contains(column, operand)
        return self

    def execute(self) -> APIResponse:
        try:
            return _to_response(self._request.execute())
        except APIError as e:
            raise translate_error(e, f"supabase:{self._table}") from e


class SupabaseRpc:
    """A pending call to a database function exposed by PostgREST."""

    def __init__(self, native_builder: Any, func: str) -> None:
        self._request = native_builder
        self._func = func

    def execute(self) -> APIResponse:
        try:
            return _to_response(self._request.execute())
        except APIError as e:
            raise translate_error(e, f"supabase:rpc:{self._func}") from e


class SupabaseDatabaseClient:
    """
    Supabase-backed implementation of DatabaseClient.
    Uses the service-role client; row level security does not apply.
    """

    def __init__(self, native_client: Client) -> None:
        self._client = native_client

    def table(self, name: str) -> SupabaseQuery:
        return SupabaseQuery(self._client.table(name), name)

    def rpc(self, name: str, params: dict[str, Any]) -> SupabaseRpc:
        return SupabaseRpc(self._client.rpc(name, params), name)
