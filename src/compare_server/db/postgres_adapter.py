"""
PostgreSQL Database Client Adapter

Direct psycopg2-based implementation of DatabaseClient.
Implements the same fluent query builder API as supabase-py so the entity
models work without modification against a self-hosted PostgreSQL database.

Active when DB_MODE=supabase, DB_PROVIDER=postgres and POSTGRES_DSN is set.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from decimal import Decimal
from enum import Enum, auto
from typing import Any

import psycopg2
import psycopg2.extras
import psycopg2.pool
from psycopg2 import sql

from .errors import translate_error
from .protocol import APIResponse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


class _Op(Enum):
    SELECT = auto()
    INSERT = auto()
    UPDATE = auto()
    DELETE = auto()
    UPSERT = auto()


class _Filter:
    __slots__ = ("kind", "column", "value")

    def __init__(self, kind: str, column: str, value: Any) -> None:
        self.kind = kind  # "eq" | "neq" | "in" | "gt" | "lt" | "gte" | "lte" | "ilike" | "is" | "contains"
        self.column = column
        self.value = value


_COMPARISONS = {"eq": "=", "neq": "!=", "gt": ">", "lt": "<", "gte": ">=", "lte": "<="}

# ON CONFLICT targets for tables written through upsert()
_CONFLICT_COLUMNS = {
    "profiles": "id",
    "comparison_sessions": "id",
    "files": "file_id",
    "scoring_templates": "id",
    "transactions": "id",
}


def _adapt_value(v: Any) -> Any:
    """Convert Python objects to psycopg2-compatible types."""
    if isinstance(v, (dict, list)):
        return psycopg2.extras.Json(v)
    return v


def _normalize_value(v: Any) -> Any:
    """Convert driver types to the JSON-compatible values PostgREST would return."""
    if isinstance(v, dt.datetime):
        if v.tzinfo is None:
            v = v.replace(tzinfo=dt.timezone.utc)
        return v.isoformat()
    if isinstance(v, dt.date):
        return v.isoformat()
    if isinstance(v, Decimal):
        return int(v) if v == v.to_integral_value() else float(v)
    if isinstance(v, uuid.UUID):
        return str(v)
    return v


def _normalize_row(row: dict[str, Any]) -> dict[str, Any]:
    return {k: _normalize_value(v) for k, v in row.items()}


def _column(column: str) -> sql.Composable:
    """Render a column reference, including JSON paths such as metadata->>context."""
    for arrow in ("->>", "->"):
        if arrow in column:
            base, key = column.split(arrow, 1)
            return sql.SQL("{} {} {}").format(
                sql.Identifier(base.strip()), sql.SQL(arrow), sql.Literal(key.strip())
            )
    return sql.Identifier(column)


def _columns(columns: str) -> sql.Composable:
    if columns.strip() == "*":
        return sql.SQL("*")
    names = [c.strip() for c in columns.split(",") if c.strip()]
    return sql.SQL(", ").join(sql.Identifier(n) for n in names)


def _build_where(filters: list[_Filter]) -> tuple[sql.Composable, list[Any]]:
    """Build WHERE clause and parameters list from filters."""
    if not filters:
        return sql.SQL(""), []
    clauses: list[sql.Composable] = []
    params: list[Any] = []
    for f in filters:
        col = _column(f.column)
        if f.kind in _COMPARISONS:
            clauses.append(sql.SQL("{} {} %s").format(col, sql.SQL(_COMPARISONS[f.kind])))
            params.append(_adapt_value(f.value))
        elif f.kind == "in":
            if not f.value:
                clauses.append(sql.SQL("FALSE"))
                continue
            clauses.append(sql.SQL("{} IN %s").format(col))
            params.append(tuple(f.value))
        elif f.kind == "ilike":
            clauses.append(sql.SQL("{} ILIKE %s").format(col))
            params.append(f.value)
        elif f.kind == "is":
            literal = {None: "NULL", True: "TRUE", False: "FALSE"}[f.value]
            clauses.append(sql.SQL("{} IS {}").format(col, sql.SQL(literal)))
        elif f.kind == "contains":
            clauses.append(sql.SQL("{} @> %s").format(col))
            params.append(psycopg2.extras.Json(f.value))
        else:
            raise ValueError(f"Unsupported filter kind: {f.kind}")
    return sql.SQL("WHERE ") + sql.SQL(" AND ").join(clauses), params


def _insert_values(rows: list[dict[str, Any]]) -> tuple[list[str], sql.Composable, list[Any]]:
    cols = list(rows[0].keys())
    row_placeholders = sql.SQL("(") + sql.SQL(", ").join(sql.Placeholder() * len(cols)) + sql.SQL(")")
    all_placeholders = sql.SQL(", ").join([row_placeholders] * len(rows))
    params: list[Any] = []
    for row in rows:
        for col in cols:
            params.append(_adapt_value(row.get(col)))
    return cols, all_placeholders, params


# ---------------------------------------------------------------------------
# Table Query Builder
# ---------------------------------------------------------------------------


class PostgresTableQueryBuilder:
    """
    Fluent query builder that mirrors supabase-py's QueryRequestBuilder interface.
    Builds and executes a single SQL statement per execute() call
    (plus a COUNT statement when an exact count is requested).
    """

    def __init__(self, pool: psycopg2.pool.ThreadedConnectionPool, table: str) -> None:
        self._pool = pool
        self._table = table
        self._op: _Op | None = None
        self._columns: str = "*"
        self._count: str | None = None
        self._data: dict[str, Any] | list[dict[str, Any]] | None = None
        self._on_conflict: str = ""
        self._filters: list[_Filter] = []
        self._orders: list[tuple[str, bool]] = []  # (column, desc)
        self._limit_val: int | None = None
        self._offset_val: int | None = None

    # --- Column selection ---

    def select(self, columns: str = "*", count: str | None = None) -> "PostgresTableQueryBuilder":
        # select() after a mutation only narrows the RETURNING list
        if self._op is None:
            self._op = _Op.SELECT
        self._columns = columns
        self._count = count
        return self

    # --- Mutations ---

    def insert(
        self, data: dict[str, Any] | list[dict[str, Any]]
    ) -> "PostgresTableQueryBuilder":
        self._op = _Op.INSERT
        self._data = data
        return self

    def update(self, data: dict[str, Any]) -> "PostgresTableQueryBuilder":
        self._op = _Op.UPDATE
        self._data = data
        return self

    def delete(self) -> "PostgresTableQueryBuilder":
        self._op = _Op.DELETE
        return self

    def upsert(
        self,
        data: dict[str, Any] | list[dict[str, Any]],
        on_conflict: str = "",
    ) -> "PostgresTableQueryBuilder":
        self._op = _Op.UPSERT
        self._data = data
        self._on_conflict = on_conflict
        return self

    # --- Filters ---

    def _add(self, kind: str, column: str, value: Any) -> "PostgresTableQueryBuilder":
        self._filters.append(_Filter(kind, column, value))
        return self

    def eq(self, column: str, value: Any) -> "PostgresTableQueryBuilder":
        return self._add("eq", column, value)

    def neq(self, column: str, value: Any) -> "PostgresTableQueryBuilder":
        return self._add("neq", column, value)

    def in_(self, column: str, values: list[Any]) -> "PostgresTableQueryBuilder":
        return self._add("in", column, values)

    def gt(self, column: str, value: Any) -> "PostgresTableQueryBuilder":
        return self._add("gt", column, value)

    def lt(self, column: str, value: Any) -> "PostgresTableQueryBuilder":
        return self._add("lt", column, value)

    def gte(self, column: str, value: Any) -> "PostgresTableQueryBuilder":
        return self._add("gte", column, value)

    def lte(self, column: str, value: Any) -> "PostgresTableQueryBuilder":
        return self._add("lte", column, value)

    def ilike(self, column: str, pattern: str) -> "PostgresTableQueryBuilder":
        return self._add("ilike", column, pattern)

    def is_(self, column: str, value: bool | None) -> "PostgresTableQueryBuilder":
        return self._add("is", column, value)

    def contains(
        self, column: str, value: list[Any] | dict[str, Any]
    ) -> "PostgresTableQueryBuilder":
        return self._add("contains", column, value)

    # --- Ordering / pagination ---

    def order(self, column: str, *, desc: bool = False) -> "PostgresTableQueryBuilder":
        self._orders.append((column, desc))
        return self

    def limit(self, count: int) -> "PostgresTableQueryBuilder":
        self._limit_val = count
        return self

    def range(self, start: int, end: int) -> "PostgresTableQueryBuilder":
        self._offset_val = start
        self._limit_val = end - start + 1
        return self

    # --- Execution ---

    def execute(self) -> APIResponse:
        conn = self._pool.getconn()
        try:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                statement, params = self._build_sql()
                logger.debug("PostgreSQL execute: %s | params=%s", statement.as_string(conn), params)
                cur.execute(statement, params)
                rows = cur.fetchall() if cur.description else []
                data = [_normalize_row(dict(r)) for r in rows]

                count = None
                if self._count and self._op is _Op.SELECT:
                    count_sql, count_params = self._build_count_sql()
                    cur.execute(count_sql, count_params)
                    count = int(cur.fetchone()["count"])
                conn.commit()
                return APIResponse(data=data, count=count)
        except psycopg2.Error as e:
            conn.rollback()
            raise translate_error(e, f"postgres:{self._table}") from e
        finally:
            self._pool.putconn(conn)

    # --- Internal SQL builder ---

    def _returning(self) -> sql.Composable:
        return sql.SQL(" RETURNING ") + _columns(self._columns)

    def _build_count_sql(self) -> tuple[sql.Composable, list[Any]]:
        where_clause, where_params = _build_where(self._filters)
        statement = sql.SQL("SELECT COUNT(*) AS count FROM {} {}").format(
            sql.Identifier(self._table), where_clause
        )
        return statement, where_params

    def _build_sql(self) -> tuple[sql.Composable, list[Any]]:
        tbl = sql.Identifier(self._table)
        where_clause, where_params = _build_where(self._filters)

        if self._op is _Op.SELECT:
            statement = sql.SQL("SELECT {} FROM {} {}").format(_columns(self._columns), tbl, where_clause)
            if self._orders:
                order_parts = [
                    sql.SQL("{} {}").format(_column(col), sql.SQL("DESC" if d else "ASC"))
                    for col, d in self._orders
                ]
                statement += sql.SQL(" ORDER BY ") + sql.SQL(", ").join(order_parts)
            if self._limit_val is not None:
                statement += sql.SQL(" LIMIT {}").format(sql.Literal(int(self._limit_val)))
            if self._offset_val:
                statement += sql.SQL(" OFFSET {}").format(sql.Literal(int(self._offset_val)))
            return statement, where_params

        if self._op in (_Op.INSERT, _Op.UPSERT):
            rows = self._data if isinstance(self._data, list) else [self._data]
            if not rows:
                return sql.SQL("SELECT * FROM {} WHERE FALSE").format(tbl), []
            cols, placeholders, params = _insert_values(rows)
            statement = sql.SQL("INSERT INTO {} ({}) VALUES {}").format(
                tbl, sql.SQL(", ").join(sql.Identifier(c) for c in cols), placeholders
            )
            if self._op is _Op.UPSERT:
                statement += self._conflict_clause(cols)
            return statement + self._returning(), params

        if self._op is _Op.UPDATE:
            data = self._data or {}
            set_parts = [sql.SQL("{} = %s").format(sql.Identifier(k)) for k in data]
            set_params = [_adapt_value(v) for v in data.values()]
            statement = sql.SQL("UPDATE {} SET {} {}").format(
                tbl, sql.SQL(", ").join(set_parts), where_clause
            )
            return statement + self._returning(), set_params + where_params

        if self._op is _Op.DELETE:
            statement = sql.SQL("DELETE FROM {} {}").format(tbl, where_clause)
            return statement + self._returning(), where_params

        raise ValueError(f"No operation set on query builder for table {self._table}")

    def _conflict_clause(self, cols: list[str]) -> sql.Composable:
        conflict_target = self._on_conflict or _CONFLICT_COLUMNS.get(self._table, "")
        # Never overwrite the conflict key, the primary key or the creation stamp
        exclude_cols = {conflict_target, "id", "created_at"}
        update_parts = [
            sql.SQL("{0} = EXCLUDED.{0}").format(sql.Identifier(k))
            for k in cols
            if k not in exclude_cols
        ]
        if conflict_target and update_parts:
            return sql.SQL(" ON CONFLICT ({}) DO UPDATE SET {}").format(
                sql.Identifier(conflict_target), sql.SQL(", ").join(update_parts)
            )
        return sql.SQL(" ON CONFLICT DO NOTHING")


# ---------------------------------------------------------------------------
# RPC Query Builder
# ---------------------------------------------------------------------------


class PostgresRpcQueryBuilder:
    """
    Executes a stored PostgreSQL function (equivalent to supabase .rpc()).
    Functions used by the entity models return a table so results are always rows.
    """

    def __init__(
        self, pool: psycopg2.pool.ThreadedConnectionPool, func: str, params: dict[str, Any]
    ) -> None:
        self._pool = pool
        self._func = func
        self._params = params

    def execute(self) -> APIResponse:
        conn = self._pool.getconn()
        try:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                named = sql.SQL(", ").join(
                    sql.SQL("{} => %s").format(sql.Identifier(k)) for k in self._params
                )
                statement = sql.SQL("SELECT * FROM {}({})").format(sql.Identifier(self._func), named)
                param_vals = [_adapt_value(v) for v in self._params.values()]
                logger.debug("PostgreSQL RPC: %s | params=%s", self._func, list(self._params.keys()))
                cur.execute(statement, param_vals)
                rows = cur.fetchall() if cur.description else []
                conn.commit()
                return APIResponse(data=[_normalize_row(dict(r)) for r in rows])
        except psycopg2.Error as e:
            conn.rollback()
            raise translate_error(e, f"postgres:rpc:{self._func}") from e
        finally:
            self._pool.putconn(conn)


# ---------------------------------------------------------------------------
# Main adapter class
# ---------------------------------------------------------------------------


class PostgresDatabaseClient:
    """
    PostgreSQL-backed implementation of DatabaseClient.
    Uses psycopg2 with a threaded connection pool.
    Expects the schema from migrations/001_comparison_schema.sql.
    """

    def __init__(self, dsn: str, min_conn: int = 1, max_conn: int = 10) -> None:
        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(min_conn, max_conn, dsn=dsn)
            logger.info("PostgresDatabaseClient initialized (pool min=%d max=%d)", min_conn, max_conn)
        except psycopg2.Error as e:
            raise translate_error(e, "postgres:connect") from e

    def table(self, name: str) -> PostgresTableQueryBuilder:
        return PostgresTableQueryBuilder(self._pool, name)

    def rpc(self, name: str, params: dict[str, Any]) -> PostgresRpcQueryBuilder:
        return PostgresRpcQueryBuilder(self._pool, name, params)

    def close(self) -> None:
        """Close all connections in the pool."""
        self._pool.closeall()
        logger.info("PostgresDatabaseClient pool closed")
