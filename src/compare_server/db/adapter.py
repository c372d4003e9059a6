"""
Table Adapter

Exposes document-store style verbs (find_by_id, find, create, update_many,
paginate, ...) over one relational table so calling code keeps the method
names it used against MongoDB.

Every verb is async: the blocking DatabaseClient call runs in a worker thread.
Single-row misses return None; backend faults are logged with the table and
verb and re-raised as DatabaseError.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Mapping

from ..config.logfire_config import safe_logfire_error
from .errors import DatabaseError, ErrorCode, translate_error
from .filters import Filter, apply_filters, as_filters
from .pagination import DEFAULT_PAGE_SIZE, Page, apply_cursor, build_page
from .protocol import APIResponse, DatabaseClient

# Document-style criteria map or a parsed filter list
Criteria = Mapping[str, Any] | list[Filter] | None

# Single atomic primitive used for every counter mutation (see migrations/)
INCREMENT_RPC = "increment_counter"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def run_query(builder: Any) -> APIResponse:
    """Execute a relational query builder without blocking the event loop."""
    return await asyncio.to_thread(builder.execute)


def rows_of(response: APIResponse) -> list[dict[str, Any]]:
    data = response.data
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return list(data)


def first_row(response: APIResponse) -> dict[str, Any] | None:
    rows = rows_of(response)
    return rows[0] if rows else None


class TableAdapter:
    """MongoDB-flavoured verbs for a single table."""

    def __init__(self, table_name: str, client: DatabaseClient) -> None:
        self.table_name = table_name
        self.client = client

    def _query(self):
        return self.client.table(self.table_name)

    def _fail(self, verb: str, exc: Exception) -> DatabaseError:
        error = translate_error(exc, f"{self.table_name}.{verb}")
        safe_logfire_error("Database operation failed", table=self.table_name, operation=verb, code=error.code.value)
        return error

    async def find_by_id(self, id: Any, select: str = "*") -> dict[str, Any] | None:
        """MongoDB: Model.findById(id)"""
        try:
            response = await run_query(self._query().select(select).eq("id", id).limit(1))
        except Exception as e:
            raise self._fail("find_by_id", e) from e
        return first_row(response)

    async def find_one(self, criteria: Criteria = None, select: str = "*") -> dict[str, Any] | None:
        """MongoDB: Model.findOne({...})"""
        try:
            builder = apply_filters(self._query().select(select), as_filters(criteria))
            response = await run_query(builder.limit(1))
        except Exception as e:
            raise self._fail("find_one", e) from e
        return first_row(response)

    async def find(
        self,
        criteria: Criteria = None,
        *,
        select: str = "*",
        limit: int | None = None,
        offset: int | None = None,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        """
        MongoDB: Model.find({...})

        Args:
            criteria: exact-match values or {"$in": [...]}, {"$ne": v}, ... operators
            select: comma separated column list
            limit: maximum number of rows
            offset: rows to skip (requires ordering to be meaningful)
            order_by: "column:asc" or "column:desc"
        """
        try:
            builder = apply_filters(self._query().select(select), as_filters(criteria))
            if order_by:
                column, _, direction = order_by.partition(":")
                builder = builder.order(column, desc=direction.lower() == "desc")
            if offset:
                builder = builder.range(offset, offset + (limit or 100) - 1)
            elif limit:
                builder = builder.limit(limit)
            response = await run_query(builder)
        except Exception as e:
            raise self._fail("find", e) from e
        return rows_of(response)

    async def create(self, data: dict[str, Any]) -> dict[str, Any] | None:
        """MongoDB: Model.create({...})"""
        try:
            response = await run_query(self._query().insert({**data, "updated_at": utc_now_iso()}))
        except Exception as e:
            raise self._fail("create", e) from e
        return first_row(response)

    async def find_by_id_and_update(
        self, id: Any, updates: dict[str, Any], *, return_new: bool = True
    ) -> dict[str, Any] | None:
        """MongoDB: Model.findByIdAndUpdate(id, {...})"""
        try:
            response = await run_query(
                self._query().update({**updates, "updated_at": utc_now_iso()}).eq("id", id)
            )
        except Exception as e:
            raise self._fail("find_by_id_and_update", e) from e
        row = first_row(response)
        if not return_new:
            return {"ok": 1} if row else None
        return row

    async def update_many(self, criteria: Criteria, updates: dict[str, Any]) -> dict[str, int]:
        """MongoDB: Model.updateMany({criteria}, {updates})"""
        try:
            builder = self._query().update({**updates, "updated_at": utc_now_iso()})
            response = await run_query(apply_filters(builder, as_filters(criteria)))
        except Exception as e:
            raise self._fail("update_many", e) from e
        return {"modifiedCount": len(rows_of(response))}

    async def find_by_id_and_delete(self, id: Any) -> dict[str, Any] | None:
        """MongoDB: Model.findByIdAndDelete(id)"""
        try:
            response = await run_query(self._query().delete().eq("id", id))
        except Exception as e:
            raise self._fail("find_by_id_and_delete", e) from e
        return first_row(response)

    async def find_one_and_update(self, criteria: Criteria, updates: dict[str, Any]) -> dict[str, Any] | None:
        """MongoDB: Model.findOneAndUpdate({...}, {...}, {new: true})"""
        row = await self.find_one(criteria, select="id")
        if row is None:
            return None
        return await self.find_by_id_and_update(row["id"], updates)

    async def find_one_and_delete(self, criteria: Criteria) -> dict[str, Any] | None:
        """MongoDB: Model.findOneAndDelete({...})"""
        row = await self.find_one(criteria, select="id")
        if row is None:
            return None
        return await self.find_by_id_and_delete(row["id"])

    async def delete_many(self, criteria: Criteria) -> dict[str, int]:
        """MongoDB: Model.deleteMany({...})"""
        filters = as_filters(criteria)
        if not filters:
            raise DatabaseError(
                ErrorCode.DATABASE_ERROR,
                f"Refusing to delete every row of {self.table_name} without criteria",
                context=f"{self.table_name}.delete_many",
            )
        try:
            response = await run_query(apply_filters(self._query().delete(), filters))
        except Exception as e:
            raise self._fail("delete_many", e) from e
        return {"deletedCount": len(rows_of(response))}

    async def count_documents(self, criteria: Criteria = None) -> int:
        """MongoDB: Model.countDocuments({...})"""
        try:
            builder = apply_filters(self._query().select("id", count="exact"), as_filters(criteria))
            response = await run_query(builder)
        except Exception as e:
            raise self._fail("count_documents", e) from e
        if response.count is not None:
            return response.count
        return len(rows_of(response))

    async def upsert(
        self, criteria: Mapping[str, Any], updates: dict[str, Any], *, on_conflict: str = ""
    ) -> dict[str, Any] | None:
        """MongoDB: Model.findOneAndUpdate({...}, {...}, {upsert: true})"""
        payload = {**criteria, **updates, "updated_at": utc_now_iso()}
        try:
            response = await run_query(self._query().upsert(payload, on_conflict=on_conflict))
        except Exception as e:
            raise self._fail("upsert", e) from e
        return first_row(response)

    async def upsert_many(self, rows: list[dict[str, Any]], *, on_conflict: str = "") -> list[dict[str, Any]]:
        """MongoDB: Model.bulkWrite([{updateOne: {..., upsert: true}}, ...])"""
        if not rows:
            return []
        stamp = utc_now_iso()
        payload = [{**row, "updated_at": stamp} for row in rows]
        try:
            response = await run_query(self._query().upsert(payload, on_conflict=on_conflict))
        except Exception as e:
            raise self._fail("upsert_many", e) from e
        return rows_of(response)

    async def paginate(
        self,
        criteria: Criteria = None,
        *,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: Any = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        select: str = "*",
    ) -> Page:
        """Cursor-based pagination (MongoDB: Model.find().sort().limit())"""
        try:
            builder = apply_filters(self._query().select(select), as_filters(criteria))
            builder = apply_cursor(builder, sort_by, sort_order, cursor, limit)
            response = await run_query(builder)
        except Exception as e:
            raise self._fail("paginate", e) from e
        return build_page(rows_of(response), limit, sort_by)

    async def increment(
        self,
        match_column: str,
        match_value: Any,
        column: str,
        amount: int | float = 1,
        *,
        floor: int | float | None = None,
    ) -> int | float | None:
        """
        Atomically add amount to a numeric column (MongoDB: $inc).

        Args:
            floor: lower bound applied server-side to the new value

        Returns:
            The new value, or None when no row matched.
        """
        params = {
            "p_table": self.table_name,
            "p_match_column": match_column,
            "p_match_value": str(match_value),
            "p_column": column,
            "p_amount": amount,
            "p_floor": floor,
        }
        try:
            response = await run_query(self.client.rpc(INCREMENT_RPC, params))
        except Exception as e:
            raise self._fail("increment", e) from e
        row = first_row(response)
        if row is None:
            return None
        return row.get("new_value")


TABLES = (
    "profiles",
    "comparison_sessions",
    "scoring_templates",
    "model_benchmarks",
    "files",
    "transactions",
    "roles",
    "groups",
)


def create_adapters(client: DatabaseClient) -> dict[str, TableAdapter]:
    """One adapter per known table, sharing the process-wide client."""
    return {name: TableAdapter(name, client) for name in TABLES}
