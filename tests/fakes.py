"""
In-memory DatabaseClient used by the relational tests.

Implements the TableQueryBuilder protocol over plain lists of dicts, with the
column defaults and the two routines the schema provides
(increment_counter, get_remaining_comparisons).
"""

from __future__ import annotations

import copy
import json
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from compare_server.db.protocol import APIResponse

PLAN_LIMITS = {"free": 10, "trial": 50}

TABLE_DEFAULTS: dict[str, dict[str, Any]] = {
    "profiles": {
        "role": "user",
        "provider": "email",
        "email_verified": False,
        "subscription_plan": "free",
        "comparisons_count": 0,
        "preferences": {},
        "token_balance": 0,
        "auto_refill_enabled": False,
        "deleted_at": None,
    },
    "comparison_sessions": {
        "user_id": None,
        "title": None,
        "prompt": {},
        "models": [],
        "responses": [],
        "scores": {},
        "file_ids": [],
        "metadata": {},
        "is_archived": False,
        "expired_at": None,
    },
    "files": {"usage_count": 0, "metadata": {}, "expires_at": None, "source": "local"},
    "scoring_templates": {
        "name": "Untitled Template",
        "criteria": [],
        "category": "general",
        "is_public": False,
        "is_default": False,
        "order": None,
        "usage_count": 0,
        "metadata": {},
    },
    "transactions": {"currency": "credits", "metadata": {}},
}

# Columns generated by the database when absent
GENERATED_ID_TABLES = {"comparison_sessions", "files", "scoring_templates", "transactions"}


def _parse_time(value: Any) -> datetime | None:
    if not isinstance(value, str) or len(value) < 19 or value[4] != "-":
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _comparable(a: Any, b: Any) -> tuple[Any, Any]:
    ta, tb = _parse_time(a), _parse_time(b)
    if ta is not None and tb is not None:
        return ta, tb
    return a, b


def resolve(row: dict[str, Any], column: str) -> Any:
    """Column value, following "col->key" (JSON) and "col->>key" (text) paths."""
    if "->>" in column:
        base, key = column.split("->>", 1)
        value = (row.get(base) or {}).get(key)
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value)
    if "->" in column:
        base, key = column.split("->", 1)
        return (row.get(base) or {}).get(key)
    return row.get(column)


class FakeQuery:
    def __init__(self, client: "InMemoryDatabaseClient", table: str) -> None:
        self.client = client
        self.table = table
        self.operation = "select"
        self.columns = "*"
        self.count_mode: str | None = None
        self.payload: Any = None
        self.on_conflict = ""
        self.filters: list[tuple[str, str, Any]] = []
        self.orders: list[tuple[str, bool]] = []
        self.limit_count: int | None = None
        self.offset = 0

    # Column selection / mutation
    def select(self, columns: str = "*", count: str | None = None) -> "FakeQuery":
        self.columns = columns
        self.count_mode = count
        return self

    def insert(self, data: Any) -> "FakeQuery":
        self.operation, self.payload = "insert", data
        return self

    def update(self, data: dict[str, Any]) -> "FakeQuery":
        self.operation, self.payload = "update", data
        return self

    def delete(self) -> "FakeQuery":
        self.operation = "delete"
        return self

    def upsert(self, data: Any, on_conflict: str = "") -> "FakeQuery":
        self.operation, self.payload, self.on_conflict = "upsert", data, on_conflict
        return self

    # Filters
    def _filter(self, op: str, column: str, value: Any) -> "FakeQuery":
        self.filters.append((op, column, value))
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        return self._filter("eq", column, value)

    def neq(self, column: str, value: Any) -> "FakeQuery":
        return self._filter("neq", column, value)

    def in_(self, column: str, values: list[Any]) -> "FakeQuery":
        return self._filter("in", column, list(values))

    def gt(self, column: str, value: Any) -> "FakeQuery":
        return self._filter("gt", column, value)

    def lt(self, column: str, value: Any) -> "FakeQuery":
        return self._filter("lt", column, value)

    def gte(self, column: str, value: Any) -> "FakeQuery":
        return self._filter("gte", column, value)

    def lte(self, column: str, value: Any) -> "FakeQuery":
        return self._filter("lte", column, value)

    def ilike(self, column: str, pattern: str) -> "FakeQuery":
        return self._filter("ilike", column, pattern)

    def is_(self, column: str, value: Any) -> "FakeQuery":
        return self._filter("is", column, value)

    def contains(self, column: str, value: Any) -> "FakeQuery":
        return self._filter("contains", column, value)

    # Ordering / pagination
    def order(self, column: str, *, desc: bool = False) -> "FakeQuery":
        self.orders.append((column, desc))
        return self

    def limit(self, count: int) -> "FakeQuery":
        self.limit_count = count
        return self

    def range(self, start: int, end: int) -> "FakeQuery":
        self.offset = start
        self.limit_count = end - start + 1
        return self

    # Evaluation
    def filter_value(self, column: str) -> Any:
        """Value of the first eq filter on column (used by failure hooks)."""
        return next((v for op, c, v in self.filters if op == "eq" and c == column), None)

    def _matches(self, row: dict[str, Any]) -> bool:
        for op, column, operand in self.filters:
            value = resolve(row, column)
            if op == "eq":
                if isinstance(operand, bool):
                    if value is not operand:
                        return False
                elif value is None or str(value) != str(operand):
                    return False
            elif op == "neq":
                if value is None or value == operand:
                    return False
            elif op == "in":
                if value is None or str(value) not in {str(v) for v in operand}:
                    return False
            elif op in ("gt", "lt", "gte", "lte"):
                if value is None:
                    return False
                a, b = _comparable(value, operand)
                if not {"gt": a > b, "lt": a < b, "gte": a >= b, "lte": a <= b}[op]:
                    return False
            elif op == "ilike":
                regex = ".*".join(re.escape(part) for part in operand.split("%"))
                if value is None or not re.fullmatch(regex, str(value), re.IGNORECASE | re.DOTALL):
                    return False
            elif op == "is":
                if value is not operand:
                    return False
            elif op == "contains":
                if isinstance(operand, dict):
                    if not isinstance(value, dict) or any(value.get(k) != v for k, v in operand.items()):
                        return False
                elif not isinstance(value, list) or any(item not in value for item in operand):
                    return False
        return True

    def _project(self, row: dict[str, Any]) -> dict[str, Any]:
        row = copy.deepcopy(row)
        if self.columns.strip() == "*":
            return row
        wanted = [c.strip() for c in self.columns.split(",") if c.strip()]
        return {c: row.get(c) for c in wanted}

    def _sorted(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for column, desc in reversed(self.orders):
            present = [r for r in rows if resolve(r, column) is not None]
            missing = [r for r in rows if resolve(r, column) is None]
            present.sort(key=lambda r: _comparable(resolve(r, column), resolve(r, column))[0], reverse=desc)
            # NULLS FIRST for descending, NULLS LAST for ascending
            rows = missing + present if desc else present + missing
        return rows

    def _window(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        rows = rows[self.offset:]
        if self.limit_count is not None:
            rows = rows[: self.limit_count]
        return rows

    def execute(self) -> APIResponse:
        self.client.check_failure(self)
        store = self.client.tables.setdefault(self.table, [])

        if self.operation == "select":
            rows = self._sorted([r for r in store if self._matches(r)])
            count = len(rows) if self.count_mode == "exact" else None
            return APIResponse(data=[self._project(r) for r in self._window(rows)], count=count)

        if self.operation == "insert":
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            return APIResponse(data=[copy.deepcopy(self.client.insert_row(self.table, p)) for p in payload])

        if self.operation == "update":
            updated = []
            for row in store:
                if self._matches(row):
                    row.update(copy.deepcopy(self.payload))
                    updated.append(copy.deepcopy(row))
            return APIResponse(data=updated)

        if self.operation == "delete":
            deleted = [r for r in store if self._matches(r)]
            self.client.tables[self.table] = [r for r in store if not self._matches(r)]
            return APIResponse(data=copy.deepcopy(deleted))

        if self.operation == "upsert":
            keys = [k.strip() for k in (self.on_conflict or "id").split(",")]
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            saved = []
            for item in payload:
                existing = next(
                    (
                        r
                        for r in store
                        if all(item.get(k) is not None and str(r.get(k)) == str(item.get(k)) for k in keys)
                    ),
                    None,
                )
                if existing is not None:
                    existing.update(copy.deepcopy(item))
                    saved.append(copy.deepcopy(existing))
                else:
                    saved.append(copy.deepcopy(self.client.insert_row(self.table, item)))
            return APIResponse(data=saved)

        raise AssertionError(f"unknown operation {self.operation}")


class FakeRpc:
    def __init__(self, client: "InMemoryDatabaseClient", name: str, params: dict[str, Any]) -> None:
        self.client = client
        self.name = name
        self.params = params

    def execute(self) -> APIResponse:
        self.client.rpc_calls.append((self.name, dict(self.params)))
        handler = getattr(self.client, f"_rpc_{self.name}")
        return APIResponse(data=handler(**self.params))


class InMemoryDatabaseClient:
    """DatabaseClient test double; rows live in ``tables``."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.rpc_calls: list[tuple[str, dict[str, Any]]] = []
        self._failures: list[Callable[[FakeQuery], BaseException | None]] = []
        self._clock = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict[str, Any]) -> FakeRpc:
        return FakeRpc(self, name, params)

    # Helpers for tests
    def tick(self) -> str:
        """Strictly increasing timestamps for database-generated columns."""
        self._clock += timedelta(milliseconds=1)
        return self._clock.isoformat()

    def fail_when(self, hook: Callable[[FakeQuery], BaseException | None]) -> None:
        """Register a hook returning an exception to raise for matching queries."""
        self._failures.append(hook)

    def check_failure(self, query: FakeQuery) -> None:
        for hook in self._failures:
            exc = hook(query)
            if exc is not None:
                raise exc

    def insert_row(self, table: str, data: dict[str, Any]) -> dict[str, Any]:
        row = copy.deepcopy(TABLE_DEFAULTS.get(table, {}))
        if table in GENERATED_ID_TABLES:
            row["id"] = str(uuid.uuid4())
        stamp = self.tick()
        row["created_at"] = stamp
        row["updated_at"] = stamp
        row.update(copy.deepcopy(data))
        self.tables.setdefault(table, []).append(row)
        return row

    def seed(self, table: str, *rows: dict[str, Any]) -> list[dict[str, Any]]:
        return [copy.deepcopy(self.insert_row(table, row)) for row in rows]

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.get(table, [])

    # Routines
    def _rpc_increment_counter(
        self,
        p_table: str,
        p_match_column: str,
        p_match_value: str,
        p_column: str,
        p_amount: float = 1,
        p_floor: float | None = None,
    ) -> list[dict[str, Any]]:
        results = []
        for row in self.tables.get(p_table, []):
            if str(row.get(p_match_column)) != p_match_value:
                continue
            value = (row.get(p_column) or 0) + p_amount
            if p_floor is not None:
                value = max(value, p_floor)
            row[p_column] = value
            row["updated_at"] = self.tick()
            results.append({"new_value": value})
        return results

    def _rpc_get_remaining_comparisons(self, p_user_id: str) -> list[dict[str, Any]]:
        for row in self.tables.get("profiles", []):
            if str(row.get("id")) == str(p_user_id):
                limit = PLAN_LIMITS.get(row.get("subscription_plan"))
                remaining = None if limit is None else max(limit - (row.get("comparisons_count") or 0), 0)
                return [{"remaining": remaining}]
        return []
