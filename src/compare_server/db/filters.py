"""
Filter variants for the query adapter.

Document-style criteria ({"user_id": "u1", "file_id": {"$in": [...]}}) are
parsed once into a list of tagged filter objects. Each backend renders the
same list: relational builders through apply_filters(), MongoDB through
to_mongo_query().
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Union


@dataclass(frozen=True)
class Equals:
    column: str
    value: Any


@dataclass(frozen=True)
class NotEquals:
    column: str
    value: Any


@dataclass(frozen=True)
class In:
    column: str
    values: tuple[Any, ...]


@dataclass(frozen=True)
class GreaterThan:
    column: str
    value: Any


@dataclass(frozen=True)
class LessThan:
    column: str
    value: Any


@dataclass(frozen=True)
class GreaterOrEqual:
    column: str
    value: Any


@dataclass(frozen=True)
class LessOrEqual:
    column: str
    value: Any


@dataclass(frozen=True)
class IsNull:
    column: str


@dataclass(frozen=True)
class Like:
    """Case-insensitive substring match."""

    column: str
    text: str


@dataclass(frozen=True)
class Contains:
    """Array holds every listed element, or JSON object holds every listed key/value."""

    column: str
    value: Any


Filter = Union[
    Equals, NotEquals, In, GreaterThan, LessThan, GreaterOrEqual, LessOrEqual, IsNull, Like, Contains
]

_OPERATORS = {
    "$eq": Equals,
    "$ne": NotEquals,
    "$gt": GreaterThan,
    "$lt": LessThan,
    "$gte": GreaterOrEqual,
    "$lte": LessOrEqual,
}


def parse_criteria(criteria: Mapping[str, Any] | None) -> list[Filter]:
    """
    Translate a document-style criteria map into filter variants.

    Raises:
        ValueError: for operators the adapter does not support.
    """
    filters: list[Filter] = []
    for column, value in (criteria or {}).items():
        if value is None:
            filters.append(IsNull(column))
        elif isinstance(value, Mapping) and value and all(str(k).startswith("$") for k in value):
            for op, operand in value.items():
                if op == "$in":
                    filters.append(In(column, tuple(operand)))
                elif op == "$all":
                    filters.append(Contains(column, list(operand)))
                elif op in _OPERATORS:
                    filters.append(_OPERATORS[op](column, operand))
                else:
                    raise ValueError(f"Unsupported filter operator {op!r} on {column!r}")
        else:
            filters.append(Equals(column, value))
    return filters


def apply_filter(builder: Any, f: Filter) -> Any:
    """Apply one filter to a relational TableQueryBuilder."""
    if isinstance(f, Equals):
        return builder.eq(f.column, f.value)
    if isinstance(f, NotEquals):
        return builder.neq(f.column, f.value)
    if isinstance(f, In):
        return builder.in_(f.column, list(f.values))
    if isinstance(f, GreaterThan):
        return builder.gt(f.column, f.value)
    if isinstance(f, LessThan):
        return builder.lt(f.column, f.value)
    if isinstance(f, GreaterOrEqual):
        return builder.gte(f.column, f.value)
    if isinstance(f, LessOrEqual):
        return builder.lte(f.column, f.value)
    if isinstance(f, IsNull):
        return builder.is_(f.column, None)
    if isinstance(f, Like):
        return builder.ilike(f.column, f"%{f.text}%")
    if isinstance(f, Contains):
        return builder.contains(f.column, f.value)
    raise TypeError(f"Unhandled filter variant: {type(f).__name__}")


def apply_filters(builder: Any, filters: list[Filter]) -> Any:
    for f in filters:
        builder = apply_filter(builder, f)
    return builder


def to_mongo_query(filters: list[Filter]) -> dict[str, Any]:
    """Render filter variants as a MongoDB query document."""
    query: dict[str, Any] = {}
    for f in filters:
        if isinstance(f, Equals):
            clause: Any = f.value
        elif isinstance(f, NotEquals):
            clause = {"$ne": f.value}
        elif isinstance(f, In):
            clause = {"$in": list(f.values)}
        elif isinstance(f, GreaterThan):
            clause = {"$gt": f.value}
        elif isinstance(f, LessThan):
            clause = {"$lt": f.value}
        elif isinstance(f, GreaterOrEqual):
            clause = {"$gte": f.value}
        elif isinstance(f, LessOrEqual):
            clause = {"$lte": f.value}
        elif isinstance(f, IsNull):
            clause = None
        elif isinstance(f, Like):
            clause = {"$regex": re.escape(f.text), "$options": "i"}
        elif isinstance(f, Contains):
            if isinstance(f.value, Mapping):
                for key, value in f.value.items():
                    query[f"{f.column}.{key}"] = value
                continue
            clause = {"$all": list(f.value)}
        else:
            raise TypeError(f"Unhandled filter variant: {type(f).__name__}")

        existing = query.get(f.column)
        if isinstance(existing, dict) and isinstance(clause, dict):
            existing.update(clause)
        else:
            query[f.column] = clause
    return query


def as_filters(criteria: Mapping[str, Any] | list[Filter] | None) -> list[Filter]:
    """Accept either a criteria map or an already parsed filter list."""
    if isinstance(criteria, list):
        return criteria
    return parse_criteria(criteria)


def _lookup(doc: Mapping[str, Any], path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


def _compare(value: Any, operand: Any, op: str) -> bool:
    if value is None or operand is None:
        return False
    try:
        if op == "gt":
            return value > operand
        if op == "lt":
            return value < operand
        if op == "gte":
            return value >= operand
        return value <= operand
    except TypeError:
        return False


def _matches_one(doc: Mapping[str, Any], f: Filter) -> bool:
    value = _lookup(doc, f.column)
    if isinstance(f, Equals):
        if isinstance(value, list) and not isinstance(f.value, list):
            return f.value in value
        return value == f.value
    if isinstance(f, NotEquals):
        return value != f.value
    if isinstance(f, In):
        return value in f.values
    if isinstance(f, GreaterThan):
        return _compare(value, f.value, "gt")
    if isinstance(f, LessThan):
        return _compare(value, f.value, "lt")
    if isinstance(f, GreaterOrEqual):
        return _compare(value, f.value, "gte")
    if isinstance(f, LessOrEqual):
        return _compare(value, f.value, "lte")
    if isinstance(f, IsNull):
        return value is None
    if isinstance(f, Like):
        return value is not None and f.text.lower() in str(value).lower()
    if isinstance(f, Contains):
        if isinstance(f.value, Mapping):
            return isinstance(value, Mapping) and all(value.get(k) == v for k, v in f.value.items())
        return isinstance(value, list) and all(item in value for item in f.value)
    raise TypeError(f"Unhandled filter variant: {type(f).__name__}")


def matches(doc: Mapping[str, Any], filters: list[Filter]) -> bool:
    """Evaluate filters against an in-memory document (embedded arrays, post-filtering)."""
    return all(_matches_one(doc, f) for f in filters)
