"""
MongoDB collection wrapper.

The document-store counterpart of TableAdapter: pymongo calls run in a worker
thread, driver errors are logged with the collection and verb and re-raised
as DatabaseError. Timestamps are stored as naive UTC datetimes with
millisecond precision (what BSON keeps) and rendered as ISO strings on the way out.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from ...config.logfire_config import safe_logfire_error
from ...db.errors import translate_error
from ...db.pagination import DEFAULT_PAGE_SIZE, Page, build_page, decode_cursor, mongo_cursor_query, mongo_sort
from ..shapes import parse_timestamp, to_iso


def mongo_time(value: Any = None) -> datetime | None:
    """Naive UTC datetime truncated to milliseconds; None passes through, no argument means now."""
    if value is None:
        parsed = datetime.now(timezone.utc)
    else:
        parsed = parse_timestamp(value)
        if parsed is None:
            return None
    parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed.replace(microsecond=parsed.microsecond // 1000 * 1000)


def plain(doc: dict[str, Any] | None) -> dict[str, Any] | None:
    """ObjectIds to strings, datetimes to ISO strings."""
    if doc is None:
        return None
    out = {}
    for key, value in doc.items():
        if isinstance(value, ObjectId):
            value = str(value)
        elif isinstance(value, datetime):
            value = to_iso(value)
        out[key] = value
    return out


def id_query(value: Any) -> dict[str, Any]:
    """Match an _id given as a string, whether it was stored as ObjectId or string."""
    if isinstance(value, str) and ObjectId.is_valid(value):
        return {"_id": {"$in": [value, ObjectId(value)]}}
    return {"_id": value}


class MongoCollection:
    """Async verbs over one pymongo collection."""

    def __init__(self, database: Database, name: str) -> None:
        self.name = name
        self.collection = database[name]

    async def _run(self, verb: str, fn, *args, **kwargs) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except PyMongoError as e:
            error = translate_error(e, f"{self.name}.{verb}")
            safe_logfire_error("Database operation failed", collection=self.name, operation=verb, code=error.code.value)
            raise error from e

    async def find_one(self, query: dict[str, Any], projection: dict[str, Any] | None = None) -> dict[str, Any] | None:
        return await self._run("find_one", self.collection.find_one, query, projection)

    async def find(
        self,
        query: dict[str, Any],
        *,
        sort: list[tuple[str, int]] | None = None,
        limit: int = 0,
        skip: int = 0,
        projection: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        def fetch() -> list[dict[str, Any]]:
            cursor = self.collection.find(query, projection)
            if sort:
                cursor = cursor.sort(sort)
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)

        return await self._run("find", fetch)

    async def insert_one(self, doc: dict[str, Any]) -> dict[str, Any]:
        result = await self._run("insert_one", self.collection.insert_one, doc)
        return {**doc, "_id": result.inserted_id}

    async def update_one(self, query: dict[str, Any], update: dict[str, Any], *, upsert: bool = False):
        return await self._run("update_one", self.collection.update_one, query, update, upsert=upsert)

    async def update_many(self, query: dict[str, Any], update: dict[str, Any]) -> int:
        result = await self._run("update_many", self.collection.update_many, query, update)
        return result.modified_count

    async def find_one_and_update(
        self, query: dict[str, Any], update: dict[str, Any], *, upsert: bool = False
    ) -> dict[str, Any] | None:
        return await self._run(
            "find_one_and_update",
            self.collection.find_one_and_update,
            query,
            update,
            upsert=upsert,
            return_document=ReturnDocument.AFTER,
        )

    async def find_one_and_delete(self, query: dict[str, Any]) -> dict[str, Any] | None:
        return await self._run("find_one_and_delete", self.collection.find_one_and_delete, query)

    async def delete_one(self, query: dict[str, Any]) -> int:
        result = await self._run("delete_one", self.collection.delete_one, query)
        return result.deleted_count

    async def delete_many(self, query: dict[str, Any]) -> int:
        result = await self._run("delete_many", self.collection.delete_many, query)
        return result.deleted_count

    async def count_documents(self, query: dict[str, Any]) -> int:
        return await self._run("count_documents", self.collection.count_documents, query)

    async def paginate(
        self,
        query: dict[str, Any],
        *,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: Any = None,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
    ) -> Page:
        """Cursor pagination on a datetime field; cursors are ISO strings."""
        cursor_value = decode_cursor(cursor, mongo_time)
        full_query = {**query, **mongo_cursor_query(sort_by, sort_order, cursor_value)}
        rows = await self.find(full_query, sort=mongo_sort(sort_by, sort_order), limit=limit + 1)
        return build_page(rows, limit, sort_by, encode_cursor=to_iso)

    async def increment(
        self,
        query: dict[str, Any],
        field: str,
        amount: int | float = 1,
        *,
        floor: int | float | None = None,
        upsert: bool = False,
    ) -> int | float | None:
        """
        $inc a numeric field and return the new value, or None when nothing matched.

        With a floor, a result below it is raised back to the floor by a
        guarded second update.
        """
        doc = await self.find_one_and_update(query, {"$inc": {field: amount}}, upsert=upsert)
        if doc is None:
            return None
        value = doc.get(field, 0)
        if floor is not None and value < floor:
            await self.update_one({**query, field: {"$lt": floor}}, {"$set": {field: floor}})
            value = floor
        return value
