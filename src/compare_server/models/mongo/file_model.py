"""
File Store (MongoDB backend)
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

from pymongo.database import Database

from ...config.logfire_config import get_logger
from ...db.filters import parse_criteria, to_mongo_query
from ..interface import Document
from ..shapes import FILE_DEFAULTS, file_document, matches_tool_resources, select_fields
from .collection import MongoCollection, mongo_time, plain

logger = get_logger(__name__)

WRITABLE_FIELDS = tuple(k for k in FILE_DEFAULTS if k not in ("usage", "expiresAt", "createdAt", "updatedAt"))

CLAIM_UNSET = {"expiresAt": "", "temp_file_id": ""}


def file_to_document(doc: dict[str, Any]) -> Document:
    doc = plain(doc)
    out = file_document(**{k: doc[k] for k in FILE_DEFAULTS if k in doc})
    out["_id"] = doc.get("_id")
    return out


def _writable(data: Document) -> dict[str, Any]:
    fields = {k: v for k, v in data.items() if k in WRITABLE_FIELDS}
    if "size" in data and "bytes" not in fields:
        fields["bytes"] = data["size"]
    return fields


class MongoFileStore:
    """File operations over the files collection."""

    def __init__(self, database: Database, file_ttl_seconds: int = 3600):
        self.files = MongoCollection(database, "files")
        self.file_ttl_seconds = file_ttl_seconds

    async def find_file_by_id(self, file_id: str) -> Document | None:
        doc = await self.files.find_one({"file_id": file_id})
        return file_to_document(doc) if doc else None

    async def get_files(
        self, filter: Document, sort: Document | None = None, select: str | None = None
    ) -> list[Document]:
        sort_spec = list((sort or {"updatedAt": -1}).items())
        docs = await self.files.find(to_mongo_query(parse_criteria(filter)), sort=sort_spec)
        return [select_fields(file_to_document(doc), select) for doc in docs]

    async def get_tool_files_by_ids(
        self, file_ids: list[str], tool_resources: set[str] | None = None
    ) -> list[Document]:
        if not file_ids:
            return []
        docs = await self.files.find({"file_id": {"$in": list(file_ids)}}, sort=[("updatedAt", -1)])
        return [d for d in map(file_to_document, docs) if matches_tool_resources(d, tool_resources)]

    async def create_file(self, data: Document, disable_ttl: bool = False) -> Document:
        file_id = data.get("file_id")
        if not file_id:
            raise ValueError("create_file requires a file_id")

        now = mongo_time()
        fields = _writable(data)
        fields.setdefault("filename", file_id)
        fields.setdefault("filepath", "")
        fields.setdefault("source", "local")
        fields["expiresAt"] = None if disable_ttl else now + timedelta(seconds=self.file_ttl_seconds)
        fields["updatedAt"] = now

        doc = await self.files.find_one_and_update(
            {"file_id": file_id},
            {"$set": fields, "$setOnInsert": {"createdAt": now, "usage": 0}},
            upsert=True,
        )
        return file_to_document(doc)

    async def update_file(self, data: Document) -> Document | None:
        file_id = data.get("file_id")
        if not file_id:
            raise ValueError("update_file requires a file_id")
        fields = _writable({k: v for k, v in data.items() if k not in ("file_id", "temp_file_id")})
        fields["updatedAt"] = mongo_time()
        doc = await self.files.find_one_and_update(
            {"file_id": file_id}, {"$set": fields, "$unset": CLAIM_UNSET}
        )
        return file_to_document(doc) if doc else None

    async def update_file_usage(self, file_id: str, inc: int = 1) -> Document | None:
        doc = await self.files.find_one_and_update(
            {"file_id": file_id},
            {"$inc": {"usage": inc}, "$set": {"updatedAt": mongo_time()}, "$unset": CLAIM_UNSET},
        )
        return file_to_document(doc) if doc else None

    async def delete_file(self, file_id: str) -> Document | None:
        doc = await self.files.find_one_and_delete({"file_id": file_id})
        return file_to_document(doc) if doc else None

    async def delete_file_by_filter(self, filter: Document) -> Document | None:
        doc = await self.files.find_one_and_delete(to_mongo_query(parse_criteria(filter)))
        return file_to_document(doc) if doc else None

    async def delete_files(self, file_ids: list[str] | None = None, user: str | None = None) -> Document:
        if user:
            return {"deletedCount": await self.files.delete_many({"user": user})}
        if not file_ids:
            return {"deletedCount": 0}
        return {"deletedCount": await self.files.delete_many({"file_id": {"$in": list(file_ids)}})}

    async def batch_update_files(self, updates: list[Document]) -> int:
        if not updates:
            return 0

        async def _update_one(update: Document):
            return await self.files.update_one(
                {"file_id": update["file_id"]},
                {"$set": {"filepath": update["filepath"], "updatedAt": mongo_time()}},
            )

        results = await asyncio.gather(*(_update_one(u) for u in updates), return_exceptions=True)

        success_count = 0
        for update, result in zip(updates, results):
            if isinstance(result, BaseException):
                logger.error(f"[batch_update_files] Failed to update file {update.get('file_id')}: {result}")
            elif result.matched_count:
                success_count += 1
        logger.info(f"Updated {success_count}/{len(updates)} files with new paths")
        return success_count
