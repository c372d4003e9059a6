"""
File Store (relational backend)

Files are keyed by their external ``file_id``; the row's own primary key is
exposed as ``_id``/``id``. Embedding status, model, tool context and the
temporary upload id live in the ``metadata`` bag.
"""

from __future__ import annotations

import asyncio
from typing import Any

from ...config.logfire_config import get_logger
from ...db.adapter import TableAdapter
from ...db.filters import Contains, In, parse_criteria
from ...db.protocol import DatabaseClient
from ..interface import Document
from ..shapes import expiry_after, file_document, matches_tool_resources, parse_timestamp, select_fields

logger = get_logger(__name__)

FILES_TABLE = "files"

# legacy file field -> files column
FILE_COLUMNS = {
    "user": "user_id",
    "file_id": "file_id",
    "filename": "filename",
    "filepath": "filepath",
    "type": "type",
    "bytes": "bytes",
    "width": "width",
    "height": "height",
    "source": "source",
}

FILE_METADATA_FIELDS = ("embedded", "model", "context", "fileIdentifier", "temp_file_id")

SORT_COLUMNS = {"updatedAt": "updated_at", "createdAt": "created_at", "usage": "usage_count"}


def file_to_document(row: dict[str, Any]) -> Document:
    """Reshape a files row into the legacy file document."""
    metadata = row.get("metadata") or {}
    doc = file_document(
        user=row.get("user_id"),
        file_id=row.get("file_id"),
        filename=row.get("filename"),
        filepath=row.get("filepath") or "",
        type=row.get("type"),
        bytes=row.get("bytes"),
        width=row.get("width"),
        height=row.get("height"),
        source=row.get("source") or "local",
        usage=row.get("usage_count") or 0,
        expiresAt=parse_timestamp(row.get("expires_at")),
        createdAt=parse_timestamp(row.get("created_at")),
        updatedAt=parse_timestamp(row.get("updated_at")),
        **{k: metadata.get(k) for k in FILE_METADATA_FIELDS},
    )
    doc["_id"] = row.get("id")
    doc["id"] = row.get("id")
    return doc


def file_filters(filter: Document | None) -> list:
    """Column filters for plain fields, JSON containment for metadata fields."""
    columns: dict[str, Any] = {}
    bag: dict[str, Any] = {}
    for key, value in (filter or {}).items():
        if key in FILE_METADATA_FIELDS:
            bag[key] = value
        else:
            columns[FILE_COLUMNS.get(key, key)] = value
    filters = parse_criteria(columns)
    if bag:
        filters.append(Contains("metadata", bag))
    return filters


def _split_fields(data: Document) -> tuple[dict[str, Any], dict[str, Any]]:
    columns = {FILE_COLUMNS[k]: v for k, v in data.items() if k in FILE_COLUMNS}
    if "size" in data and "bytes" not in columns:
        columns["bytes"] = data["size"]
    bag = {k: data[k] for k in FILE_METADATA_FIELDS if k in data}
    return columns, bag


class SupabaseFileStore:
    """File operations over the files table."""

    def __init__(self, client: DatabaseClient, file_ttl_seconds: int = 3600):
        self.files = TableAdapter(FILES_TABLE, client)
        self.file_ttl_seconds = file_ttl_seconds

    async def find_file_by_id(self, file_id: str) -> Document | None:
        row = await self.files.find_one({"file_id": file_id})
        return file_to_document(row) if row else None

    async def get_files(
        self, filter: Document, sort: Document | None = None, select: str | None = None
    ) -> list[Document]:
        """
        Files matching a legacy filter.

        Args:
            filter: legacy criteria ({"user": id, "file_id": {"$in": [...]}, "embedded": True})
            sort: {"updatedAt": -1} style; defaults to most recently updated first
            select: optional field list
        """
        field, direction = next(iter((sort or {"updatedAt": -1}).items()))
        order_by = f"{SORT_COLUMNS.get(field, field)}:{'asc' if direction == 1 else 'desc'}"
        rows = await self.files.find(file_filters(filter), order_by=order_by)
        return [select_fields(file_to_document(row), select) for row in rows]

    async def get_tool_files_by_ids(
        self, file_ids: list[str], tool_resources: set[str] | None = None
    ) -> list[Document]:
        if not file_ids:
            return []
        rows = await self.files.find([In("file_id", tuple(file_ids))], order_by="updated_at:desc")
        docs = [file_to_document(row) for row in rows]
        return [doc for doc in docs if matches_tool_resources(doc, tool_resources)]

    async def create_file(self, data: Document, disable_ttl: bool = False) -> Document:
        """
        Create a file record, or update the existing one with the same file_id.

        A new TTL starts unless disable_ttl is set; temporary uploads expire
        unless something claims them first.
        """
        file_id = data.get("file_id")
        if not file_id:
            raise ValueError("create_file requires a file_id")

        columns, bag = _split_fields(data)
        columns.pop("file_id", None)
        columns.setdefault("filename", file_id)
        columns.setdefault("filepath", "")
        columns.setdefault("source", "local")
        existing = await self.files.find_one({"file_id": file_id}, select="metadata")
        columns["metadata"] = {**((existing or {}).get("metadata") or {}), **bag}
        columns["expires_at"] = None if disable_ttl else expiry_after(seconds=self.file_ttl_seconds).isoformat()

        row = await self.files.upsert({"file_id": file_id}, columns, on_conflict="file_id")
        return file_to_document(row)

    async def _claim(self, file_id: str, updates: dict[str, Any]) -> Document | None:
        """Apply updates, clear the TTL and drop the temporary upload id."""
        existing = await self.files.find_one({"file_id": file_id}, select="id,metadata")
        if existing is None:
            return None
        metadata = {**(existing.get("metadata") or {}), **updates.pop("metadata", {})}
        metadata.pop("temp_file_id", None)
        row = await self.files.find_by_id_and_update(
            existing["id"], {**updates, "metadata": metadata, "expires_at": None}
        )
        return file_to_document(row) if row else None

    async def update_file(self, data: Document) -> Document | None:
        file_id = data.get("file_id")
        if not file_id:
            raise ValueError("update_file requires a file_id")
        columns, bag = _split_fields({k: v for k, v in data.items() if k != "file_id"})
        bag.pop("temp_file_id", None)
        return await self._claim(file_id, {**columns, "metadata": bag})

    async def update_file_usage(self, file_id: str, inc: int = 1) -> Document | None:
        usage = await self.files.increment("file_id", file_id, "usage_count", inc)
        if usage is None:
            return None
        return await self._claim(file_id, {})

    async def delete_file(self, file_id: str) -> Document | None:
        row = await self.files.find_one_and_delete({"file_id": file_id})
        return file_to_document(row) if row else None

    async def delete_file_by_filter(self, filter: Document) -> Document | None:
        row = await self.files.find_one_and_delete(file_filters(filter))
        return file_to_document(row) if row else None

    async def delete_files(self, file_ids: list[str] | None = None, user: str | None = None) -> Document:
        """Delete by file ids, or every file of a user when user is given."""
        if user:
            return await self.files.delete_many({"user_id": user})
        if not file_ids:
            return {"deletedCount": 0}
        return await self.files.delete_many([In("file_id", tuple(file_ids))])

    async def batch_update_files(self, updates: list[Document]) -> int:
        """
        Point many files at new storage paths (e.g. refreshed signed URLs).

        Updates run concurrently; a failed update is logged and does not
        abort the rest.

        Returns:
            Number of files updated
        """
        if not updates:
            return 0

        async def _update_one(update: Document) -> dict[str, int]:
            return await self.files.update_many({"file_id": update["file_id"]}, {"filepath": update["filepath"]})

        results = await asyncio.gather(*(_update_one(u) for u in updates), return_exceptions=True)

        success_count = 0
        for update, result in zip(updates, results):
            if isinstance(result, BaseException):
                logger.error(f"[batch_update_files] Failed to update file {update.get('file_id')}: {result}")
            elif result["modifiedCount"]:
                success_count += 1
        logger.info(f"Updated {success_count}/{len(updates)} files with new paths")
        return success_count
