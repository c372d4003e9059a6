"""
Scoring Template Store (relational backend)

Scoring templates replace presets. Templates are addressed either by row id
or by the legacy ``preset_id``; legacy preset settings (model, temperature,
promptPrefix, ...) are kept in the metadata bag and flattened back out.
"""

from __future__ import annotations

import uuid
from typing import Any

from ...config.logfire_config import get_logger
from ...db.adapter import TableAdapter
from ...db.protocol import DatabaseClient
from ..interface import Document
from ..shapes import LEGACY_PRESET_FIELDS, parse_timestamp, preset_document, template_sort_key

logger = get_logger(__name__)

TEMPLATES_TABLE = "scoring_templates"

# legacy preset field -> scoring_templates column
TEMPLATE_COLUMNS = {
    "presetId": "preset_id",
    "user": "user_id",
    "title": "name",
    "description": "description",
    "criteria": "criteria",
    "category": "category",
    "isPublic": "is_public",
    "defaultPreset": "is_default",
    "order": "order",
    "usageCount": "usage_count",
}


def _is_row_id(value: Any) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def template_to_document(row: dict[str, Any]) -> Document:
    """Reshape a scoring_templates row into the legacy preset document."""
    metadata = row.get("metadata") or {}
    doc = preset_document(
        presetId=row.get("preset_id") or row.get("id"),
        user=row.get("user_id"),
        title=row.get("name"),
        description=row.get("description"),
        criteria=row.get("criteria") or [],
        category=row.get("category") or "general",
        isPublic=bool(row.get("is_public")),
        defaultPreset=bool(row.get("is_default")),
        order=row.get("order"),
        usageCount=row.get("usage_count") or 0,
        createdAt=parse_timestamp(row.get("created_at")),
        updatedAt=parse_timestamp(row.get("updated_at")),
        **{k: metadata.get(k) for k in LEGACY_PRESET_FIELDS},
    )
    doc["_id"] = row.get("id")
    doc["id"] = row.get("id")
    return doc


def template_criteria(filter: Document | None) -> dict[str, Any]:
    return {TEMPLATE_COLUMNS.get(k, k): v for k, v in (filter or {}).items()}


class SupabaseTemplateStore:
    """Preset operations over the scoring_templates table."""

    def __init__(self, client: DatabaseClient):
        self.templates = TableAdapter(TEMPLATES_TABLE, client)

    async def _lookup(self, user_id: str, preset_id: str) -> dict[str, Any] | None:
        row = await self.templates.find_one({"user_id": user_id, "preset_id": preset_id})
        if row is None and _is_row_id(preset_id):
            row = await self.templates.find_one({"user_id": user_id, "id": preset_id})
        return row

    async def get_preset(self, user_id: str, preset_id: str) -> Document | None:
        row = await self._lookup(user_id, preset_id)
        return template_to_document(row) if row else None

    async def get_presets(self, user_id: str, filter: Document | None = None) -> list[Document]:
        """A user's templates, by order (unordered last) then most recently updated."""
        rows = await self.templates.find({**template_criteria(filter), "user_id": user_id})
        return sorted((template_to_document(row) for row in rows), key=template_sort_key)

    async def save_preset(self, user_id: str, data: Document) -> Document:
        """
        Create or update a template (MongoDB: savePreset).

        defaultPreset=True makes this the user's only default template;
        defaultPreset=False clears the flag on this template.
        """
        data = dict(data)
        preset_id = data.pop("presetId", None)
        new_preset_id = data.pop("newPresetId", None)
        default_preset = data.pop("defaultPreset", None)
        data.pop("user", None)

        existing = await self._lookup(user_id, preset_id) if preset_id else None

        row: dict[str, Any] = {
            TEMPLATE_COLUMNS[k]: v for k, v in data.items() if k in TEMPLATE_COLUMNS
        }
        legacy = {k: data[k] for k in LEGACY_PRESET_FIELDS if k in data}
        if legacy or existing is None:
            row["metadata"] = {**((existing or {}).get("metadata") or {}), **legacy}
        row["user_id"] = user_id
        row["preset_id"] = new_preset_id or preset_id or (existing or {}).get("preset_id") or str(uuid.uuid4())

        if default_preset:
            others: dict[str, Any] = {"user_id": user_id, "is_default": True}
            if existing:
                others["id"] = {"$ne": existing["id"]}
            await self.templates.update_many(others, {"is_default": False, "order": None})
            row["is_default"] = True
            row["order"] = 0
        elif default_preset is False:
            row["is_default"] = False
            row["order"] = None

        if existing:
            saved = await self.templates.find_by_id_and_update(existing["id"], row)
        else:
            row.setdefault("name", "Untitled Template")
            saved = await self.templates.create(row)
        return template_to_document(saved)

    async def delete_presets(self, user_id: str, filter: Document | None = None) -> Document:
        return await self.templates.delete_many({**template_criteria(filter), "user_id": user_id})

    async def get_public_templates(self, filter: Document | None = None, limit: int = 50) -> list[Document]:
        """Shared templates, most used first."""
        rows = await self.templates.find(
            {**template_criteria(filter), "is_public": True},
            order_by="usage_count:desc",
            limit=limit,
        )
        return [template_to_document(row) for row in rows]

    async def increment_template_usage(self, template_id: str) -> int | None:
        """Bump a template's usage counter; template_id is the row id or preset_id."""
        if _is_row_id(template_id):
            value = await self.templates.increment("id", template_id, "usage_count", 1)
            if value is not None:
                return value
        return await self.templates.increment("preset_id", template_id, "usage_count", 1)
