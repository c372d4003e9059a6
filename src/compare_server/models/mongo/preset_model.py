"""
Preset Store (MongoDB backend)
"""

from __future__ import annotations

import uuid
from typing import Any

from pymongo.database import Database

from ...config.logfire_config import get_logger
from ..interface import Document
from ..shapes import PRESET_DEFAULTS, preset_document, template_sort_key
from .collection import MongoCollection, mongo_time, plain

logger = get_logger(__name__)

WRITABLE_FIELDS = tuple(
    k for k in PRESET_DEFAULTS if k not in ("presetId", "user", "defaultPreset", "createdAt", "updatedAt")
)


def preset_to_document(doc: dict[str, Any]) -> Document:
    doc = plain(doc)
    out = preset_document(**{k: doc[k] for k in PRESET_DEFAULTS if k in doc})
    out["defaultPreset"] = bool(out["defaultPreset"])
    out["_id"] = doc.get("_id")
    return out


class MongoPresetStore:
    """Preset operations over the presets collection."""

    def __init__(self, database: Database):
        self.presets = MongoCollection(database, "presets")

    async def get_preset(self, user_id: str, preset_id: str) -> Document | None:
        doc = await self.presets.find_one({"presetId": preset_id, "user": user_id})
        return preset_to_document(doc) if doc else None

    async def get_presets(self, user_id: str, filter: Document | None = None) -> list[Document]:
        docs = await self.presets.find({**(filter or {}), "user": user_id})
        return sorted((preset_to_document(doc) for doc in docs), key=template_sort_key)

    async def save_preset(self, user_id: str, data: Document) -> Document:
        data = dict(data)
        preset_id = data.pop("presetId", None)
        new_preset_id = data.pop("newPresetId", None)
        default_preset = data.pop("defaultPreset", None)
        data.pop("user", None)

        match_id = preset_id or new_preset_id or str(uuid.uuid4())
        now = mongo_time()
        fields = {k: v for k, v in data.items() if k in WRITABLE_FIELDS}
        fields.update(presetId=new_preset_id or match_id, user=user_id, updatedAt=now)

        if default_preset:
            await self.presets.update_many(
                {"user": user_id, "defaultPreset": True, "presetId": {"$ne": match_id}},
                {"$set": {"defaultPreset": False, "order": None}},
            )
            fields.update(defaultPreset=True, order=0)
        elif default_preset is False:
            fields.update(defaultPreset=False, order=None)

        on_insert: dict[str, Any] = {"createdAt": now}
        if "title" not in fields:
            on_insert["title"] = "Untitled Template"
        if "usageCount" not in fields:
            on_insert["usageCount"] = 0

        doc = await self.presets.find_one_and_update(
            {"presetId": match_id, "user": user_id},
            {"$set": fields, "$setOnInsert": on_insert},
            upsert=True,
        )
        return preset_to_document(doc)

    async def delete_presets(self, user_id: str, filter: Document | None = None) -> Document:
        deleted = await self.presets.delete_many({**(filter or {}), "user": user_id})
        return {"deletedCount": deleted}

    async def get_public_templates(self, filter: Document | None = None, limit: int = 50) -> list[Document]:
        docs = await self.presets.find(
            {**(filter or {}), "isPublic": True}, sort=[("usageCount", -1)], limit=limit
        )
        return [preset_to_document(doc) for doc in docs]

    async def increment_template_usage(self, template_id: str) -> int | None:
        return await self.presets.increment({"presetId": template_id}, "usageCount", 1)
