"""
Message Store (MongoDB backend)
"""

from __future__ import annotations

from typing import Any

from pymongo.database import Database

from ...config.logfire_config import get_logger
from ...db.filters import parse_criteria, to_mongo_query
from ..interface import Document, RequestContext
from ..shapes import MESSAGE_DEFAULTS, message_document, select_fields
from .collection import MongoCollection, mongo_time, plain

logger = get_logger(__name__)


def message_to_document(doc: dict[str, Any]) -> Document:
    doc = plain(doc)
    extra = {k: v for k, v in doc.items() if k not in MESSAGE_DEFAULTS and k != "_id"}
    out = message_document(**{k: doc[k] for k in MESSAGE_DEFAULTS if k in doc}, **extra)
    out["_id"] = doc.get("_id")
    return out


def _message_fields(message: Document) -> dict[str, Any]:
    fields = {k: v for k, v in message.items() if k != "_id"}
    for key in ("createdAt", "updatedAt"):
        if key in fields:
            fields[key] = mongo_time(fields[key])
    return fields


class MongoMessageStore:
    """Message operations over the messages collection."""

    def __init__(self, database: Database):
        self.messages = MongoCollection(database, "messages")

    async def _upsert(self, user_id: str | None, message: Document) -> Document:
        if not message.get("conversationId") or not message.get("messageId"):
            raise ValueError("Messages require both conversationId and messageId")

        now = mongo_time()
        fields = _message_fields(message)
        fields["user"] = user_id
        fields["updatedAt"] = now
        update: dict[str, Any] = {"$set": fields}
        if "createdAt" not in fields:
            update["$setOnInsert"] = {"createdAt": now}

        doc = await self.messages.find_one_and_update(
            {"messageId": message["messageId"], "user": user_id}, update, upsert=True
        )
        return message_to_document(doc)

    async def get_message(self, *, user_id: str, conversation_id: str, message_id: str) -> Document | None:
        doc = await self.messages.find_one(
            {"user": user_id, "conversationId": conversation_id, "messageId": message_id}
        )
        return message_to_document(doc) if doc else None

    async def get_messages(self, filter: Document, select: str | None = None) -> list[Document]:
        docs = await self.messages.find(to_mongo_query(parse_criteria(filter)), sort=[("createdAt", 1)])
        return [select_fields(message_to_document(doc), select) for doc in docs]

    async def save_message(
        self, ctx: RequestContext, message: Document, metadata: Document | None = None
    ) -> Document:
        if metadata and metadata.get("context"):
            logger.debug(f"[save_message] {metadata['context']}")
        return await self._upsert(ctx.user_id, message)

    async def record_message(self, message: Document) -> Document:
        return await self._upsert(message.get("user"), message)

    async def update_message(self, ctx: RequestContext, message: Document) -> Document | None:
        message_id = message.get("messageId")
        if not message_id:
            raise ValueError("update_message requires messageId")
        fields = _message_fields({k: v for k, v in message.items() if k not in ("messageId", "user")})
        fields["updatedAt"] = mongo_time()
        doc = await self.messages.find_one_and_update(
            {"messageId": message_id, "user": ctx.user_id}, {"$set": fields}
        )
        return message_to_document(doc) if doc else None

    async def delete_messages_since(self, *, user_id: str, conversation_id: str, message_id: str) -> Document:
        message = await self.messages.find_one(
            {"messageId": message_id, "user": user_id, "conversationId": conversation_id}
        )
        if message is None:
            return {"deletedCount": 0}
        deleted = await self.messages.delete_many(
            {
                "conversationId": conversation_id,
                "user": user_id,
                "createdAt": {"$gt": message["createdAt"]},
            }
        )
        return {"deletedCount": deleted}

    async def delete_messages(self, filter: Document) -> Document:
        deleted = await self.messages.delete_many(to_mongo_query(parse_criteria(filter)))
        return {"deletedCount": deleted}
