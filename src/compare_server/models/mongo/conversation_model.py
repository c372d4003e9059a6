"""
Conversation Store (MongoDB backend)

The legacy implementation: conversations and their messages live in separate
collections, keyed by the client-generated conversationId.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any, Iterable

from pymongo.database import Database

from ...config.logfire_config import get_logger
from ...db.errors import DatabaseError, ErrorCode
from ...db.filters import Like, parse_criteria, to_mongo_query
from ...db.pagination import DEFAULT_PAGE_SIZE
from ..interface import Document, RequestContext
from ..shapes import CONVERSATION_DEFAULTS, DEFAULT_CONVO_TITLE, conversation_document, conversation_list_item
from .collection import MongoCollection, id_query, mongo_time, plain

logger = get_logger(__name__)

# Fields a save may write; identity and timestamps are managed here
WRITABLE_FIELDS = tuple(
    k for k in CONVERSATION_DEFAULTS if k not in ("conversationId", "user", "expiredAt", "createdAt", "updatedAt")
)


def conversation_to_document(doc: dict[str, Any]) -> Document:
    doc = plain(doc)
    fields = {k: doc[k] for k in CONVERSATION_DEFAULTS if k in doc}
    models = fields.get("models") or []
    if not fields.get("model") and models:
        fields["model"] = models[0]
    out = conversation_document(**fields)
    out["_id"] = doc.get("_id")
    return out


class MongoConversationStore:
    """Conversation operations over the conversations and messages collections."""

    def __init__(self, database: Database, temporary_retention_hours: int = 24):
        self.conversations = MongoCollection(database, "conversations")
        self.messages = MongoCollection(database, "messages")
        self.users = MongoCollection(database, "users")
        self.temporary_retention_hours = temporary_retention_hours

    def _expiry(self, ctx: RequestContext):
        if not ctx.is_temporary:
            return None
        hours = ctx.temporary_retention_hours or self.temporary_retention_hours
        return mongo_time() + timedelta(hours=hours)

    async def search_conversation(self, conversation_id: str) -> Document | None:
        doc = await self.conversations.find_one(
            {"conversationId": conversation_id}, {"conversationId": 1, "user": 1}
        )
        if doc is None:
            return None
        return {"_id": str(doc["_id"]), "conversationId": doc["conversationId"], "user": doc.get("user")}

    async def get_convo(self, user_id: str, conversation_id: str) -> Document | None:
        doc = await self.conversations.find_one({"conversationId": conversation_id, "user": user_id})
        return conversation_to_document(doc) if doc else None

    async def save_convo(
        self, ctx: RequestContext, data: Document, metadata: Document | None = None
    ) -> Document:
        if metadata and metadata.get("context"):
            logger.debug(f"[save_convo] {metadata['context']}")

        data = dict(data)
        conversation_id = data.pop("conversationId", None)
        new_conversation_id = data.pop("newConversationId", None)
        target_id = new_conversation_id or conversation_id or str(uuid.uuid4())

        now = mongo_time()
        update = {k: data[k] for k in WRITABLE_FIELDS if k in data}
        if "fileIds" in data:
            update["files"] = data["fileIds"]
        update.update(
            conversationId=target_id,
            user=ctx.user_id,
            expiredAt=self._expiry(ctx),
            updatedAt=now,
        )

        result = await self.conversations.update_one(
            {"conversationId": target_id, "user": ctx.user_id},
            {"$set": update, "$setOnInsert": {"createdAt": now}},
            upsert=True,
        )
        if result.upserted_id is not None:
            await self.users.increment(id_query(ctx.user_id), "comparisonsCount", 1)

        doc = await self.conversations.find_one({"conversationId": target_id, "user": ctx.user_id})
        return conversation_to_document(doc)

    async def bulk_save_convos(self, convos: list[Document]) -> Document:
        matched = upserted = 0
        for convo in convos:
            conversation_id = convo.get("conversationId") or convo.get("id")
            fields = {k: convo[k] for k in WRITABLE_FIELDS if k in convo}
            fields.update(conversationId=conversation_id, user=convo.get("user"), updatedAt=mongo_time())
            result = await self.conversations.update_one(
                {"conversationId": conversation_id, "user": convo.get("user")},
                {"$set": fields, "$setOnInsert": {"createdAt": mongo_time()}},
                upsert=True,
            )
            if result.upserted_id is not None:
                upserted += 1
            else:
                matched += result.matched_count
        return {"matchedCount": matched, "upsertedCount": upserted}

    async def get_convos_by_cursor(
        self,
        user_id: str,
        *,
        cursor: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        is_archived: bool = False,
        tags: list[str] | None = None,
        search: str | None = None,
        order: str = "desc",
    ) -> Document:
        query: dict[str, Any] = {
            "user": user_id,
            "expiredAt": None,
            "isArchived": True if is_archived else {"$ne": True},
        }
        if tags:
            query["tags"] = {"$all": list(tags)}
        if search:
            query.update(to_mongo_query([Like("title", search)]))

        page = await self.conversations.paginate(
            query, limit=limit, cursor=cursor, sort_by="updatedAt", sort_order=order
        )
        conversations = [conversation_list_item(conversation_to_document(doc)) for doc in page.items]
        return {"conversations": conversations, "nextCursor": page.next_cursor}

    async def get_convos_queried(
        self,
        user_id: str,
        convo_ids: Iterable[Any],
        cursor: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Document:
        ids = [
            (c.get("conversationId") or c.get("id")) if isinstance(c, dict) else c
            for c in (convo_ids or [])
        ]
        ids = [i for i in ids if i]
        if not ids:
            return {"conversations": [], "nextCursor": None, "convoMap": {}}

        page = await self.conversations.paginate(
            {"user": user_id, "conversationId": {"$in": ids}, "expiredAt": None},
            limit=limit,
            cursor=cursor,
            sort_by="updatedAt",
            sort_order="desc",
        )
        conversations = [conversation_to_document(doc) for doc in page.items]
        convo_map = {doc["conversationId"]: doc for doc in conversations}
        return {"conversations": conversations, "nextCursor": page.next_cursor, "convoMap": convo_map}

    async def get_convo_title(self, user_id: str, conversation_id: str) -> str | None:
        doc = await self.conversations.find_one({"conversationId": conversation_id, "user": user_id}, {"title": 1})
        if doc is None:
            return DEFAULT_CONVO_TITLE
        return doc.get("title") or None

    async def get_convo_files(self, conversation_id: str) -> list[str]:
        doc = await self.conversations.find_one({"conversationId": conversation_id}, {"files": 1})
        return (doc or {}).get("files") or []

    async def delete_convos(self, user_id: str, filter: Document) -> Document:
        query = {**to_mongo_query(parse_criteria(filter)), "user": user_id}
        docs = await self.conversations.find(query, projection={"conversationId": 1})
        if not docs:
            raise DatabaseError(
                ErrorCode.NOT_FOUND,
                "Conversation not found or already deleted.",
                context="conversations.delete_convos",
            )

        ids = [d["conversationId"] for d in docs]
        deleted = await self.conversations.delete_many({"conversationId": {"$in": ids}, "user": user_id})
        deleted_messages = await self.messages.delete_many({"conversationId": {"$in": ids}})
        return {"deletedCount": deleted, "messages": {"deletedCount": deleted_messages}}

    async def delete_null_or_empty_conversations(self) -> Document:
        deleted = await self.conversations.delete_many({"conversationId": {"$in": [None, ""]}})
        deleted_messages = await self.messages.delete_many({"conversationId": {"$in": [None, ""]}})
        logger.info(f"[delete_null_or_empty_conversations] Deleted {deleted} invalid conversations")
        return {"conversations": {"deletedCount": deleted}, "messages": {"deletedCount": deleted_messages}}
