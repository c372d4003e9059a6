"""
Comparison Session Store (relational backend)

Comparison sessions replace conversations. The conversation-style operation
names are kept so route handlers call the same thing whichever backend is
active; rows are reshaped into the legacy conversation document on the way out.
"""

from __future__ import annotations

from typing import Any, Iterable

from ...config.logfire_config import get_logger
from ...db.adapter import TableAdapter
from ...db.errors import DatabaseError, ErrorCode
from ...db.filters import Contains, Equals, In, IsNull, Like, parse_criteria
from ...db.pagination import DEFAULT_PAGE_SIZE, decode_cursor
from ...db.protocol import DatabaseClient
from ..interface import Document, RequestContext
from ..shapes import (
    DEFAULT_CONVO_TITLE,
    conversation_document,
    conversation_list_item,
    expiry_after,
    parse_timestamp,
)

logger = get_logger(__name__)

SESSIONS_TABLE = "comparison_sessions"
PROFILES_TABLE = "profiles"

LIST_COLUMNS = "id,user_id,title,models,metadata,is_archived,created_at,updated_at"

# legacy conversation field -> comparison_sessions column
SESSION_COLUMNS = {
    "title": "title",
    "prompt": "prompt",
    "models": "models",
    "responses": "responses",
    "winner": "winner",
    "scoringTemplateId": "scoring_template_id",
    "scores": "scores",
    "files": "file_ids",
    "isArchived": "is_archived",
}

# legacy conversation fields kept in the metadata bag
SESSION_METADATA_FIELDS = ("endpoint", "model", "isPublic", "tags", "category")

# legacy filter keys that are not plain column renames
FILTER_COLUMNS = {
    "conversationId": "id",
    "user": "user_id",
    "expiredAt": "expired_at",
    **SESSION_COLUMNS,
}


def session_to_document(row: dict[str, Any]) -> Document:
    """Reshape a comparison_sessions row into the legacy conversation document."""
    metadata = row.get("metadata") or {}
    models = row.get("models") or []
    doc = conversation_document(
        conversationId=row.get("id"),
        user=row.get("user_id"),
        title=row.get("title"),
        endpoint=metadata.get("endpoint"),
        model=metadata.get("model") or (models[0] if models else None),
        models=models,
        prompt=row.get("prompt") or {},
        winner=row.get("winner"),
        scoringTemplateId=row.get("scoring_template_id"),
        scores=row.get("scores") or {},
        files=row.get("file_ids") or [],
        tags=metadata.get("tags") or [],
        category=metadata.get("category") or "general",
        isPublic=bool(metadata.get("isPublic", False)),
        isArchived=bool(row.get("is_archived")),
        expiredAt=parse_timestamp(row.get("expired_at")),
        createdAt=parse_timestamp(row.get("created_at")),
        updatedAt=parse_timestamp(row.get("updated_at")),
    )
    doc["_id"] = row.get("id")
    doc["id"] = row.get("id")
    return doc


def session_filters(filter: Document | None) -> list:
    """Translate a legacy conversation filter into session filters."""
    renamed = {FILTER_COLUMNS.get(key, key): value for key, value in (filter or {}).items()}
    return parse_criteria(renamed)


def _cursor_value(cursor: Any) -> str | None:
    return decode_cursor(cursor, lambda value: parse_timestamp(value).isoformat())


class SupabaseSessionStore:
    """
    Conversation operations over the comparison_sessions table.
    """

    def __init__(self, client: DatabaseClient, temporary_retention_hours: int = 24):
        """
        Args:
            client: Shared database client
            temporary_retention_hours: Expiry applied to temporary sessions
                when the request does not carry its own retention
        """
        self.sessions = TableAdapter(SESSIONS_TABLE, client)
        self.profiles = TableAdapter(PROFILES_TABLE, client)
        self.temporary_retention_hours = temporary_retention_hours

    def _row_updates(self, data: Document, existing_metadata: dict[str, Any] | None = None) -> dict[str, Any]:
        """Only the fields present in data are written."""
        row: dict[str, Any] = {}
        for field, column in SESSION_COLUMNS.items():
            if field in data:
                row[column] = data[field]
        if "fileIds" in data:
            row["file_ids"] = data["fileIds"]

        bag_updates = {k: data[k] for k in SESSION_METADATA_FIELDS if k in data}
        extra = data.get("metadata") or {}
        if bag_updates or extra:
            row["metadata"] = {**(existing_metadata or {}), **extra, **bag_updates}
        return row

    def _expiry(self, ctx: RequestContext) -> str | None:
        if not ctx.is_temporary:
            return None
        hours = ctx.temporary_retention_hours or self.temporary_retention_hours
        return expiry_after(hours=hours).isoformat()

    async def search_conversation(self, conversation_id: str) -> Document | None:
        row = await self.sessions.find_by_id(conversation_id, select="id,user_id")
        if row is None:
            return None
        return {"_id": row["id"], "id": row["id"], "conversationId": row["id"], "user": row.get("user_id")}

    async def get_convo(self, user_id: str, conversation_id: str) -> Document | None:
        row = await self.sessions.find_one({"id": conversation_id, "user_id": user_id})
        return session_to_document(row) if row else None

    async def save_convo(
        self, ctx: RequestContext, data: Document, metadata: Document | None = None
    ) -> Document:
        """
        Save or update a comparison session (MongoDB: saveConvo).

        Args:
            ctx: Request context (user and temporary-chat flag)
            data: Conversation fields; conversationId / newConversationId pick the target
            metadata: Optional call-site metadata, e.g. {"context": "..."}

        Returns:
            The saved session as a conversation document
        """
        if metadata and metadata.get("context"):
            logger.debug(f"[save_convo] {metadata['context']}")

        data = dict(data)
        conversation_id = data.pop("conversationId", None)
        new_conversation_id = data.pop("newConversationId", None)
        target_id = new_conversation_id or conversation_id

        existing = None
        if target_id:
            existing = await self.sessions.find_one(
                {"id": target_id, "user_id": ctx.user_id}, select="id,metadata"
            )

        update = self._row_updates(data, existing.get("metadata") if existing else None)
        update["user_id"] = ctx.user_id
        update["expired_at"] = self._expiry(ctx)

        if existing:
            row = await self.sessions.find_by_id_and_update(target_id, update)
        else:
            if target_id:
                update["id"] = target_id
            row = await self.sessions.create(update)
            if row:
                await self.profiles.increment("id", ctx.user_id, "comparisons_count", 1)

        if row is None:
            raise DatabaseError(
                ErrorCode.DATABASE_ERROR,
                "Error saving comparison session",
                context="comparison_sessions.save_convo",
            )
        return session_to_document(row)

    async def bulk_save_convos(self, convos: list[Document]) -> Document:
        """Upsert many sessions by id (MongoDB: bulkSaveConvos)."""
        rows = []
        for convo in convos:
            session_id = convo.get("conversationId") or convo.get("id")
            row = {
                "id": session_id,
                "user_id": convo.get("user") or convo.get("user_id"),
                "title": convo.get("title"),
                "prompt": convo.get("prompt") or {},
                "models": convo.get("models") or [],
                "responses": convo.get("responses") or [],
                "winner": convo.get("winner"),
                "metadata": {
                    **(convo.get("metadata") or {}),
                    **{k: convo[k] for k in SESSION_METADATA_FIELDS if k in convo},
                },
                "is_archived": bool(convo.get("isArchived", False)),
            }
            rows.append(row)

        ids = [row["id"] for row in rows if row["id"]]
        existing = await self.sessions.find({"id": {"$in": ids}}, select="id") if ids else []
        saved = await self.sessions.upsert_many(rows, on_conflict="id")
        matched = len(existing)
        return {"matchedCount": matched, "upsertedCount": max(len(saved) - matched, 0)}

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
        """
        List a user's live sessions, most recently updated first.

        Returns:
            {"conversations": [...], "nextCursor": str | None}
        """
        filters = [
            Equals("user_id", user_id),
            IsNull("expired_at"),
            Equals("is_archived", bool(is_archived)),
        ]
        if tags:
            filters.append(Contains("metadata->tags", list(tags)))
        if search:
            filters.append(Like("title", search))

        page = await self.sessions.paginate(
            filters,
            limit=limit,
            cursor=_cursor_value(cursor),
            sort_by="updated_at",
            sort_order=order,
            select=LIST_COLUMNS,
        )
        conversations = [conversation_list_item(session_to_document(row)) for row in page.items]
        return {"conversations": conversations, "nextCursor": page.next_cursor}

    async def get_convos_queried(
        self,
        user_id: str,
        convo_ids: Iterable[Any],
        cursor: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Document:
        """Page through a given set of sessions (search results), newest first."""
        ids = [
            (c.get("conversationId") or c.get("id")) if isinstance(c, dict) else c
            for c in (convo_ids or [])
        ]
        ids = [i for i in ids if i]
        if not ids:
            return {"conversations": [], "nextCursor": None, "convoMap": {}}

        page = await self.sessions.paginate(
            [Equals("user_id", user_id), In("id", tuple(ids)), IsNull("expired_at")],
            limit=limit,
            cursor=_cursor_value(cursor),
            sort_by="updated_at",
            sort_order="desc",
        )
        conversations = [session_to_document(row) for row in page.items]
        convo_map = {doc["conversationId"]: doc for doc in conversations}
        return {"conversations": conversations, "nextCursor": page.next_cursor, "convoMap": convo_map}

    async def get_convo_title(self, user_id: str, conversation_id: str) -> str | None:
        row = await self.sessions.find_one({"id": conversation_id, "user_id": user_id}, select="id,title")
        if row is None:
            return DEFAULT_CONVO_TITLE
        return row.get("title") or None

    async def get_convo_files(self, conversation_id: str) -> list[str]:
        row = await self.sessions.find_by_id(conversation_id, select="id,file_ids")
        if row is None:
            return []
        return row.get("file_ids") or []

    async def delete_convos(self, user_id: str, filter: Document) -> Document:
        """
        Delete a user's sessions matching filter; embedded responses go with them.

        Raises:
            DatabaseError: NOT_FOUND when nothing matches
        """
        filters = [*session_filters(filter), Equals("user_id", user_id)]
        sessions = await self.sessions.find(filters, select="id,responses")
        if not sessions:
            raise DatabaseError(
                ErrorCode.NOT_FOUND,
                "Conversation not found or already deleted.",
                context="comparison_sessions.delete_convos",
            )

        session_ids = [s["id"] for s in sessions]
        message_count = sum(len(s.get("responses") or []) for s in sessions)
        await self.sessions.delete_many([In("id", tuple(session_ids)), Equals("user_id", user_id)])

        return {"deletedCount": len(session_ids), "messages": {"deletedCount": message_count}}

    async def delete_null_or_empty_conversations(self) -> Document:
        """Remove orphaned sessions that no longer belong to a user."""
        orphans = await self.sessions.find({"user_id": None}, select="id,responses")
        if not orphans:
            return {"conversations": {"deletedCount": 0}, "messages": {"deletedCount": 0}}

        result = await self.sessions.delete_many({"id": {"$in": [s["id"] for s in orphans]}})
        message_count = sum(len(s.get("responses") or []) for s in orphans)
        logger.info(f"[delete_null_or_empty_conversations] Deleted {result['deletedCount']} orphaned sessions")
        return {
            "conversations": {"deletedCount": result["deletedCount"]},
            "messages": {"deletedCount": message_count},
        }
