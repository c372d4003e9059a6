"""
Message Store (relational backend)

There is no message table: a comparison session's ``responses`` array is the
only record of its messages. Every write is a read/modify/write of that array,
last write wins.
"""

from __future__ import annotations

from typing import Any

from ...config.logfire_config import get_logger
from ...db.adapter import TableAdapter
from ...db.errors import DatabaseError, ErrorCode
from ...db.filters import matches, parse_criteria
from ...db.protocol import DatabaseClient
from ..interface import Document, RequestContext
from ..shapes import message_document, select_fields, utc_now

logger = get_logger(__name__)

SESSIONS_TABLE = "comparison_sessions"
PROFILES_TABLE = "profiles"

# Filter keys answered by the session row rather than the embedded entry
SESSION_KEYS = {"conversationId": "id", "user": "user_id"}


def entry_to_document(entry: dict[str, Any], conversation_id: str, user_id: str | None) -> Document:
    fields = {k: v for k, v in entry.items() if k != "responseId"}
    fields["conversationId"] = conversation_id
    fields["user"] = user_id
    doc = message_document(**fields)
    doc["_id"] = entry.get("messageId")
    return doc


def _split_filter(filter: Document | None) -> tuple[list, list]:
    """Split a legacy message filter into session-level and entry-level filters."""
    session_criteria: dict[str, Any] = {}
    entry_criteria: dict[str, Any] = {}
    for key, value in (filter or {}).items():
        if key in SESSION_KEYS:
            session_criteria[SESSION_KEYS[key]] = value
        else:
            entry_criteria[key] = value
    return parse_criteria(session_criteria), parse_criteria(entry_criteria)


class SupabaseMessageStore:
    """Message operations over the embedded responses array."""

    def __init__(self, client: DatabaseClient):
        self.sessions = TableAdapter(SESSIONS_TABLE, client)
        self.profiles = TableAdapter(PROFILES_TABLE, client)

    async def _load_session(self, conversation_id: str, user_id: str | None = None) -> dict[str, Any] | None:
        criteria: dict[str, Any] = {"id": conversation_id}
        if user_id:
            criteria["user_id"] = user_id
        return await self.sessions.find_one(criteria, select="id,user_id,responses")

    async def _write_responses(self, session_id: str, responses: list[dict[str, Any]]) -> None:
        await self.sessions.find_by_id_and_update(session_id, {"responses": responses})

    async def _upsert_entry(self, user_id: str, message: Document) -> Document:
        conversation_id = message.get("conversationId")
        message_id = message.get("messageId")
        if not conversation_id or not message_id:
            raise ValueError("Messages require both conversationId and messageId")

        now = utc_now().isoformat()
        entry = {k: v for k, v in message.items() if k not in ("conversationId", "user", "_id")}
        entry["responseId"] = message_id
        entry["updatedAt"] = now

        session = await self._load_session(conversation_id, user_id)
        if session is None and user_id and await self._load_session(conversation_id) is not None:
            raise DatabaseError(
                ErrorCode.PERMISSION_DENIED,
                "Conversation belongs to another user",
                context=f"{SESSIONS_TABLE}.save_message",
            )
        if session is None:
            # First message of a new comparison: the session row is created here
            entry.setdefault("createdAt", now)
            await self.sessions.create({"id": conversation_id, "user_id": user_id, "responses": [entry]})
            await self.profiles.increment("id", user_id, "comparisons_count", 1)
            return entry_to_document(entry, conversation_id, user_id)

        responses = list(session.get("responses") or [])
        for index, current in enumerate(responses):
            if current.get("messageId") == message_id:
                entry = {**current, **entry, "createdAt": current.get("createdAt") or now}
                responses[index] = entry
                break
        else:
            entry.setdefault("createdAt", now)
            responses.append(entry)

        await self._write_responses(session["id"], responses)
        return entry_to_document(entry, conversation_id, session.get("user_id") or user_id)

    async def get_message(self, *, user_id: str, conversation_id: str, message_id: str) -> Document | None:
        session = await self._load_session(conversation_id, user_id)
        if session is None:
            return None
        for entry in session.get("responses") or []:
            if entry.get("messageId") == message_id:
                return entry_to_document(entry, session["id"], session.get("user_id"))
        return None

    async def get_messages(self, filter: Document, select: str | None = None) -> list[Document]:
        """
        Messages matching a legacy filter, oldest first.

        Args:
            filter: e.g. {"conversationId": id} or {"conversationId": id, "isCreatedByUser": True}
            select: optional field list ("messageId text sender")
        """
        session_filters, entry_filters = _split_filter(filter)
        sessions = await self.sessions.find(session_filters, select="id,user_id,responses")

        messages = []
        for session in sessions:
            for entry in session.get("responses") or []:
                doc = entry_to_document(entry, session["id"], session.get("user_id"))
                if matches(doc, entry_filters):
                    messages.append(doc)
        messages.sort(key=lambda m: m.get("createdAt") or "")
        return [select_fields(m, select) for m in messages]

    async def save_message(
        self, ctx: RequestContext, message: Document, metadata: Document | None = None
    ) -> Document:
        if metadata and metadata.get("context"):
            logger.debug(f"[save_message] {metadata['context']}")
        return await self._upsert_entry(ctx.user_id, message)

    async def record_message(self, message: Document) -> Document:
        """Upsert a message outside a request (background jobs, imports)."""
        return await self._upsert_entry(message.get("user"), message)

    async def update_message(self, ctx: RequestContext, message: Document) -> Document | None:
        """
        Merge fields into an existing message.

        Returns:
            The updated message, or None when it does not exist
        """
        conversation_id = message.get("conversationId")
        message_id = message.get("messageId")
        if not conversation_id or not message_id:
            raise ValueError("update_message requires conversationId and messageId")

        session = await self._load_session(conversation_id, ctx.user_id)
        if session is None:
            return None

        responses = list(session.get("responses") or [])
        for index, current in enumerate(responses):
            if current.get("messageId") == message_id:
                updates = {k: v for k, v in message.items() if k not in ("conversationId", "user", "_id")}
                responses[index] = {**current, **updates, "updatedAt": utc_now().isoformat()}
                await self._write_responses(session["id"], responses)
                return entry_to_document(responses[index], session["id"], session.get("user_id"))
        return None

    async def delete_messages_since(self, *, user_id: str, conversation_id: str, message_id: str) -> Document:
        """Drop every message that follows message_id in the session."""
        session = await self._load_session(conversation_id, user_id)
        if session is None:
            return {"deletedCount": 0}

        responses = list(session.get("responses") or [])
        index = next((i for i, e in enumerate(responses) if e.get("messageId") == message_id), None)
        if index is None:
            return {"deletedCount": 0}

        removed = len(responses) - (index + 1)
        if removed:
            await self._write_responses(session["id"], responses[: index + 1])
        return {"deletedCount": removed}

    async def delete_messages(self, filter: Document) -> Document:
        session_filters, entry_filters = _split_filter(filter)
        sessions = await self.sessions.find(session_filters, select="id,user_id,responses")

        deleted = 0
        for session in sessions:
            responses = session.get("responses") or []
            kept = [
                e
                for e in responses
                if not matches(entry_to_document(e, session["id"], session.get("user_id")), entry_filters)
            ]
            if len(kept) != len(responses):
                deleted += len(responses) - len(kept)
                await self._write_responses(session["id"], kept)
        return {"deletedCount": deleted}

