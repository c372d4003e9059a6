"""
Entity store contracts.

Each entity has one typed contract implemented by both backends. The method
names are the legacy (document store) operation names so route handlers,
controllers and background jobs call the same thing whichever backend is
active. Every operation is a coroutine.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Protocol, runtime_checkable

Document = dict[str, Any]


@dataclass(frozen=True)
class RequestContext:
    """The parts of an incoming request the persistence layer needs."""

    user_id: str
    is_temporary: bool = False
    temporary_retention_hours: int | None = None


@runtime_checkable
class SessionStore(Protocol):
    async def search_conversation(self, conversation_id: str) -> Document | None: ...
    async def get_convo(self, user_id: str, conversation_id: str) -> Document | None: ...
    async def save_convo(
        self, ctx: RequestContext, data: Document, metadata: Document | None = None
    ) -> Document: ...
    async def bulk_save_convos(self, convos: list[Document]) -> Document: ...
    async def get_convos_by_cursor(
        self,
        user_id: str,
        *,
        cursor: str | None = None,
        limit: int = 25,
        is_archived: bool = False,
        tags: list[str] | None = None,
        search: str | None = None,
        order: str = "desc",
    ) -> Document: ...
    async def get_convos_queried(
        self, user_id: str, convo_ids: Iterable[Any], cursor: str | None = None, limit: int = 25
    ) -> Document: ...
    async def get_convo_title(self, user_id: str, conversation_id: str) -> str | None: ...
    async def get_convo_files(self, conversation_id: str) -> list[str]: ...
    async def delete_convos(self, user_id: str, filter: Document) -> Document: ...
    async def delete_null_or_empty_conversations(self) -> Document: ...


@runtime_checkable
class MessageStore(Protocol):
    async def get_message(
        self, *, user_id: str, conversation_id: str, message_id: str
    ) -> Document | None: ...
    async def get_messages(self, filter: Document, select: str | None = None) -> list[Document]: ...
    async def save_message(
        self, ctx: RequestContext, message: Document, metadata: Document | None = None
    ) -> Document: ...
    async def record_message(self, message: Document) -> Document: ...
    async def update_message(self, ctx: RequestContext, message: Document) -> Document | None: ...
    async def delete_messages_since(
        self, *, user_id: str, conversation_id: str, message_id: str
    ) -> Document: ...
    async def delete_messages(self, filter: Document) -> Document: ...


@runtime_checkable
class FileStore(Protocol):
    async def find_file_by_id(self, file_id: str) -> Document | None: ...
    async def get_files(
        self, filter: Document, sort: Document | None = None, select: str | None = None
    ) -> list[Document]: ...
    async def get_tool_files_by_ids(
        self, file_ids: list[str], tool_resources: set[str] | None = None
    ) -> list[Document]: ...
    async def create_file(self, data: Document, disable_ttl: bool = False) -> Document: ...
    async def update_file(self, data: Document) -> Document | None: ...
    async def update_file_usage(self, file_id: str, inc: int = 1) -> Document | None: ...
    async def delete_file(self, file_id: str) -> Document | None: ...
    async def delete_file_by_filter(self, filter: Document) -> Document | None: ...
    async def delete_files(
        self, file_ids: list[str] | None = None, user: str | None = None
    ) -> Document: ...
    async def batch_update_files(self, updates: list[Document]) -> int: ...


@runtime_checkable
class TemplateStore(Protocol):
    async def get_preset(self, user_id: str, preset_id: str) -> Document | None: ...
    async def get_presets(self, user_id: str, filter: Document | None = None) -> list[Document]: ...
    async def save_preset(self, user_id: str, data: Document) -> Document: ...
    async def delete_presets(self, user_id: str, filter: Document | None = None) -> Document: ...
    async def get_public_templates(
        self, filter: Document | None = None, limit: int = 50
    ) -> list[Document]: ...
    async def increment_template_usage(self, template_id: str) -> int | None: ...


@runtime_checkable
class UserStore(Protocol):
    async def find_user(self, criteria: Document, fields: str = "*") -> Document | None: ...
    async def get_user_by_id(self, user_id: str, fields: str = "*") -> Document | None: ...
    async def create_user(self, data: Document, balance_config: Document | None = None) -> Document: ...
    async def update_user(self, user_id: str, data: Document) -> Document | None: ...
    async def delete_user_by_id(self, user_id: str, hard_delete: bool = False) -> bool: ...
    async def count_users(self, criteria: Document | None = None) -> int: ...
    async def get_users_by_ids(self, user_ids: list[str], fields: str = "*") -> list[Document]: ...
    async def search_users(self, term: str, limit: int = 20, offset: int = 0) -> list[Document]: ...
    async def update_last_activity(self, user_id: str) -> bool: ...
    async def increment_comparison_count(self, user_id: str) -> int | None: ...


@runtime_checkable
class TransactionStore(Protocol):
    async def get_transactions(self, filter: Document) -> list[Document]: ...
    async def create_transaction(
        self, data: Document, balance: Document | None = None, transactions: Document | None = None
    ) -> Document | None: ...
    async def create_structured_transaction(
        self, data: Document, balance: Document | None = None, transactions: Document | None = None
    ) -> Document | None: ...
    async def create_auto_refill_transaction(self, data: Document) -> Document | None: ...
    async def update_balance(
        self, user: str, increment_value: float, set_values: Document | None = None
    ) -> Document: ...
    async def get_balance(self, user: str) -> Document | None: ...
