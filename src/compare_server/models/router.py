"""
Mode Router

Binds the legacy operation names to one backend implementation, once per
process. Callers use a single entry point whichever backend is active:

    data_access = get_data_access()
    convo = await data_access.get_convo(user_id, conversation_id)

DB_MODE=mongodb (default): document store models (models/mongo)
DB_MODE=supabase:          relational shims (models/supabase)

The binding table is read-only after construction. Operations the active
backend does not provide are bound to a stub raising
OperationNotImplementedError, so a missing operation never looks like an
empty result.
"""

from __future__ import annotations

import functools
from types import MappingProxyType
from typing import Any, Callable, Mapping

from ..config.config import BackendMode, DataAccessConfig, load_data_access_config
from ..config.logfire_config import get_logger, safe_logfire_info, safe_logfire_warning, safe_span, setup_logfire
from ..db.connection import ConnectionManager, mongo_connection, relational_connection
from ..db.errors import OperationNotImplementedError
from ..db.factory import get_db_client
from ..db.protocol import DatabaseClient

logger = get_logger(__name__)

SESSIONS = "sessions"
MESSAGES = "messages"
FILES = "files"
TEMPLATES = "templates"
USERS = "users"
TRANSACTIONS = "transactions"

# operation name -> entity store that provides it
OPERATIONS: Mapping[str, str] = MappingProxyType(
    {
        # Sessions
        "search_conversation": SESSIONS,
        "get_convo": SESSIONS,
        "save_convo": SESSIONS,
        "bulk_save_convos": SESSIONS,
        "get_convos_by_cursor": SESSIONS,
        "get_convos_queried": SESSIONS,
        "get_convo_title": SESSIONS,
        "get_convo_files": SESSIONS,
        "delete_convos": SESSIONS,
        "delete_null_or_empty_conversations": SESSIONS,
        # Messages
        "get_message": MESSAGES,
        "get_messages": MESSAGES,
        "save_message": MESSAGES,
        "record_message": MESSAGES,
        "update_message": MESSAGES,
        "delete_messages_since": MESSAGES,
        "delete_messages": MESSAGES,
        # Files
        "find_file_by_id": FILES,
        "get_files": FILES,
        "get_tool_files_by_ids": FILES,
        "create_file": FILES,
        "update_file": FILES,
        "update_file_usage": FILES,
        "delete_file": FILES,
        "delete_file_by_filter": FILES,
        "delete_files": FILES,
        "batch_update_files": FILES,
        # Templates
        "get_preset": TEMPLATES,
        "get_presets": TEMPLATES,
        "save_preset": TEMPLATES,
        "delete_presets": TEMPLATES,
        "get_public_templates": TEMPLATES,
        "increment_template_usage": TEMPLATES,
        # Users
        "find_user": USERS,
        "get_user_by_id": USERS,
        "create_user": USERS,
        "update_user": USERS,
        "delete_user_by_id": USERS,
        "count_users": USERS,
        "get_users_by_ids": USERS,
        "search_users": USERS,
        "update_last_activity": USERS,
        "increment_comparison_count": USERS,
        "get_remaining_comparisons": USERS,
        # Transactions
        "get_transactions": TRANSACTIONS,
        "create_transaction": TRANSACTIONS,
        "create_structured_transaction": TRANSACTIONS,
        "create_auto_refill_transaction": TRANSACTIONS,
        "update_balance": TRANSACTIONS,
        "get_balance": TRANSACTIONS,
    }
)


def _not_implemented(operation: str, mode: BackendMode) -> Callable[..., Any]:
    async def stub(*args: Any, **kwargs: Any) -> Any:
        logger.warning(f"[{operation}] Not implemented for {mode.value} backend")
        safe_logfire_warning("Operation not implemented", operation=operation, mode=mode.value)
        raise OperationNotImplementedError(operation, mode.value)

    stub.__name__ = operation
    stub.not_implemented = True
    return stub


def _traced(operation: str, mode: BackendMode, fn: Callable[..., Any]) -> Callable[..., Any]:
    @functools.wraps(fn)
    async def call(*args: Any, **kwargs: Any) -> Any:
        with safe_span(f"data_access.{operation}", mode=mode.value):
            return await fn(*args, **kwargs)

    return call


class DataAccess:
    """
    Immutable operation table for one backend mode.

    Args:
        mode: The backend the stores belong to
        stores: Entity name (see OPERATIONS) to store instance
        connection: Optional lazy connection for the backend handle
    """

    def __init__(
        self,
        mode: BackendMode,
        stores: Mapping[str, Any],
        connection: ConnectionManager | None = None,
    ) -> None:
        bindings: dict[str, Callable[..., Any]] = {}
        missing: list[str] = []
        for operation, entity in OPERATIONS.items():
            fn = getattr(stores.get(entity), operation, None)
            if fn is None:
                missing.append(operation)
                bindings[operation] = _not_implemented(operation, mode)
            else:
                bindings[operation] = _traced(operation, mode, fn)

        object.__setattr__(self, "mode", mode)
        object.__setattr__(self, "connection", connection)
        object.__setattr__(self, "bindings", MappingProxyType(bindings))

        if missing:
            logger.info(f"[DataAccess] {mode.value} backend does not provide: {', '.join(missing)}")

    def __getattr__(self, name: str) -> Callable[..., Any]:
        try:
            return self.bindings[name]
        except KeyError:
            raise AttributeError(f"Unknown data access operation: {name}") from None

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("DataAccess bindings are fixed at startup")

    def __delattr__(self, name: str) -> None:
        raise AttributeError("DataAccess bindings are fixed at startup")

    def __dir__(self) -> list[str]:
        return sorted(set(super().__dir__()) | set(self.bindings))

    def is_implemented(self, operation: str) -> bool:
        return not getattr(self.bindings[operation], "not_implemented", False)

    async def connect(self) -> Any:
        """Establish (or reuse) the backend connection."""
        if self.connection is None:
            return None
        return await self.connection.connect()


def relational_stores(client: DatabaseClient, config: DataAccessConfig) -> dict[str, Any]:
    from .supabase.file_model import SupabaseFileStore
    from .supabase.message_model import SupabaseMessageStore
    from .supabase.session_model import SupabaseSessionStore
    from .supabase.template_model import SupabaseTemplateStore
    from .supabase.transaction_model import SupabaseTransactionStore
    from .supabase.user_model import SupabaseUserStore

    return {
        SESSIONS: SupabaseSessionStore(client, config.temporary_chat_retention_hours),
        MESSAGES: SupabaseMessageStore(client),
        FILES: SupabaseFileStore(client, config.file_ttl_seconds),
        TEMPLATES: SupabaseTemplateStore(client),
        USERS: SupabaseUserStore(client),
        TRANSACTIONS: SupabaseTransactionStore(client),
    }


def mongo_stores(database: Any, config: DataAccessConfig) -> dict[str, Any]:
    from .mongo.conversation_model import MongoConversationStore
    from .mongo.file_model import MongoFileStore
    from .mongo.message_model import MongoMessageStore
    from .mongo.preset_model import MongoPresetStore
    from .mongo.transaction_model import MongoTransactionStore
    from .mongo.user_model import MongoUserStore

    return {
        SESSIONS: MongoConversationStore(database, config.temporary_chat_retention_hours),
        MESSAGES: MongoMessageStore(database),
        FILES: MongoFileStore(database, config.file_ttl_seconds),
        TEMPLATES: MongoPresetStore(database),
        USERS: MongoUserStore(database),
        TRANSACTIONS: MongoTransactionStore(database),
    }


def _open_mongo_database(config: DataAccessConfig) -> Any:
    from pymongo import MongoClient

    client = MongoClient(config.mongo_uri, tz_aware=False)
    return client[config.mongo_db_name]


def create_data_access(
    config: DataAccessConfig,
    *,
    db_client: DatabaseClient | None = None,
    mongo_db: Any = None,
) -> DataAccess:
    """
    Build the DataAccess for config.mode.

    Explicit handles take precedence over the ones derived from the config,
    which lets both modes be constructed side by side.
    """
    if config.mode is BackendMode.SUPABASE:
        client = db_client or get_db_client(config)
        logger.info(f"[DataAccess] Using relational backend (provider={config.provider.value})")
        return DataAccess(config.mode, relational_stores(client, config), relational_connection(client))

    database = mongo_db if mongo_db is not None else _open_mongo_database(config)
    logger.info(f"[DataAccess] Using document store (database={config.mongo_db_name})")
    return DataAccess(config.mode, mongo_stores(database, config), mongo_connection(database))


_data_access: DataAccess | None = None


def get_data_access() -> DataAccess:
    """Process-wide DataAccess, configured from the environment on first use."""
    global _data_access
    if _data_access is None:
        setup_logfire()
        _data_access = create_data_access(load_data_access_config())
        safe_logfire_info("Data access ready", mode=_data_access.mode.value)
    return _data_access


def reset_data_access() -> None:
    """
    Drop the cached DataAccess (used in tests to re-initialise with different env).
    Not intended for production use.
    """
    global _data_access
    _data_access = None
