"""Relational entity shims returning legacy document shapes."""

from .file_model import SupabaseFileStore
from .message_model import SupabaseMessageStore
from .session_model import SupabaseSessionStore
from .template_model import SupabaseTemplateStore
from .transaction_model import SupabaseTransactionStore
from .user_model import SupabaseUserStore

__all__ = [
    "SupabaseSessionStore",
    "SupabaseMessageStore",
    "SupabaseFileStore",
    "SupabaseTemplateStore",
    "SupabaseUserStore",
    "SupabaseTransactionStore",
]
