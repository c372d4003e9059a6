"""
Entity models.

The router binds the legacy operation names to either the document store
models (``models.mongo``) or the relational shims (``models.supabase``).
"""

from .interface import (
    Document,
    FileStore,
    MessageStore,
    RequestContext,
    SessionStore,
    TemplateStore,
    TransactionStore,
    UserStore,
)
from .router import OPERATIONS, DataAccess, create_data_access, get_data_access, reset_data_access

__all__ = [
    "Document",
    "RequestContext",
    "SessionStore",
    "MessageStore",
    "FileStore",
    "TemplateStore",
    "UserStore",
    "TransactionStore",
    "OPERATIONS",
    "DataAccess",
    "create_data_access",
    "get_data_access",
    "reset_data_access",
]
