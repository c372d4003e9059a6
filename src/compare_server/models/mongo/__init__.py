"""Document store entity models."""

from .conversation_model import MongoConversationStore
from .file_model import MongoFileStore
from .message_model import MongoMessageStore
from .preset_model import MongoPresetStore
from .transaction_model import MongoTransactionStore
from .user_model import MongoUserStore

__all__ = [
    "MongoConversationStore",
    "MongoMessageStore",
    "MongoFileStore",
    "MongoPresetStore",
    "MongoUserStore",
    "MongoTransactionStore",
]
