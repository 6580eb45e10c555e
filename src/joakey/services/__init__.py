"""Business logic services for the Joakey chat service."""

from .change_feed import ChangeEvent, ChangeFeed, ChangeType, InMemoryChangeFeed, get_change_feed
from .chat_sync import ChatSynchronizer, SyncState
from .codec import PLACEHOLDER, ConversationCodec, MessageCodec, MessageDecryptionError
from .messages import MessageService, MessageView

__all__ = [
    "ChangeEvent", "ChangeFeed", "ChangeType", "InMemoryChangeFeed", "get_change_feed",
    "ChatSynchronizer", "SyncState",
    "PLACEHOLDER", "ConversationCodec", "MessageCodec", "MessageDecryptionError",
    "MessageService", "MessageView",
]
