"""Repository classes for database operations."""

from estate_messaging.db.repositories.base import BaseRepository
from estate_messaging.db.repositories.conversation import ConversationRepository
from estate_messaging.db.repositories.message import MessageRepository

__all__ = [
    "BaseRepository",
    "ConversationRepository",
    "MessageRepository",
]
