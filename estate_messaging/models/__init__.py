"""SQLAlchemy models."""

from estate_messaging.models.conversation import Conversation
from estate_messaging.models.message import Message

__all__ = [
    "Conversation",
    "Message",
]
