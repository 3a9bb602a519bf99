"""Pydantic schemas for conversations and messages."""

from estate_messaging.schemas.common import MessagePagination, utcnow
from estate_messaging.schemas.conversation import (
    Conversation,
    ConversationSearchFilters,
    ConversationStatus,
    CreateConversationDto,
)
from estate_messaging.schemas.message import (
    AttachmentDraft,
    AttachmentType,
    DeliveryStatus,
    Message,
    MessageAttachment,
    MessageContent,
    MessageDraft,
    MessagePage,
    MessageSearchFilters,
    MessageType,
)

__all__ = [
    "AttachmentDraft",
    "AttachmentType",
    "Conversation",
    "ConversationSearchFilters",
    "ConversationStatus",
    "CreateConversationDto",
    "DeliveryStatus",
    "Message",
    "MessageAttachment",
    "MessageContent",
    "MessageDraft",
    "MessagePage",
    "MessagePagination",
    "MessageSearchFilters",
    "MessageType",
    "utcnow",
]
