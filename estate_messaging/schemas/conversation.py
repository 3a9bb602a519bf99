"""Conversation schemas."""

from enum import Enum

from pydantic import Field, field_validator, model_validator

from estate_messaging.schemas.common import CamelModel, UTCDateTime
from estate_messaging.schemas.message import Message, MessageContent


class ConversationStatus(str, Enum):
    """Conversation status enum."""

    ACTIVE = "active"
    ARCHIVED = "archived"
    BLOCKED = "blocked"


class Conversation(CamelModel):
    """A thread of messages between a fixed set of participants."""

    id: str
    participants: tuple[str, ...]
    property_id: str | None = None
    last_message: Message | None = None
    unread_count: dict[str, int] = Field(default_factory=dict)
    status: ConversationStatus = ConversationStatus.ACTIVE
    created_at: UTCDateTime
    updated_at: UTCDateTime

    @field_validator("participants", mode="before")
    @classmethod
    def _distinct_participants(cls, value):
        return tuple(dict.fromkeys(value))

    @model_validator(mode="after")
    def check_invariants(self) -> "Conversation":
        if len(self.participants) < 2:
            raise ValueError("a conversation needs at least two participants")
        unknown = set(self.unread_count) - set(self.participants)
        if unknown:
            raise ValueError(f"unread counts for non-participants: {sorted(unknown)}")
        if self.last_message and self.last_message.conversation_id != self.id:
            raise ValueError("last message belongs to another conversation")
        return self

    @property
    def accepts_messages(self) -> bool:
        return self.status != ConversationStatus.BLOCKED

    def unread_for(self, user_id: str) -> int:
        """Number of messages ``user_id`` has not read."""
        return self.unread_count.get(user_id, 0)


class CreateConversationDto(CamelModel):
    """Schema for starting a conversation with its first message."""

    participant_ids: list[str] = Field(..., min_length=1)
    property_id: str | None = None
    initial_message: MessageContent


class ConversationSearchFilters(CamelModel):
    """Filters for listing conversations.

    Without an explicit ``status`` archived conversations are left out unless
    ``include_archived`` is set, which gives the default inbox query.
    """

    property_id: str | None = None
    participant_id: str | None = None
    status: ConversationStatus | None = None
    include_archived: bool = False

    def matches(self, conversation: Conversation) -> bool:
        if self.property_id and conversation.property_id != self.property_id:
            return False
        if self.participant_id and self.participant_id not in conversation.participants:
            return False
        if self.status:
            return conversation.status == self.status
        return self.include_archived or conversation.status != ConversationStatus.ARCHIVED
