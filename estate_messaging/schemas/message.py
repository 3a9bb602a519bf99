"""Message schemas."""

from datetime import datetime
from enum import Enum

from pydantic import Field, model_validator

from estate_messaging.schemas.common import CamelModel, UTCDateTime, utcnow


class MessageType(str, Enum):
    """Message type enum."""

    TEXT = "text"
    IMAGE = "image"
    DOCUMENT = "document"
    APPOINTMENT = "appointment"
    SYSTEM = "system"


class AttachmentType(str, Enum):
    """Attachment type enum."""

    IMAGE = "image"
    DOCUMENT = "document"


class DeliveryStatus(str, Enum):
    """Local delivery state of a message."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class AttachmentDraft(CamelModel):
    """Attachment descriptor supplied when sending a message."""

    url: str = Field(..., max_length=500)
    type: AttachmentType
    file_name: str
    file_size: int = Field(..., ge=0)
    mime_type: str


class MessageAttachment(AttachmentDraft):
    """Attachment stored with a message."""

    id: str
    created_at: UTCDateTime = Field(default_factory=utcnow)


class MessageContent(CamelModel):
    """Content shared by message drafts and initial conversation messages."""

    content: str = ""
    type: MessageType = MessageType.TEXT
    attachments: list[AttachmentDraft] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_content(self) -> "MessageContent":
        """Empty content is allowed only for non-text messages with attachments."""
        if not self.content.strip():
            if self.type == MessageType.TEXT or not self.attachments:
                raise ValueError("content may be empty only for attachment messages")
        return self


class MessageDraft(MessageContent):
    """Schema for sending a new message to a conversation."""

    conversation_id: str
    client_id: str | None = Field(None, description="Client correlation id")


class Message(CamelModel):
    """A single message in a conversation thread."""

    id: str
    conversation_id: str
    sender_id: str
    content: str = ""
    type: MessageType = MessageType.TEXT
    attachments: list[MessageAttachment] = Field(default_factory=list)
    read_by: dict[str, UTCDateTime] = Field(default_factory=dict)
    created_at: UTCDateTime
    updated_at: UTCDateTime | None = None
    deleted_at: UTCDateTime | None = None
    is_deleted: bool = False
    client_id: str | None = None
    delivery_status: DeliveryStatus = DeliveryStatus.SENT

    @property
    def sort_key(self) -> tuple[datetime, str]:
        """Thread order: creation time, ties broken by id."""
        return (self.created_at, self.id)

    @property
    def is_confirmed(self) -> bool:
        """Whether the backend has acknowledged this message."""
        return self.delivery_status == DeliveryStatus.SENT

    def is_read_by(self, user_id: str) -> bool:
        return user_id in self.read_by


class MessagePage(CamelModel):
    """One page of a conversation's messages plus the thread total."""

    messages: list[Message]
    total: int = Field(..., ge=0)


class MessageSearchFilters(CamelModel):
    """Filters for searching a conversation's messages."""

    query: str | None = None
    start_date: UTCDateTime | None = None
    end_date: UTCDateTime | None = None
    message_types: list[MessageType] = Field(default_factory=list)
