"""Message model for conversation threads."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from estate_messaging.db.base import Base, JSONType
from estate_messaging.models.base import TimestampMixin


class Message(Base, TimestampMixin):
    """Represents a message in a conversation thread."""

    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    conversation_id: Mapped[str] = mapped_column(
        ForeignKey("conversations.id"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(String(36), nullable=False)

    type: Mapped[str] = mapped_column(
        String(20), default="text"
    )  # text, image, document, appointment, system
    content: Mapped[str] = mapped_column(Text, default="")
    attachments: Mapped[list] = mapped_column(JSONType, default=list)

    # participant id -> ISO timestamp of first read
    read_by: Mapped[dict] = mapped_column(JSONType, default=dict)

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Correlation id supplied by the sending client
    client_id: Mapped[str | None] = mapped_column(String(64))

    # Relationships
    conversation: Mapped["Conversation"] = relationship(back_populates="messages")  # noqa: F821

    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
        Index("ix_messages_client_id", "client_id"),
    )
