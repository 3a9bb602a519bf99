"""Conversation model for grouping related messages."""

from uuid import uuid4

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from estate_messaging.db.base import Base, JSONType
from estate_messaging.models.base import TimestampMixin


class Conversation(Base, TimestampMixin):
    """Represents a conversation between a property owner and seekers."""

    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    participants: Mapped[list[str]] = mapped_column(JSONType, nullable=False)
    property_id: Mapped[str | None] = mapped_column(String(36))

    status: Mapped[str] = mapped_column(
        String(20), default="active"
    )  # active, archived, blocked

    # participant id -> number of unread messages
    unread_count: Mapped[dict] = mapped_column(JSONType, default=dict)

    # Relationships
    messages: Mapped[list["Message"]] = relationship(back_populates="conversation")  # noqa: F821

    __table_args__ = (
        Index("ix_conversations_property", "property_id"),
        Index("ix_conversations_status", "status"),
        Index("ix_conversations_updated_at", "updated_at"),
    )
