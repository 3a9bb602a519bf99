"""Conversation repository."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from estate_messaging.db.repositories.base import BaseRepository
from estate_messaging.models import Conversation


class ConversationRepository(BaseRepository[Conversation]):
    """Repository for conversation operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Conversation)

    async def list(
        self,
        *,
        property_id: str | None = None,
        participant_id: str | None = None,
        status: str | None = None,
        include_archived: bool = False,
    ) -> list[Conversation]:
        """List conversations, most recently updated first.

        Args:
            property_id: Only conversations about this listing
            participant_id: Only conversations this user takes part in
            status: Only conversations in this status
            include_archived: Keep archived conversations when no status is given

        Returns:
            Matching conversations
        """
        stmt = select(Conversation)

        if property_id:
            stmt = stmt.where(Conversation.property_id == property_id)

        if status:
            stmt = stmt.where(Conversation.status == status)
        elif not include_archived:
            stmt = stmt.where(Conversation.status != "archived")

        stmt = stmt.order_by(Conversation.updated_at.desc(), Conversation.id)
        result = await self.session.execute(stmt)
        items = list(result.scalars().all())

        # Participants live in a JSON column; filter portably in Python
        if participant_id:
            items = [c for c in items if participant_id in c.participants]

        return items

    async def set_status(self, conversation_id: str, status: str) -> Conversation | None:
        """Change a conversation's status.

        Args:
            conversation_id: The conversation ID
            status: active, archived or blocked

        Returns:
            The updated conversation or None if not found
        """
        conversation = await self.get(conversation_id)
        if conversation:
            await self.update(conversation, status=status, updated_at=datetime.now(timezone.utc))
        return conversation
