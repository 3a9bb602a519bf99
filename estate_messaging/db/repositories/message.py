"""Message repository."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from estate_messaging.db.repositories.base import BaseRepository
from estate_messaging.models import Message


class MessageRepository(BaseRepository[Message]):
    """Repository for message operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Message)

    async def count(self, conversation_id: str) -> int:
        """Count all messages in a conversation, deleted ones included."""
        stmt = select(func.count()).where(Message.conversation_id == conversation_id)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def list_newest(
        self, conversation_id: str, *, skip: int = 0, limit: int = 20
    ) -> list[Message]:
        """List a block of messages counted from the newest, returned oldest first."""
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(reversed(result.scalars().all()))

    async def list_all(self, conversation_id: str) -> list[Message]:
        """List a whole thread, oldest first."""
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at, Message.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_latest(self, conversation_id: str) -> Message | None:
        """Get the newest non-deleted message, or the newest deleted one."""
        base_query = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
        )
        result = await self.session.execute(base_query.where(Message.is_deleted.is_(False)))
        latest = result.scalar_one_or_none()
        if latest is None:
            result = await self.session.execute(base_query)
            latest = result.scalar_one_or_none()
        return latest

    async def search(
        self,
        conversation_id: str,
        *,
        query: str | None = None,
        after: datetime | None = None,
        before: datetime | None = None,
        types: list[str] | None = None,
    ) -> list[Message]:
        """Search a conversation's messages, oldest first."""
        stmt = select(Message).where(Message.conversation_id == conversation_id)

        if query:
            stmt = stmt.where(
                Message.content.ilike(f"%{query}%"), Message.is_deleted.is_(False)
            )

        if after:
            stmt = stmt.where(Message.created_at >= after)

        if before:
            stmt = stmt.where(Message.created_at <= before)

        if types:
            stmt = stmt.where(Message.type.in_(types))

        stmt = stmt.order_by(Message.created_at, Message.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
