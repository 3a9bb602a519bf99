"""Messaging backend on a SQL database through SQLAlchemy."""

import logging
from uuid import uuid4

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from estate_messaging import models
from estate_messaging.config import settings
from estate_messaging.core.exceptions import (
    BackendError,
    ConversationBlockedError,
    NotFoundError,
)
from estate_messaging.db.repositories import ConversationRepository, MessageRepository
from estate_messaging.schemas import (
    Conversation,
    ConversationSearchFilters,
    ConversationStatus,
    CreateConversationDto,
    Message,
    MessageContent,
    MessageDraft,
    MessagePage,
    MessageSearchFilters,
    utcnow,
)

logger = logging.getLogger(__name__)


def _attachment_rows(content: MessageContent) -> list[dict]:
    now = utcnow().isoformat()
    return [
        {"id": str(uuid4()), "created_at": now, **a.model_dump(mode="json")}
        for a in content.attachments
    ]


def _to_message(record: models.Message) -> Message:
    try:
        return Message.model_validate(record)
    except ValidationError as e:
        logger.error(f"Stored message {record.id} is invalid: {e}")
        raise BackendError(f"Invalid stored message '{record.id}': {e}") from e


def _to_conversation(
    record: models.Conversation, last_message: models.Message | None
) -> Conversation:
    try:
        return Conversation(
            id=record.id,
            participants=record.participants,
            property_id=record.property_id,
            last_message=_to_message(last_message) if last_message else None,
            unread_count=record.unread_count or {},
            status=record.status,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
    except ValidationError as e:
        logger.error(f"Stored conversation {record.id} is invalid: {e}")
        raise BackendError(f"Invalid stored conversation '{record.id}': {e}") from e


class SqlMessagingBackend:
    """Backend storing conversations and messages in relational tables.

    Each call runs in its own session; writes that touch several rows commit
    once so a conversation never exists without its first message.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def _load_conversation(
        self, session: AsyncSession, conversation_id: str
    ) -> models.Conversation:
        conversation = await ConversationRepository(session).get(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        return conversation

    async def list_conversations(self, filters: ConversationSearchFilters) -> list[Conversation]:
        try:
            async with self.session_maker() as session:
                message_repo = MessageRepository(session)
                records = await ConversationRepository(session).list(
                    property_id=filters.property_id,
                    participant_id=filters.participant_id,
                    status=filters.status.value if filters.status else None,
                    include_archived=filters.include_archived,
                )
                return [
                    _to_conversation(record, await message_repo.get_latest(record.id))
                    for record in records
                ]
        except SQLAlchemyError as e:
            logger.error(f"Failed to list conversations: {e}")
            raise BackendError(str(e)) from e

    async def list_messages(self, conversation_id: str, page: int, limit: int) -> MessagePage:
        try:
            async with self.session_maker() as session:
                await self._load_conversation(session, conversation_id)
                message_repo = MessageRepository(session)
                total = await message_repo.count(conversation_id)
                records = await message_repo.list_newest(
                    conversation_id, skip=(page - 1) * limit, limit=limit
                )
                return MessagePage(messages=[_to_message(r) for r in records], total=total)
        except SQLAlchemyError as e:
            logger.error(f"Failed to list messages for {conversation_id}: {e}")
            raise BackendError(str(e)) from e

    async def create_message(self, draft: MessageDraft, *, sender_id: str) -> Message:
        try:
            async with self.session_maker() as session:
                conversation = await self._load_conversation(session, draft.conversation_id)
                if conversation.status == ConversationStatus.BLOCKED.value:
                    raise ConversationBlockedError(conversation.id)
                if sender_id not in conversation.participants:
                    raise BackendError(
                        f"User '{sender_id}' is not a participant of '{conversation.id}'",
                        status_code=403,
                    )

                now = utcnow()
                record = await MessageRepository(session).add(
                    conversation_id=conversation.id,
                    sender_id=sender_id,
                    type=draft.type.value,
                    content=draft.content,
                    attachments=_attachment_rows(draft),
                    read_by={sender_id: now.isoformat()},
                    client_id=draft.client_id,
                    created_at=now,
                    updated_at=now,
                )
                conversation.unread_count = {
                    p: (0 if p == sender_id else (conversation.unread_count or {}).get(p, 0) + 1)
                    for p in conversation.participants
                }
                conversation.updated_at = now
                await session.commit()
                await session.refresh(record)
                logger.debug(f"Stored message {record.id} in conversation {conversation.id}")
                return _to_message(record)
        except SQLAlchemyError as e:
            logger.error(f"Failed to store message in {draft.conversation_id}: {e}")
            raise BackendError(str(e)) from e

    async def create_conversation(
        self, dto: CreateConversationDto, *, creator_id: str
    ) -> Conversation:
        participants = list(dict.fromkeys([*dto.participant_ids, creator_id]))
        try:
            async with self.session_maker() as session:
                now = utcnow()
                conversation = await ConversationRepository(session).add(
                    participants=participants,
                    property_id=dto.property_id,
                    status=ConversationStatus.ACTIVE.value,
                    unread_count={p: (0 if p == creator_id else 1) for p in participants},
                    created_at=now,
                    updated_at=now,
                )
                message = await MessageRepository(session).add(
                    conversation_id=conversation.id,
                    sender_id=creator_id,
                    type=dto.initial_message.type.value,
                    content=dto.initial_message.content,
                    attachments=_attachment_rows(dto.initial_message),
                    read_by={creator_id: now.isoformat()},
                    created_at=now,
                    updated_at=now,
                )
                await session.commit()
                await session.refresh(conversation)
                await session.refresh(message)
                logger.info(
                    f"Created conversation {conversation.id} with {len(participants)} participants"
                )
                return _to_conversation(conversation, message)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create conversation: {e}")
            raise BackendError(str(e)) from e

    async def mark_read(self, conversation_id: str, participant_id: str) -> None:
        try:
            async with self.session_maker() as session:
                conversation = await self._load_conversation(session, conversation_id)
                read_at = utcnow().isoformat()
                for message in await MessageRepository(session).list_all(conversation_id):
                    if participant_id not in (message.read_by or {}):
                        message.read_by = {**(message.read_by or {}), participant_id: read_at}
                conversation.unread_count = {
                    **(conversation.unread_count or {}),
                    participant_id: 0,
                }
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to mark {conversation_id} read for {participant_id}: {e}")
            raise BackendError(str(e)) from e

    async def soft_delete_message(self, message_id: str) -> None:
        try:
            async with self.session_maker() as session:
                message_repo = MessageRepository(session)
                message = await message_repo.get(message_id)
                if message is None:
                    raise NotFoundError("Message", message_id)
                now = utcnow()
                await message_repo.update(
                    message,
                    is_deleted=True,
                    deleted_at=now,
                    updated_at=now,
                    content=settings.DELETED_MESSAGE_TEXT,
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete message {message_id}: {e}")
            raise BackendError(str(e)) from e

    async def set_conversation_status(
        self, conversation_id: str, status: ConversationStatus
    ) -> None:
        try:
            async with self.session_maker() as session:
                updated = await ConversationRepository(session).set_status(
                    conversation_id, status.value
                )
                if updated is None:
                    raise NotFoundError("Conversation", conversation_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to set status of {conversation_id}: {e}")
            raise BackendError(str(e)) from e

    async def search_messages(
        self, conversation_id: str, filters: MessageSearchFilters
    ) -> list[Message]:
        try:
            async with self.session_maker() as session:
                await self._load_conversation(session, conversation_id)
                records = await MessageRepository(session).search(
                    conversation_id,
                    query=filters.query,
                    after=filters.start_date,
                    before=filters.end_date,
                    types=[t.value for t in filters.message_types],
                )
                return [_to_message(r) for r in records]
        except SQLAlchemyError as e:
            logger.error(f"Failed to search messages in {conversation_id}: {e}")
            raise BackendError(str(e)) from e
