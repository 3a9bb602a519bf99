"""In-process messaging backend for local development and tests."""

import logging
from collections.abc import Iterable
from uuid import uuid4

from estate_messaging.config import settings
from estate_messaging.core.exceptions import (
    BackendError,
    ConversationBlockedError,
    NotFoundError,
)
from estate_messaging.schemas import (
    Conversation,
    ConversationSearchFilters,
    ConversationStatus,
    CreateConversationDto,
    Message,
    MessageAttachment,
    MessageContent,
    MessageDraft,
    MessagePage,
    MessageSearchFilters,
    utcnow,
)
from estate_messaging.services.threads import (
    filter_messages,
    page_bounds,
    resolve_last_message,
    sort_messages,
)

logger = logging.getLogger(__name__)


class InMemoryMessagingBackend:
    """Keeps conversations and threads in dictionaries.

    Behaves like the hosted backend: unread counters move on every write,
    deletes are soft and a conversation is created with its first message.
    """

    def __init__(
        self,
        conversations: Iterable[Conversation] = (),
        messages: Iterable[Message] = (),
    ):
        self.conversations: dict[str, Conversation] = {}
        self.messages: dict[str, list[Message]] = {}
        self.load(conversations, messages)

    def load(self, conversations: Iterable[Conversation], messages: Iterable[Message]) -> None:
        """Seed stored state, replacing records with the same ids."""
        for conversation in conversations:
            self.conversations[conversation.id] = conversation
            self.messages.setdefault(conversation.id, [])
        for message in messages:
            thread = [m for m in self.messages.get(message.conversation_id, []) if m.id != message.id]
            thread.append(message)
            self.messages[message.conversation_id] = sort_messages(thread)

    def _get_conversation(self, conversation_id: str) -> Conversation:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        return conversation

    def _build_message(
        self,
        conversation_id: str,
        content: MessageContent,
        sender_id: str,
        client_id: str | None = None,
    ) -> Message:
        now = utcnow()
        return Message(
            id=str(uuid4()),
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content.content,
            type=content.type,
            attachments=[
                MessageAttachment(id=str(uuid4()), created_at=now, **a.model_dump())
                for a in content.attachments
            ],
            read_by={sender_id: now},
            created_at=now,
            client_id=client_id,
        )

    async def list_conversations(self, filters: ConversationSearchFilters) -> list[Conversation]:
        matches = [c for c in self.conversations.values() if filters.matches(c)]
        return sorted(matches, key=lambda c: c.updated_at, reverse=True)

    async def list_messages(self, conversation_id: str, page: int, limit: int) -> MessagePage:
        self._get_conversation(conversation_id)
        thread = self.messages.get(conversation_id, [])
        start, end = page_bounds(len(thread), page, limit)
        return MessagePage(messages=thread[start:end], total=len(thread))

    async def create_message(self, draft: MessageDraft, *, sender_id: str) -> Message:
        conversation = self._get_conversation(draft.conversation_id)
        if not conversation.accepts_messages:
            raise ConversationBlockedError(conversation.id)
        if sender_id not in conversation.participants:
            raise BackendError(
                f"User '{sender_id}' is not a participant of '{conversation.id}'", status_code=403
            )

        message = self._build_message(conversation.id, draft, sender_id, draft.client_id)
        self.messages[conversation.id] = sort_messages([*self.messages[conversation.id], message])

        unread = {
            p: (conversation.unread_for(p) + 1 if p != sender_id else 0)
            for p in conversation.participants
        }
        self.conversations[conversation.id] = conversation.model_copy(
            update={
                "last_message": message,
                "unread_count": unread,
                "updated_at": message.created_at,
            }
        )
        logger.debug(f"Stored message {message.id} in conversation {conversation.id}")
        return message

    async def create_conversation(
        self, dto: CreateConversationDto, *, creator_id: str
    ) -> Conversation:
        conversation_id = str(uuid4())
        message = self._build_message(conversation_id, dto.initial_message, creator_id)
        participants = (*dto.participant_ids, creator_id)
        conversation = Conversation(
            id=conversation_id,
            participants=participants,
            property_id=dto.property_id,
            last_message=message,
            unread_count={p: (0 if p == creator_id else 1) for p in participants},
            status=ConversationStatus.ACTIVE,
            created_at=message.created_at,
            updated_at=message.created_at,
        )
        self.conversations[conversation.id] = conversation
        self.messages[conversation.id] = [message]
        logger.info(f"Created conversation {conversation.id} with {len(conversation.participants)} participants")
        return conversation

    async def mark_read(self, conversation_id: str, participant_id: str) -> None:
        conversation = self._get_conversation(conversation_id)
        now = utcnow()
        self.messages[conversation_id] = [
            m if m.is_read_by(participant_id)
            else m.model_copy(update={"read_by": {**m.read_by, participant_id: now}})
            for m in self.messages[conversation_id]
        ]
        self.conversations[conversation_id] = conversation.model_copy(
            update={
                "unread_count": {**conversation.unread_count, participant_id: 0},
                "last_message": resolve_last_message(self.messages[conversation_id]),
            }
        )

    async def soft_delete_message(self, message_id: str) -> None:
        for conversation_id, thread in self.messages.items():
            for index, message in enumerate(thread):
                if message.id != message_id:
                    continue
                now = utcnow()
                thread[index] = message.model_copy(
                    update={
                        "is_deleted": True,
                        "deleted_at": now,
                        "updated_at": now,
                        "content": settings.DELETED_MESSAGE_TEXT,
                    }
                )
                conversation = self.conversations[conversation_id]
                self.conversations[conversation_id] = conversation.model_copy(
                    update={"last_message": resolve_last_message(thread)}
                )
                return
        raise NotFoundError("Message", message_id)

    async def set_conversation_status(
        self, conversation_id: str, status: ConversationStatus
    ) -> None:
        conversation = self._get_conversation(conversation_id)
        self.conversations[conversation_id] = conversation.model_copy(
            update={"status": status, "updated_at": utcnow()}
        )

    async def search_messages(
        self, conversation_id: str, filters: MessageSearchFilters
    ) -> list[Message]:
        self._get_conversation(conversation_id)
        return filter_messages(self.messages[conversation_id], filters)
