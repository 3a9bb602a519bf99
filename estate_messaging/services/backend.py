"""Contract between the messaging store and the persistence backend."""

from typing import Protocol, runtime_checkable

from estate_messaging.schemas import (
    Conversation,
    ConversationSearchFilters,
    ConversationStatus,
    CreateConversationDto,
    Message,
    MessageDraft,
    MessagePage,
    MessageSearchFilters,
)


@runtime_checkable
class MessagingBackend(Protocol):
    """Conversation and message persistence consumed by the store.

    Implementations raise ``BackendError`` (or ``NotFoundError``) on failure
    and ``ConversationBlockedError`` when a blocked conversation is written to.
    """

    async def list_conversations(self, filters: ConversationSearchFilters) -> list[Conversation]:
        """List conversations matching ``filters``."""
        ...

    async def list_messages(self, conversation_id: str, page: int, limit: int) -> MessagePage:
        """Return one page of a thread, oldest first within the page.

        Page 1 holds the newest ``limit`` messages.
        """
        ...

    async def create_message(self, draft: MessageDraft, *, sender_id: str) -> Message:
        """Persist a message, echoing ``draft.client_id`` on the result."""
        ...

    async def create_conversation(
        self, dto: CreateConversationDto, *, creator_id: str
    ) -> Conversation:
        """Create a conversation and its first message in one operation."""
        ...

    async def mark_read(self, conversation_id: str, participant_id: str) -> None:
        """Record that ``participant_id`` has read the whole conversation."""
        ...

    async def soft_delete_message(self, message_id: str) -> None:
        ...

    async def set_conversation_status(
        self, conversation_id: str, status: ConversationStatus
    ) -> None:
        ...

    async def search_messages(
        self, conversation_id: str, filters: MessageSearchFilters
    ) -> list[Message]:
        ...
