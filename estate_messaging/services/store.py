"""Messaging state store.

Single source of truth for the conversations, threads and pagination cursors
loaded in a client session. Every mutation goes through the store so reads
always reflect the latest completed mutation; listeners are notified after
each state patch.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from estate_messaging.config import settings
from estate_messaging.core.exceptions import (
    ArchiveFailure,
    ConversationBlockedError,
    CreateConversationFailure,
    DeleteFailure,
    FetchFailure,
    MessagingError,
    SendFailure,
)
from estate_messaging.core.telemetry import get_tracer
from estate_messaging.schemas import (
    Conversation,
    ConversationSearchFilters,
    ConversationStatus,
    CreateConversationDto,
    DeliveryStatus,
    Message,
    MessageAttachment,
    MessageDraft,
    MessagePagination,
    MessageSearchFilters,
    utcnow,
)
from estate_messaging.services.backend import MessagingBackend
from estate_messaging.services.threads import merge_messages, reconcile_last_message

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

Listener = Callable[["MessagingStore"], None]


def _newest_first(conversations: list[Conversation]) -> list[Conversation]:
    return sorted(conversations, key=lambda c: c.updated_at, reverse=True)


class MessagingStore:
    """State container for one user's messaging session.

    The store is handed a backend and the authenticated user id; nothing is
    global, so several stores can live side by side.
    """

    def __init__(
        self,
        backend: MessagingBackend,
        current_user_id: str,
        *,
        page_size: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.backend = backend
        self.current_user_id = current_user_id
        self.page_size = page_size or settings.MESSAGE_PAGE_SIZE
        self.clock = clock
        self.version = 0

        self._conversations: list[Conversation] = []
        self._active_conversation_id: str | None = None
        self._conversation_filters = ConversationSearchFilters()
        self._is_loading_conversations = False
        self._conversation_error: MessagingError | None = None

        self._messages: dict[str, list[Message]] = {}
        self._message_pagination: dict[str, MessagePagination] = {}
        self._message_filters = MessageSearchFilters()
        self._is_loading_messages = False
        self._message_error: MessagingError | None = None

        # drafts of messages not yet confirmed, by client correlation id
        self._outbox: dict[str, MessageDraft] = {}
        self._listeners: list[Listener] = []
        self._conversation_request = 0
        self._message_loads = 0

    # State

    @property
    def conversations(self) -> list[Conversation]:
        """Loaded conversations, most recently updated first."""
        return self._conversations

    @property
    def active_conversation_id(self) -> str | None:
        return self._active_conversation_id

    @property
    def conversation_filters(self) -> ConversationSearchFilters:
        return self._conversation_filters

    @property
    def is_loading_conversations(self) -> bool:
        return self._is_loading_conversations

    @property
    def conversation_error(self) -> MessagingError | None:
        return self._conversation_error

    @property
    def messages(self) -> dict[str, list[Message]]:
        """Cached threads by conversation id, oldest first."""
        return self._messages

    @property
    def message_pagination(self) -> dict[str, MessagePagination]:
        return self._message_pagination

    @property
    def message_filters(self) -> MessageSearchFilters:
        return self._message_filters

    @property
    def is_loading_messages(self) -> bool:
        return self._is_loading_messages

    @property
    def message_error(self) -> MessagingError | None:
        return self._message_error

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` after every state change; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, **changes: Any) -> None:
        for key, value in changes.items():
            setattr(self, f"_{key}", value)
        self.version += 1
        for listener in list(self._listeners):
            listener(self)

    def _apply_thread(
        self,
        conversation_id: str,
        thread: list[Message] | None,
        conversation_update: dict[str, Any] | None = None,
        **changes: Any,
    ) -> None:
        """Store a conversation's thread and keep its ``last_message`` in step.

        Every change that can move the newest message (append, merge, delete)
        ends here, so the conversation list never disagrees with the cache.
        """
        messages = self._messages
        if thread is not None:
            messages = {**self._messages, conversation_id: thread}

        conversations = self._conversations
        conversation = self.get_conversation(conversation_id)
        if conversation is not None:
            if conversation_update:
                conversation = conversation.model_copy(update=conversation_update)
            conversation = reconcile_last_message(conversation, messages.get(conversation_id, []))
            conversations = _newest_first(
                [conversation if c.id == conversation_id else c for c in conversations]
            )

        self._set(messages=messages, conversations=conversations, **changes)

    # Lookups

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        return next((c for c in self._conversations if c.id == conversation_id), None)

    def get_messages(self, conversation_id: str) -> list[Message]:
        return self._messages.get(conversation_id, [])

    def get_unread_count(self, conversation_id: str) -> int:
        conversation = self.get_conversation(conversation_id)
        return conversation.unread_for(self.current_user_id) if conversation else 0

    # Selection

    def set_active_conversation(self, conversation_id: str | None) -> None:
        """Change the selected conversation. Does not touch unread counts."""
        if conversation_id == self._active_conversation_id:
            return
        self._set(active_conversation_id=conversation_id)

    # Fetching

    async def fetch_conversations(
        self, filters: ConversationSearchFilters | dict | None = None
    ) -> None:
        """Load the conversation list.

        On failure the previous list is kept and ``conversation_error`` is set.
        A response that was overtaken by a newer request is dropped.
        """
        filters = ConversationSearchFilters.model_validate(filters or {})
        self._conversation_request += 1
        request_id = self._conversation_request
        self._set(
            is_loading_conversations=True,
            conversation_error=None,
            conversation_filters=filters,
        )

        try:
            with tracer.start_as_current_span("messaging.fetch_conversations"):
                conversations = await self.backend.list_conversations(filters)
        except MessagingError as e:
            if request_id != self._conversation_request:
                return
            logger.warning(f"Failed to fetch conversations: {e}")
            error = FetchFailure(f"Failed to fetch conversations: {e.detail}")
            error.__cause__ = e
            self._set(is_loading_conversations=False, conversation_error=error)
            return

        if request_id != self._conversation_request:
            logger.debug(f"Discarding superseded conversation list (request {request_id})")
            return

        conversations = [
            reconcile_last_message(c, self._messages[c.id]) if c.id in self._messages else c
            for c in conversations
        ]
        active_id = self._active_conversation_id
        if active_id is not None and not any(c.id == active_id for c in conversations):
            active_id = None

        logger.info(f"Loaded {len(conversations)} conversations")
        self._set(
            conversations=_newest_first(conversations),
            active_conversation_id=active_id,
            is_loading_conversations=False,
        )

    async def fetch_messages(
        self, conversation_id: str, page: int = 1, limit: int | None = None
    ) -> None:
        """Load one page of a thread and merge it into the cache.

        Page 1 is the newest block; higher pages are older and end up before
        the cached messages. Pages may complete in any order.
        """
        limit = limit or self.page_size
        self._message_loads += 1
        self._set(is_loading_messages=True, message_error=None)

        try:
            with tracer.start_as_current_span("messaging.fetch_messages") as span:
                span.set_attribute("conversation.id", conversation_id)
                span.set_attribute("page", page)
                result = await self.backend.list_messages(conversation_id, page, limit)
        except MessagingError as e:
            self._message_loads -= 1
            logger.warning(f"Failed to fetch messages for {conversation_id}: {e}")
            error = FetchFailure(f"Failed to fetch messages: {e.detail}")
            error.__cause__ = e
            self._set(is_loading_messages=self._message_loads > 0, message_error=error)
            return

        self._message_loads -= 1
        thread = merge_messages(self._messages.get(conversation_id, []), result.messages)

        previous = self._message_pagination.get(conversation_id)
        if previous is not None and previous.limit == limit:
            page = max(page, previous.page)
        pagination = {
            **self._message_pagination,
            conversation_id: MessagePagination.for_page(page, limit, result.total),
        }

        self._apply_thread(
            conversation_id,
            thread,
            message_pagination=pagination,
            is_loading_messages=self._message_loads > 0,
        )

    async def search_messages(
        self, conversation_id: str, filters: MessageSearchFilters | dict
    ) -> list[Message]:
        """Search a conversation through the backend without touching the cache."""
        filters = MessageSearchFilters.model_validate(filters)
        self._set(message_filters=filters)
        try:
            with tracer.start_as_current_span("messaging.search_messages") as span:
                span.set_attribute("conversation.id", conversation_id)
                results = await self.backend.search_messages(conversation_id, filters)
        except MessagingError as e:
            logger.warning(f"Failed to search messages in {conversation_id}: {e}")
            error = FetchFailure(f"Failed to search messages: {e.detail}")
            error.__cause__ = e
            self._set(message_error=error)
            return []
        return merge_messages([], results)

    # Sending

    async def send_message(self, draft: MessageDraft | dict) -> Message:
        """Append a message optimistically, then confirm it with the backend.

        The local entry shows up at once. When the backend accepts it the
        entry is replaced by the stored record, matched by ``client_id``.
        When it fails the entry stays, flagged ``failed``, and ``SendFailure``
        is raised so the caller can offer a retry.
        """
        try:
            draft = MessageDraft.model_validate(draft)
        except ValidationError as e:
            raise SendFailure(f"Invalid message: {e}") from e

        conversation = self.get_conversation(draft.conversation_id)
        if conversation is not None and not conversation.accepts_messages:
            error = ConversationBlockedError(conversation.id)
            self._set(message_error=error)
            raise error

        client_id = draft.client_id or str(uuid4())
        draft = draft.model_copy(update={"client_id": client_id})
        now = self.clock()
        placeholder = Message(
            id=f"local-{client_id}",
            conversation_id=draft.conversation_id,
            sender_id=self.current_user_id,
            content=draft.content,
            type=draft.type,
            attachments=[
                MessageAttachment(id=f"local-{uuid4()}", created_at=now, **a.model_dump())
                for a in draft.attachments
            ],
            read_by={self.current_user_id: now},
            created_at=now,
            client_id=client_id,
            delivery_status=DeliveryStatus.PENDING,
        )
        thread = self._messages.get(draft.conversation_id)
        if thread is None:
            # Seed with the known latest message; a discarded draft falls back to it
            thread = [conversation.last_message] if conversation and conversation.last_message else []
        self._outbox[client_id] = draft
        self._apply_thread(
            draft.conversation_id,
            merge_messages(thread, [placeholder]),
            conversation_update={"updated_at": now},
            message_error=None,
        )
        return await self._deliver(draft, placeholder)

    async def retry_message(self, conversation_id: str, client_id: str) -> Message:
        """Send a failed message again under the same correlation id."""
        entry = next(
            (m for m in self.get_messages(conversation_id) if m.client_id == client_id),
            None,
        )
        draft = self._outbox.get(client_id)
        if entry is None or draft is None or entry.delivery_status != DeliveryStatus.FAILED:
            raise SendFailure(f"No failed message '{client_id}' to retry", client_id=client_id)

        pending = entry.model_copy(update={"delivery_status": DeliveryStatus.PENDING})
        self._apply_thread(
            conversation_id,
            merge_messages(self.get_messages(conversation_id), [pending]),
            message_error=None,
        )
        return await self._deliver(draft, pending)

    def discard_message(self, conversation_id: str, client_id: str) -> bool:
        """Drop a failed optimistic message the user gave up on."""
        thread = self.get_messages(conversation_id)
        remaining = [
            m
            for m in thread
            if not (m.client_id == client_id and m.delivery_status == DeliveryStatus.FAILED)
        ]
        if len(remaining) == len(thread):
            return False
        self._outbox.pop(client_id, None)
        update = None
        conversation = self.get_conversation(conversation_id)
        if conversation and conversation.last_message and conversation.last_message.client_id == client_id:
            update = {"last_message": None}
        self._apply_thread(conversation_id, remaining, conversation_update=update)
        return True

    async def _deliver(self, draft: MessageDraft, placeholder: Message) -> Message:
        conversation_id = draft.conversation_id
        try:
            with tracer.start_as_current_span("messaging.send_message") as span:
                span.set_attribute("conversation.id", conversation_id)
                confirmed = await self.backend.create_message(
                    draft, sender_id=self.current_user_id
                )
        except MessagingError as e:
            logger.warning(f"Failed to send message {draft.client_id} to {conversation_id}: {e}")
            failed = placeholder.model_copy(update={"delivery_status": DeliveryStatus.FAILED})
            if isinstance(e, SendFailure):
                e.client_id = draft.client_id
                self._apply_thread(
                    conversation_id,
                    merge_messages(self.get_messages(conversation_id), [failed]),
                    message_error=e,
                )
                raise
            error = SendFailure(f"Failed to send message: {e.detail}", client_id=draft.client_id)
            self._apply_thread(
                conversation_id,
                merge_messages(self.get_messages(conversation_id), [failed]),
                message_error=error,
            )
            raise error from e

        if confirmed.client_id != draft.client_id:
            confirmed = confirmed.model_copy(update={"client_id": draft.client_id})
        self._outbox.pop(draft.client_id, None)

        update = None
        conversation = self.get_conversation(conversation_id)
        if conversation is not None and confirmed.created_at > conversation.updated_at:
            update = {"updated_at": confirmed.created_at}
        self._apply_thread(
            conversation_id,
            merge_messages(self.get_messages(conversation_id), [confirmed]),
            conversation_update=update,
        )
        logger.debug(f"Message {confirmed.id} confirmed in conversation {conversation_id}")
        return confirmed

    # Conversations

    async def create_conversation(
        self, dto: CreateConversationDto | dict, activate: bool = True
    ) -> Conversation:
        """Start a conversation with its first message and put it at the head of the list."""
        try:
            dto = CreateConversationDto.model_validate(dto)
        except ValidationError as e:
            error = CreateConversationFailure(f"Invalid conversation: {e}")
            self._set(conversation_error=error)
            raise error from e

        if not [p for p in dto.participant_ids if p != self.current_user_id]:
            error = CreateConversationFailure("A conversation needs at least one other participant")
            self._set(conversation_error=error)
            raise error

        try:
            with tracer.start_as_current_span("messaging.create_conversation"):
                conversation = await self.backend.create_conversation(
                    dto, creator_id=self.current_user_id
                )
        except MessagingError as e:
            logger.warning(f"Failed to create conversation: {e}")
            error = CreateConversationFailure(f"Failed to create conversation: {e.detail}")
            self._set(conversation_error=error)
            raise error from e

        thread = [conversation.last_message] if conversation.last_message else []
        conversation = reconcile_last_message(conversation, thread)
        changes: dict[str, Any] = {
            "conversations": [
                conversation,
                *(c for c in self._conversations if c.id != conversation.id),
            ],
            "messages": {**self._messages, conversation.id: thread},
            "message_pagination": {
                **self._message_pagination,
                conversation.id: MessagePagination.for_page(1, self.page_size, len(thread)),
            },
            "conversation_error": None,
        }
        if activate:
            changes["active_conversation_id"] = conversation.id
        logger.info(f"Created conversation {conversation.id}")
        self._set(**changes)
        return conversation

    async def mark_messages_as_read(self, conversation_id: str) -> bool:
        """Stamp every unread message for the current user and reset their counter.

        Returns False when there was nothing to mark; repeated calls are no-ops.
        Backend failures are reported through ``message_error``.
        """
        user_id = self.current_user_id
        thread = self._messages.get(conversation_id)
        conversation = self.get_conversation(conversation_id)
        has_unread_messages = any(not m.is_read_by(user_id) for m in thread or [])
        unread = conversation.unread_for(user_id) if conversation else 0
        if not has_unread_messages and unread == 0:
            return False

        now = self.clock()
        if thread is not None:
            thread = [
                m if m.is_read_by(user_id)
                else m.model_copy(update={"read_by": {**m.read_by, user_id: now}})
                for m in thread
            ]
        update = None
        if conversation is not None and user_id in conversation.participants:
            update = {"unread_count": {**conversation.unread_count, user_id: 0}}
        self._apply_thread(conversation_id, thread, conversation_update=update)

        try:
            with tracer.start_as_current_span("messaging.mark_read") as span:
                span.set_attribute("conversation.id", conversation_id)
                await self.backend.mark_read(conversation_id, user_id)
        except MessagingError as e:
            logger.warning(f"Failed to mark {conversation_id} as read: {e}")
            error = MessagingError(f"Failed to mark messages as read: {e.detail}")
            error.__cause__ = e
            self._set(message_error=error)
        return True

    async def delete_message(self, message_id: str, conversation_id: str) -> None:
        """Soft delete a message and move ``last_message`` off it if needed.

        The backend is asked first; on failure the message stays as it was and
        ``DeleteFailure`` is raised. Failed optimistic entries never reached
        the backend and are simply dropped.
        """
        thread = self._messages.get(conversation_id)
        target = next((m for m in thread or [] if m.id == message_id), None)

        if target is not None and not target.is_confirmed:
            if target.delivery_status == DeliveryStatus.PENDING:
                raise DeleteFailure(f"Message '{message_id}' is still being sent")
            self.discard_message(conversation_id, target.client_id)
            return

        try:
            with tracer.start_as_current_span("messaging.delete_message") as span:
                span.set_attribute("message.id", message_id)
                await self.backend.soft_delete_message(message_id)
        except MessagingError as e:
            logger.warning(f"Failed to delete message {message_id}: {e}")
            error = DeleteFailure(f"Failed to delete message: {e.detail}")
            self._set(message_error=error)
            raise error from e

        now = self.clock()

        def tombstone(message: Message) -> Message:
            return message.model_copy(
                update={
                    "is_deleted": True,
                    "deleted_at": now,
                    "updated_at": now,
                    "content": settings.DELETED_MESSAGE_TEXT,
                }
            )

        if thread is not None:
            thread = [tombstone(m) if m.id == message_id else m for m in thread]
        update = None
        conversation = self.get_conversation(conversation_id)
        if conversation and conversation.last_message and conversation.last_message.id == message_id:
            update = {"last_message": tombstone(conversation.last_message)}
        self._apply_thread(conversation_id, thread, conversation_update=update)

    async def archive_conversation(self, conversation_id: str) -> None:
        """Archive a conversation; it stays in history but leaves the inbox."""
        try:
            with tracer.start_as_current_span("messaging.archive_conversation") as span:
                span.set_attribute("conversation.id", conversation_id)
                await self.backend.set_conversation_status(
                    conversation_id, ConversationStatus.ARCHIVED
                )
        except MessagingError as e:
            logger.warning(f"Failed to archive conversation {conversation_id}: {e}")
            error = ArchiveFailure(f"Failed to archive conversation: {e.detail}")
            self._set(conversation_error=error)
            raise error from e

        active_id = self._active_conversation_id
        if active_id == conversation_id:
            active_id = None
        self._apply_thread(
            conversation_id,
            None,
            conversation_update={"status": ConversationStatus.ARCHIVED, "updated_at": self.clock()},
            active_conversation_id=active_id,
        )
