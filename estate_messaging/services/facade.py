"""Messaging facade: the surface UI code talks to."""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

from estate_messaging.core.exceptions import MessagingError
from estate_messaging.schemas import (
    Conversation,
    ConversationSearchFilters,
    ConversationStatus,
    CreateConversationDto,
    Message,
    MessageDraft,
    MessagePagination,
    MessageSearchFilters,
)
from estate_messaging.services.store import MessagingStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MessagingFacade:
    """Read-only views over a ``MessagingStore`` plus the actions UI may call.

    Views are projections of the store recomputed when its version changes.
    The facade also runs the selection effects: loading the thread of a newly
    active conversation and marking it read once per activation.

    Usage:
        async with MessagingFacade(store) as messaging:
            await messaging.set_active_conversation(conversation_id)
            messaging.active_messages
    """

    def __init__(self, store: MessagingStore):
        self.store = store
        self._views: dict[str, tuple[int, Any]] = {}
        self._effects: set[asyncio.Task] = set()
        self._thread_loads: dict[str, asyncio.Task] = {}
        self._last_active_id: str | None = store.active_conversation_id
        self._read_check_pending = False
        self._unsubscribe = store.subscribe(self._on_store_change)

    async def __aenter__(self) -> "MessagingFacade":
        await self.bootstrap()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _memo(self, name: str, compute: Callable[[], T]) -> T:
        cached = self._views.get(name)
        if cached is not None and cached[0] == self.store.version:
            return cached[1]
        value = compute()
        self._views[name] = (self.store.version, value)
        return value

    # State

    @property
    def current_user_id(self) -> str:
        return self.store.current_user_id

    @property
    def conversations(self) -> list[Conversation]:
        return self.store.conversations

    @property
    def inbox_conversations(self) -> list[Conversation]:
        """Conversations that are not archived."""
        return self._memo(
            "inbox_conversations",
            lambda: [
                c for c in self.store.conversations if c.status != ConversationStatus.ARCHIVED
            ],
        )

    @property
    def active_conversation_id(self) -> str | None:
        return self.store.active_conversation_id

    @property
    def active_conversation(self) -> Conversation | None:
        active_id = self.store.active_conversation_id
        return self._memo(
            "active_conversation",
            lambda: self.store.get_conversation(active_id) if active_id else None,
        )

    @property
    def active_messages(self) -> list[Message]:
        active_id = self.store.active_conversation_id
        return self._memo(
            "active_messages",
            lambda: self.store.get_messages(active_id) if active_id else [],
        )

    @property
    def active_pagination(self) -> MessagePagination | None:
        active_id = self.store.active_conversation_id
        return self._memo(
            "active_pagination",
            lambda: self.store.message_pagination.get(active_id) if active_id else None,
        )

    @property
    def total_unread_count(self) -> int:
        """Unread messages for the current user across non-archived conversations."""
        return self._memo(
            "total_unread_count",
            lambda: sum(c.unread_for(self.current_user_id) for c in self.inbox_conversations),
        )

    @property
    def is_loading_conversations(self) -> bool:
        return self.store.is_loading_conversations

    @property
    def conversation_error(self) -> MessagingError | None:
        return self.store.conversation_error

    @property
    def is_loading_messages(self) -> bool:
        return self.store.is_loading_messages

    @property
    def message_error(self) -> MessagingError | None:
        return self.store.message_error

    @property
    def conversation_filters(self) -> ConversationSearchFilters:
        return self.store.conversation_filters

    @property
    def message_filters(self) -> MessageSearchFilters:
        return self.store.message_filters

    # Lookups

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self.store.get_conversation(conversation_id)

    def get_messages(self, conversation_id: str) -> list[Message]:
        return self.store.get_messages(conversation_id)

    def get_unread_count(self, conversation_id: str) -> int:
        return self.store.get_unread_count(conversation_id)

    # Actions

    async def set_active_conversation(self, conversation_id: str | None) -> None:
        self.store.set_active_conversation(conversation_id)
        await self.flush()

    async def fetch_conversations(
        self, filters: ConversationSearchFilters | dict | None = None
    ) -> None:
        await self.store.fetch_conversations(filters)
        await self.flush()

    async def fetch_messages(
        self, conversation_id: str, page: int = 1, limit: int | None = None
    ) -> None:
        await self.store.fetch_messages(conversation_id, page, limit)

    async def load_more_messages(self) -> bool:
        """Fetch the next older page of the active thread, if there is one."""
        active_id = self.store.active_conversation_id
        pagination = self.active_pagination
        if active_id is None or pagination is None or not pagination.has_more:
            return False
        await self.store.fetch_messages(active_id, pagination.page + 1, pagination.limit)
        return True

    async def send_message(self, draft: MessageDraft | dict) -> Message:
        return await self.store.send_message(draft)

    async def retry_message(self, conversation_id: str, client_id: str) -> Message:
        return await self.store.retry_message(conversation_id, client_id)

    def discard_message(self, conversation_id: str, client_id: str) -> bool:
        return self.store.discard_message(conversation_id, client_id)

    async def create_conversation(
        self, dto: CreateConversationDto | dict, activate: bool = True
    ) -> Conversation:
        conversation = await self.store.create_conversation(dto, activate=activate)
        await self.flush()
        return conversation

    async def mark_messages_as_read(self, conversation_id: str) -> bool:
        return await self.store.mark_messages_as_read(conversation_id)

    async def archive_conversation(self, conversation_id: str) -> None:
        await self.store.archive_conversation(conversation_id)

    async def delete_message(self, message_id: str, conversation_id: str) -> None:
        await self.store.delete_message(message_id, conversation_id)

    async def search_messages(
        self, conversation_id: str, filters: MessageSearchFilters | dict
    ) -> list[Message]:
        return await self.store.search_messages(conversation_id, filters)

    # Effects

    async def bootstrap(self) -> bool:
        """Load conversations when none are loaded and no load is running."""
        if self.store.conversations or self.store.is_loading_conversations:
            return False
        await self.fetch_conversations()
        return True

    async def flush(self) -> None:
        """Wait for effects triggered by earlier state changes."""
        while self._effects:
            await asyncio.gather(*list(self._effects))

    async def close(self) -> None:
        """Stop reacting to the store and cancel running effects."""
        self._unsubscribe()
        for task in self._effects:
            task.cancel()
        await asyncio.gather(*list(self._effects), return_exceptions=True)
        self._effects.clear()
        self._thread_loads.clear()

    def _on_store_change(self, store: MessagingStore) -> None:
        active_id = store.active_conversation_id
        if active_id != self._last_active_id:
            self._last_active_id = active_id
            self._read_check_pending = active_id is not None
            if active_id is not None and active_id not in store.message_pagination:
                task = self._spawn(self._load_thread(active_id))
                if task is not None:
                    self._thread_loads[active_id] = task

        # Unread state is only known once the conversation is in the list
        if not self._read_check_pending:
            return
        conversation = store.get_conversation(active_id)
        if conversation is None:
            return
        self._read_check_pending = False
        if conversation.unread_for(store.current_user_id) > 0:
            self._spawn(self._auto_read(active_id))

    async def _load_thread(self, conversation_id: str) -> None:
        try:
            await self.store.fetch_messages(conversation_id)
        finally:
            self._thread_loads.pop(conversation_id, None)

    async def _auto_read(self, conversation_id: str) -> None:
        # Let a thread load started by the same activation land first
        load = self._thread_loads.get(conversation_id)
        if load is not None:
            await load
        if self.store.active_conversation_id != conversation_id:
            return
        logger.debug(f"Marking active conversation {conversation_id} as read")
        await self.store.mark_messages_as_read(conversation_id)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; messaging effect skipped")
            coro.close()
            return None
        task = loop.create_task(coro)
        self._effects.add(task)
        task.add_done_callback(self._effects.discard)
        return task
