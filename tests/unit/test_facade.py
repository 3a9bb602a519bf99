"""Tests for the messaging facade and its selection effects."""

import pytest

from estate_messaging.schemas import ConversationStatus
from estate_messaging.services import MessagingFacade, MessagingStore

from tests.factories import SEEKER


def ids(items):
    return [item.id for item in items]


class TestViews:
    """Tests for derived views."""

    @pytest.mark.asyncio
    async def test_empty_state(self, facade):
        """Nothing selected means empty active views."""
        assert facade.current_user_id == SEEKER
        assert facade.active_conversation is None
        assert facade.active_messages == []
        assert facade.active_pagination is None
        assert facade.total_unread_count == 0

    @pytest.mark.asyncio
    async def test_total_unread_skips_archived(self, facade):
        """Archived conversations do not count towards the badge."""
        await facade.fetch_conversations({"include_archived": True})

        assert ids(facade.conversations) == ["c2", "c1", "c3"]
        assert ids(facade.inbox_conversations) == ["c2", "c1"]
        assert facade.total_unread_count == 3

    @pytest.mark.asyncio
    async def test_views_are_memoized_per_state_version(self, facade):
        """A view is recomputed only after the store changes."""
        await facade.fetch_conversations()
        first = facade.inbox_conversations
        assert facade.inbox_conversations is first

        await facade.archive_conversation("c2")

        assert facade.inbox_conversations is not first
        assert ids(facade.inbox_conversations) == ["c1"]

    @pytest.mark.asyncio
    async def test_lookups_delegate_to_store(self, facade):
        await facade.fetch_conversations()
        assert facade.get_conversation("c2").id == "c2"
        assert facade.get_unread_count("c2") == 1
        assert facade.get_messages("c2") == []


class TestAutoRead:
    """Tests for marking the active conversation read."""

    @pytest.mark.asyncio
    async def test_activation_marks_read_once(self, facade, backend):
        """Opening a conversation with unread messages marks it read exactly once."""
        await facade.fetch_conversations()

        await facade.set_active_conversation("c1")

        assert backend.count("mark_read") == 1
        assert facade.active_conversation.unread_for(SEEKER) == 0
        assert ids(facade.active_messages) == ["m1", "m2", "m3", "m4", "m5"]
        assert all(m.is_read_by(SEEKER) for m in facade.active_messages)

        await facade.set_active_conversation("c1")
        await facade.fetch_conversations()
        assert backend.count("mark_read") == 1

    @pytest.mark.asyncio
    async def test_each_activation_with_unread_marks_read(self, facade, backend):
        """Switching conversations marks each newly opened one."""
        await facade.fetch_conversations()

        await facade.set_active_conversation("c1")
        await facade.set_active_conversation("c2")
        await facade.set_active_conversation("c1")

        assert backend.count("mark_read") == 2
        assert facade.total_unread_count == 0

    @pytest.mark.asyncio
    async def test_no_call_without_unread(self, facade, backend):
        """A conversation with nothing unread makes no backend call."""
        await backend.mark_read("c1", SEEKER)
        await facade.fetch_conversations()
        calls = backend.count("mark_read")

        await facade.set_active_conversation("c1")

        assert backend.count("mark_read") == calls

    @pytest.mark.asyncio
    async def test_activation_before_list_loads(self, facade, backend):
        """Selecting before the list arrives marks read once the list lands."""
        await facade.set_active_conversation("c1")
        assert backend.count("mark_read") == 0

        await facade.fetch_conversations()

        assert backend.count("mark_read") == 1
        assert facade.get_unread_count("c1") == 0

    @pytest.mark.asyncio
    async def test_deselect(self, facade, backend):
        """Clearing the selection triggers nothing."""
        await facade.fetch_conversations()
        await facade.set_active_conversation(None)

        assert facade.active_conversation_id is None
        assert backend.count("mark_read") == 0
        assert backend.count("list_messages") == 0


class TestThreadLoading:
    """Tests for lazy loading and paging of the active thread."""

    @pytest.mark.asyncio
    async def test_activation_loads_thread_once(self, facade, backend):
        """The first page loads on first activation only."""
        await facade.fetch_conversations()

        await facade.set_active_conversation("c2")
        await facade.set_active_conversation("c1")
        await facade.set_active_conversation("c2")

        assert ids(facade.active_messages) == ["n1"]
        assert backend.count("list_messages") == 2

    @pytest.mark.asyncio
    async def test_load_more_fetches_next_page(self, paged_store, backend):
        """Older history is appended page by page."""
        async with MessagingFacade(paged_store) as messaging:
            await messaging.set_active_conversation("c1")
            assert ids(messaging.active_messages) == ["m4", "m5"]

            assert await messaging.load_more_messages() is True

            assert ids(messaging.active_messages) == ["m2", "m3", "m4", "m5"]
            assert messaging.active_pagination.page == 2

    @pytest.mark.asyncio
    async def test_load_more_without_more_history(self, facade, backend):
        """Nothing is fetched once the whole thread is loaded."""
        await facade.fetch_conversations()
        await facade.set_active_conversation("c1")
        pagination = facade.active_pagination
        calls = backend.count("list_messages")

        assert await facade.load_more_messages() is False

        assert backend.count("list_messages") == calls
        assert facade.active_pagination == pagination

    @pytest.mark.asyncio
    async def test_load_more_without_selection(self, facade):
        assert await facade.load_more_messages() is False


class TestLifecycle:
    """Tests for bootstrap and shutdown."""

    @pytest.mark.asyncio
    async def test_context_manager_bootstraps(self, store, backend):
        """Entering the facade loads conversations once."""
        async with MessagingFacade(store) as messaging:
            assert ids(messaging.conversations) == ["c2", "c1"]
            assert await messaging.bootstrap() is False

        assert backend.count("list_conversations") == 1

    @pytest.mark.asyncio
    async def test_close_stops_effects(self, backend):
        """A closed facade no longer reacts to the store."""
        store = MessagingStore(backend, SEEKER)
        messaging = MessagingFacade(store)
        await messaging.fetch_conversations()
        await messaging.close()

        store.set_active_conversation("c1")
        await messaging.flush()

        assert backend.count("list_messages") == 0
        assert backend.count("mark_read") == 0

    def test_selection_without_event_loop(self, backend):
        """Effects are skipped when no loop is running."""
        store = MessagingStore(backend, SEEKER)
        messaging = MessagingFacade(store)

        store.set_active_conversation("c1")

        assert messaging.active_conversation_id == "c1"
        assert backend.calls == []


class TestActions:
    """Tests for actions forwarded to the store."""

    @pytest.mark.asyncio
    async def test_send_updates_active_views(self, facade):
        await facade.fetch_conversations()
        await facade.set_active_conversation("c2")

        confirmed = await facade.send_message(
            {"conversation_id": "c2", "content": "Can I visit on Friday?"}
        )

        assert facade.active_messages[-1].id == confirmed.id
        assert facade.active_conversation.last_message.id == confirmed.id
        assert facade.inbox_conversations[0].id == "c2"

    @pytest.mark.asyncio
    async def test_create_conversation_activates_it(self, facade, backend):
        """A new conversation is selected without an extra thread load or read."""
        await facade.fetch_conversations()

        conversation = await facade.create_conversation(
            {"participant_ids": ["user_agent"], "initial_message": {"content": "Hi"}}
        )

        assert facade.active_conversation_id == conversation.id
        assert ids(facade.active_messages) == [conversation.last_message.id]
        assert backend.count("list_messages") == 0
        assert backend.count("mark_read") == 0

    @pytest.mark.asyncio
    async def test_archive_removes_from_inbox(self, facade):
        await facade.fetch_conversations()
        await facade.set_active_conversation("c1")

        await facade.archive_conversation("c1")

        assert facade.active_conversation_id is None
        assert facade.get_conversation("c1").status == ConversationStatus.ARCHIVED
        assert "c1" not in ids(facade.inbox_conversations)
