"""Unit tests for HttpMessagingBackend."""

import json

import httpx
import pytest

from estate_messaging.core.exceptions import (
    BackendError,
    ConversationBlockedError,
    NotFoundError,
)
from estate_messaging.schemas import (
    ConversationSearchFilters,
    ConversationStatus,
    CreateConversationDto,
    DeliveryStatus,
    MessageDraft,
    MessageSearchFilters,
)
from estate_messaging.services.http_backend import HttpMessagingBackend

from tests.factories import OWNER, SEEKER

BASE_URL = "http://backend.test/api/v1"

MESSAGE_JSON = {
    "id": "m1",
    "conversationId": "c1",
    "senderId": OWNER,
    "content": "Hello",
    "type": "text",
    "attachments": [],
    "readBy": {OWNER: "2024-01-05T12:00:00Z"},
    "createdAt": "2024-01-05T12:00:00Z",
    "isDeleted": False,
}

CONVERSATION_JSON = {
    "id": "c1",
    "participants": [SEEKER, OWNER],
    "propertyId": "property_1",
    "lastMessage": MESSAGE_JSON,
    "unreadCount": {SEEKER: 1},
    "status": "active",
    "createdAt": "2024-01-05T12:00:00Z",
    "updatedAt": "2024-01-05T12:00:00Z",
}


def make_backend(handler, api_key="secret"):
    return HttpMessagingBackend(
        base_url=BASE_URL, api_key=api_key, transport=httpx.MockTransport(handler)
    )


class TestHttpMessagingBackend:
    """Tests for HttpMessagingBackend."""

    def test_get_auth_header_with_key(self):
        """Test bearer header generation."""
        backend = HttpMessagingBackend(base_url=BASE_URL, api_key="secret")
        assert backend.get_auth_header() == {"Authorization": "Bearer secret"}

    def test_get_auth_header_without_key(self):
        """Test no header without an API key."""
        backend = HttpMessagingBackend(base_url=BASE_URL, api_key="")
        assert backend.get_auth_header() is None

    @pytest.mark.asyncio
    async def test_list_conversations(self):
        """Test query parameters and camelCase decoding."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=[CONVERSATION_JSON])

        backend = make_backend(handler)
        [conversation] = await backend.list_conversations(
            ConversationSearchFilters(property_id="property_1")
        )

        request = requests[0]
        assert request.method == "GET"
        assert request.url.path == "/api/v1/conversations"
        assert dict(request.url.params) == {"propertyId": "property_1"}
        assert request.headers["Authorization"] == "Bearer secret"
        assert conversation.property_id == "property_1"
        assert conversation.last_message.sender_id == OWNER
        assert conversation.unread_for(SEEKER) == 1
        assert conversation.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_list_messages(self):
        """Test page parameters."""

        def handler(request):
            assert request.url.path == "/api/v1/conversations/c1/messages"
            assert request.url.params["page"] == "2"
            assert request.url.params["limit"] == "20"
            return httpx.Response(200, json={"messages": [MESSAGE_JSON], "total": 21})

        page = await make_backend(handler).list_messages("c1", page=2, limit=20)

        assert page.total == 21
        assert page.messages[0].delivery_status == DeliveryStatus.SENT

    @pytest.mark.asyncio
    async def test_create_message(self):
        """Test the request body carries the sender and correlation id."""
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={**MESSAGE_JSON, "clientId": "x1"})

        message = await make_backend(handler).create_message(
            MessageDraft(conversation_id="c1", content="Hello", client_id="x1"),
            sender_id=SEEKER,
        )

        assert bodies[0]["senderId"] == SEEKER
        assert bodies[0]["clientId"] == "x1"
        assert bodies[0]["conversationId"] == "c1"
        assert message.client_id == "x1"

    @pytest.mark.asyncio
    async def test_create_message_conflict(self):
        """Test that 409 means the conversation is blocked."""
        backend = make_backend(lambda request: httpx.Response(409, text="blocked"))

        with pytest.raises(ConversationBlockedError):
            await backend.create_message(
                MessageDraft(conversation_id="c1", content="Hello"), sender_id=SEEKER
            )

    @pytest.mark.asyncio
    async def test_create_conversation(self):
        """Test the request body for a new conversation."""
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json=CONVERSATION_JSON)

        await make_backend(handler).create_conversation(
            CreateConversationDto(participant_ids=[OWNER], initial_message={"content": "Hi"}),
            creator_id=SEEKER,
        )

        assert bodies[0]["participantIds"] == [OWNER]
        assert bodies[0]["creatorId"] == SEEKER
        assert bodies[0]["initialMessage"]["content"] == "Hi"

    @pytest.mark.asyncio
    async def test_empty_responses(self):
        """Test endpoints answering 204."""
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            return httpx.Response(204)

        backend = make_backend(handler)
        assert await backend.mark_read("c1", SEEKER) is None
        assert await backend.soft_delete_message("m1") is None
        assert await backend.set_conversation_status("c1", ConversationStatus.ARCHIVED) is None

        assert seen == [
            ("POST", "/api/v1/conversations/c1/read"),
            ("DELETE", "/api/v1/messages/m1"),
            ("PATCH", "/api/v1/conversations/c1"),
        ]

    @pytest.mark.asyncio
    async def test_search_messages(self):
        """Test the search request body."""
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=[MESSAGE_JSON])

        results = await make_backend(handler).search_messages(
            "c1", MessageSearchFilters(query="hello", message_types=["text"])
        )

        assert bodies[0] == {"query": "hello", "messageTypes": ["text"]}
        assert [m.id for m in results] == ["m1"]

    @pytest.mark.asyncio
    async def test_not_found(self):
        """Test 404 mapping."""
        backend = make_backend(lambda request: httpx.Response(404))

        with pytest.raises(NotFoundError):
            await backend.list_messages("missing", page=1, limit=20)

    @pytest.mark.asyncio
    async def test_server_error(self):
        """Test 5xx mapping."""
        backend = make_backend(lambda request: httpx.Response(500, text="oops"))

        with pytest.raises(BackendError) as exc_info:
            await backend.list_conversations(ConversationSearchFilters())

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        """Test that an HTML body from a proxy becomes a backend error."""
        backend = make_backend(lambda request: httpx.Response(200, text="<html>gateway</html>"))

        with pytest.raises(BackendError) as exc_info:
            await backend.list_messages("c1", page=1, limit=20)

        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_invalid_payload(self):
        """Test that a payload failing validation becomes a backend error."""
        invalid = {**CONVERSATION_JSON, "participants": [SEEKER]}
        backend = make_backend(lambda request: httpx.Response(200, json=[invalid]))

        with pytest.raises(BackendError) as exc_info:
            await backend.list_conversations(ConversationSearchFilters())

        assert "Invalid response payload" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_empty_body_for_list(self):
        """Test that an empty body where a list is expected is rejected."""
        backend = make_backend(lambda request: httpx.Response(204))

        with pytest.raises(BackendError):
            await backend.search_messages("c1", MessageSearchFilters(query="hi"))

    @pytest.mark.asyncio
    async def test_connection_error(self):
        """Test transport failures."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(BackendError) as exc_info:
            await make_backend(handler).list_conversations(ConversationSearchFilters())

        assert "connection refused" in str(exc_info.value)
