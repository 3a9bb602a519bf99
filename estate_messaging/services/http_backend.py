"""HTTP client for the hosted messaging backend."""

import logging
from typing import Any

import httpx
from pydantic import TypeAdapter, ValidationError

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
    MessageDraft,
    MessagePage,
    MessageSearchFilters,
)

logger = logging.getLogger(__name__)


def _dump(model) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def _parse(schema: Any, data: Any) -> Any:
    """Validate a decoded response body against ``schema``."""
    try:
        return TypeAdapter(schema).validate_python(data)
    except ValidationError as e:
        logger.error(f"Backend returned an invalid payload: {e}")
        raise BackendError(f"Invalid response payload: {e}") from e


class HttpMessagingBackend:
    """REST client for the conversation and message endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.BACKEND_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.BACKEND_API_KEY
        self.timeout = timeout or settings.BACKEND_TIMEOUT
        self.transport = transport
        logger.debug(f"HttpMessagingBackend initialized: base_url={self.base_url}, auth={'set' if self.api_key else 'none'}")

    def get_auth_header(self) -> dict[str, str] | None:
        """Get the authorization header for backend requests."""
        if not self.api_key:
            return None
        return {"Authorization": f"Bearer {self.api_key}"}

    async def _request(
        self,
        method: str,
        path: str,
        **kwargs,
    ) -> Any:
        """Make an HTTP request to the backend and decode the JSON body."""
        url = f"{self.base_url}{path}"
        logger.info(f"Backend request: {method} {url}")

        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True, transport=self.transport
        ) as client:
            headers = kwargs.pop("headers", {})
            headers.update(self.get_auth_header() or {})

            try:
                response = await client.request(method, url, headers=headers, **kwargs)
            except httpx.RequestError as e:
                logger.error(f"Backend connection error: {e}")
                raise BackendError(f"Connection error: {e}") from e

        logger.info(f"Backend response: {response.status_code}")

        if response.status_code == 404:
            raise NotFoundError("Resource", path)
        if response.status_code >= 400:
            logger.error(f"Backend error: {response.status_code} - {response.text}")
            raise BackendError(response.text, status_code=response.status_code)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Backend returned a non-JSON body: {response.text[:200]}")
            raise BackendError(f"Invalid response body: {e}", status_code=response.status_code) from e

    async def list_conversations(self, filters: ConversationSearchFilters) -> list[Conversation]:
        params = {k: v for k, v in _dump(filters).items() if v is not False}
        data = await self._request("GET", "/conversations", params=params)
        return _parse(list[Conversation], data)

    async def list_messages(self, conversation_id: str, page: int, limit: int) -> MessagePage:
        data = await self._request(
            "GET",
            f"/conversations/{conversation_id}/messages",
            params={"page": page, "limit": limit},
        )
        return _parse(MessagePage, data)

    async def create_message(self, draft: MessageDraft, *, sender_id: str) -> Message:
        try:
            data = await self._request(
                "POST",
                f"/conversations/{draft.conversation_id}/messages",
                json={**_dump(draft), "senderId": sender_id},
            )
        except BackendError as e:
            if e.status_code == 409:
                raise ConversationBlockedError(draft.conversation_id) from e
            raise
        return _parse(Message, data)

    async def create_conversation(
        self, dto: CreateConversationDto, *, creator_id: str
    ) -> Conversation:
        data = await self._request(
            "POST",
            "/conversations",
            json={**_dump(dto), "creatorId": creator_id},
        )
        return _parse(Conversation, data)

    async def mark_read(self, conversation_id: str, participant_id: str) -> None:
        await self._request(
            "POST",
            f"/conversations/{conversation_id}/read",
            json={"participantId": participant_id},
        )

    async def soft_delete_message(self, message_id: str) -> None:
        await self._request("DELETE", f"/messages/{message_id}")

    async def set_conversation_status(
        self, conversation_id: str, status: ConversationStatus
    ) -> None:
        await self._request(
            "PATCH",
            f"/conversations/{conversation_id}",
            json={"status": status.value},
        )

    async def search_messages(
        self, conversation_id: str, filters: MessageSearchFilters
    ) -> list[Message]:
        data = await self._request(
            "POST",
            f"/conversations/{conversation_id}/messages/search",
            json=_dump(filters),
        )
        return _parse(list[Message], data)
