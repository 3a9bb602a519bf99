"""Messaging client factory."""

import logging

from estate_messaging.config import settings
from estate_messaging.core.logging_config import configure_logging
from estate_messaging.services import (
    HttpMessagingBackend,
    InMemoryMessagingBackend,
    MessagingBackend,
    MessagingFacade,
    MessagingStore,
    SqlMessagingBackend,
)

logger = logging.getLogger(__name__)


async def build_backend(kind: str | None = None) -> MessagingBackend:
    """Create the backend named by ``kind`` or ``settings.MESSAGING_BACKEND``."""
    kind = kind or settings.MESSAGING_BACKEND

    if kind == "memory":
        return InMemoryMessagingBackend()

    if kind == "http":
        return HttpMessagingBackend()

    if kind == "sql":
        from estate_messaging.db.session import async_session_maker, init_db

        await init_db()
        return SqlMessagingBackend(async_session_maker)

    raise ValueError(f"Unknown messaging backend: {kind}")


async def create_messaging(
    current_user_id: str,
    backend: MessagingBackend | None = None,
    *,
    telemetry: bool = False,
) -> MessagingFacade:
    """Create a messaging facade for the signed-in user.

    Args:
        current_user_id: Id of the authenticated user the session belongs to
        backend: Backend to use; built from settings when omitted
        telemetry: Install the OpenTelemetry exporter first

    Returns:
        A facade over a fresh store
    """
    configure_logging(settings.DEBUG)

    if telemetry:
        from estate_messaging.core.telemetry import setup_telemetry

        setup_telemetry()

    if backend is None:
        backend = await build_backend()

    logger.info(f"Messaging ready for user {current_user_id} ({type(backend).__name__})")
    return MessagingFacade(MessagingStore(backend, current_user_id))
