"""Core module for exceptions, logging and telemetry."""

from estate_messaging.core.exceptions import (
    ArchiveFailure,
    BackendError,
    ConversationBlockedError,
    CreateConversationFailure,
    DeleteFailure,
    FetchFailure,
    MessagingError,
    NotFoundError,
    SendFailure,
)
from estate_messaging.core.logging_config import configure_logging
from estate_messaging.core.telemetry import get_tracer, setup_telemetry

__all__ = [
    "ArchiveFailure",
    "BackendError",
    "ConversationBlockedError",
    "CreateConversationFailure",
    "DeleteFailure",
    "FetchFailure",
    "MessagingError",
    "NotFoundError",
    "SendFailure",
    "configure_logging",
    "get_tracer",
    "setup_telemetry",
]
