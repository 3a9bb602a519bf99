"""Messaging store, facade and backends."""

from estate_messaging.services.backend import MessagingBackend
from estate_messaging.services.facade import MessagingFacade
from estate_messaging.services.http_backend import HttpMessagingBackend
from estate_messaging.services.memory_backend import InMemoryMessagingBackend
from estate_messaging.services.sql_backend import SqlMessagingBackend
from estate_messaging.services.store import MessagingStore

__all__ = [
    "HttpMessagingBackend",
    "InMemoryMessagingBackend",
    "MessagingBackend",
    "MessagingFacade",
    "MessagingStore",
    "SqlMessagingBackend",
]
