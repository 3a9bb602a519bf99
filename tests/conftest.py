"""Pytest configuration and fixtures."""

import itertools
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from estate_messaging.db.base import Base
from estate_messaging.schemas import Conversation, ConversationStatus, Message
from estate_messaging.services import MessagingFacade, MessagingStore, SqlMessagingBackend
from tests.factories import OWNER, OWNER_2, SEEKER, T0, RecordingBackend

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def make_message():
    """Factory for messages timed in minutes after ``T0``."""

    def factory(
        id: str,
        conversation_id: str,
        minutes: int = 0,
        sender_id: str = OWNER,
        readers: tuple[str, ...] = (),
        **kwargs,
    ) -> Message:
        created_at = T0 + timedelta(minutes=minutes)
        kwargs.setdefault("content", f"message {id}")
        return Message(
            id=id,
            conversation_id=conversation_id,
            sender_id=sender_id,
            read_by={reader: created_at for reader in (sender_id, *readers)},
            created_at=created_at,
            **kwargs,
        )

    return factory


@pytest.fixture
def seeded_data(make_message) -> tuple[list[Conversation], list[Message]]:
    """Three conversations for the seeker.

    c1: five messages with the owner, the last two unread by the seeker.
    c2: one unread message from a second owner, the most recent activity.
    c3: archived, three unread messages.
    """
    c1_messages = [
        make_message(f"m{i}", "c1", minutes=i - 1, readers=(SEEKER,) if i <= 3 else ())
        for i in range(1, 6)
    ]
    c2_messages = [make_message("n1", "c2", minutes=10, sender_id=OWNER_2)]
    c3_messages = [make_message("a1", "c3", minutes=-60)]

    conversations = [
        Conversation(
            id="c1",
            participants=(SEEKER, OWNER),
            property_id="property_1",
            last_message=c1_messages[-1],
            unread_count={SEEKER: 2, OWNER: 0},
            created_at=T0,
            updated_at=c1_messages[-1].created_at,
        ),
        Conversation(
            id="c2",
            participants=(SEEKER, OWNER_2),
            property_id="property_2",
            last_message=c2_messages[-1],
            unread_count={SEEKER: 1, OWNER_2: 0},
            created_at=T0,
            updated_at=c2_messages[-1].created_at,
        ),
        Conversation(
            id="c3",
            participants=(SEEKER, OWNER),
            property_id="property_1",
            last_message=c3_messages[-1],
            unread_count={SEEKER: 3, OWNER: 0},
            status=ConversationStatus.ARCHIVED,
            created_at=T0 - timedelta(hours=2),
            updated_at=c3_messages[-1].created_at,
        ),
    ]
    return conversations, [*c1_messages, *c2_messages, *c3_messages]


@pytest.fixture
def backend(seeded_data) -> RecordingBackend:
    """Recording in-memory backend seeded with three conversations."""
    conversations, messages = seeded_data
    return RecordingBackend(conversations, messages)


@pytest.fixture
def store(backend) -> MessagingStore:
    """Store for the seeker over the seeded backend."""
    return MessagingStore(backend, SEEKER)


@pytest.fixture
def paged_store(backend) -> MessagingStore:
    """Store loading two messages per page."""
    return MessagingStore(backend, SEEKER, page_size=2)


@pytest.fixture
async def facade(store) -> AsyncGenerator[MessagingFacade, None]:
    """Facade over the seeker's store."""
    messaging = MessagingFacade(store)
    yield messaging
    await messaging.close()


@pytest.fixture
def ticking_clock():
    """Make backends stamp strictly increasing times, one second apart."""
    times = (T0 + timedelta(days=1, seconds=i) for i in itertools.count())

    def tick() -> datetime:
        return next(times)

    with (
        patch("estate_messaging.services.memory_backend.utcnow", side_effect=tick),
        patch("estate_messaging.services.sql_backend.utcnow", side_effect=tick),
    ):
        yield tick


@pytest.fixture
async def async_engine():
    """Create async engine for testing."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_maker(async_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def sql_backend(session_maker) -> SqlMessagingBackend:
    """SQL backend over the in-memory database."""
    return SqlMessagingBackend(session_maker)


@pytest.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async with session_maker() as session:
        yield session
