"""
Pytest configuration and fixtures for tests.
Provides reusable fixtures for database, clock, collaborators and data setup.
"""
import pytest
from datetime import datetime, timedelta
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from app.main import fastapi_app
from app.core.database import get_db
from app.models.base import Base
from app.models.conversation import (
    Conversation,
    ConversationMember,
    ConversationRole,
    ConversationType,
)
from app.models.message import Message, MessageStatus, MessageStatusType, MessageType
from app.models.user import User
from app.utils.datetime_utils import utc_now


# In-memory SQLite shared by every connection of the test engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FrozenClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime = None):
        self.now = now or utc_now().replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(scope="function")
async def test_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    TestSessionLocal = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with TestSessionLocal() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock() -> FrozenClock:
    """Clock frozen at the start of the test."""
    return FrozenClock()


@pytest.fixture
def notifier(mocker):
    """Fan-out stand-in: every participant is offline, publishes succeed."""
    manager = mocker.MagicMock()
    manager.publish = mocker.AsyncMock(return_value=True)
    manager.publish_to_users = mocker.AsyncMock()
    manager.is_online = mocker.MagicMock(return_value=False)
    return manager


@pytest.fixture
def media_store(mocker):
    """Blob store stand-in whose releases succeed."""
    store = mocker.MagicMock()
    store.release_media = mocker.AsyncMock(return_value=None)
    return store


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory for users."""
    async def _make(user_id: str, role: str = "MEMBER") -> User:
        user = User(id=user_id, username=user_id, role=role)
        db_session.add(user)
        await db_session.commit()
        return user
    return _make


@pytest.fixture
def make_conversation(db_session: AsyncSession):
    """Factory for conversations with members."""
    async def _make(
        conversation_id: str,
        member_ids,
        conversation_type: ConversationType = ConversationType.DM,
        group_admin_id: str = None,
        secondary_admin_ids=(),
        unread_counts=None,
    ) -> Conversation:
        conversation = Conversation(
            id=conversation_id,
            type=conversation_type,
            name="Test Group" if conversation_type == ConversationType.GROUP else None,
            group_admin_id=group_admin_id,
        )
        db_session.add(conversation)
        await db_session.flush()

        for user_id in member_ids:
            db_session.add(
                ConversationMember(
                    conversation_id=conversation_id,
                    user_id=user_id,
                    role=ConversationRole.ADMIN if user_id in secondary_admin_ids else ConversationRole.MEMBER,
                    unread_count=(unread_counts or {}).get(user_id, 0),
                )
            )

        await db_session.commit()
        return conversation
    return _make


@pytest.fixture
def make_message(db_session: AsyncSession, clock: FrozenClock):
    """Factory for messages; ``seconds_ago`` is relative to the frozen clock."""
    async def _make(
        conversation_id: str,
        sender_id: str,
        message_id: str = None,
        seconds_ago: float = 0,
        content: str = "hello",
        read_by=(),
        **fields
    ) -> Message:
        message = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            type=fields.pop("type", MessageType.TEXT),
            created_at=clock.now - timedelta(seconds=seconds_ago),
            **fields
        )
        if message_id:
            message.id = message_id
        db_session.add(message)
        await db_session.flush()

        for reader_id in read_by:
            db_session.add(
                MessageStatus(
                    message_id=message.id,
                    user_id=reader_id,
                    status=MessageStatusType.READ,
                    timestamp=clock.now,
                )
            )

        await db_session.commit()
        return message
    return _make


@pytest.fixture
def reload_message(db_session: AsyncSession):
    """Read a message's persisted state, bypassing the identity map."""
    async def _reload(message_id: str):
        return await db_session.get(Message, message_id, populate_existing=True)
    return _reload


@pytest.fixture
async def dm(make_user, make_conversation):
    """Direct chat between users ``a`` and ``b``."""
    await make_user("a")
    await make_user("b")
    return await make_conversation("dm-1", ["a", "b"])


@pytest.fixture
async def group(make_user, make_conversation):
    """Group chat: ``x`` is the primary admin, ``y`` and ``z`` are members."""
    for user_id in ("x", "y", "z"):
        await make_user(user_id)
    return await make_conversation(
        "group-1",
        ["x", "y", "z"],
        conversation_type=ConversationType.GROUP,
        group_admin_id="x",
    )


@pytest.fixture
def current_user_id():
    """User the API client authenticates as (tests may override)."""
    return "a"


@pytest.fixture(scope="function")
async def client(db_session: AsyncSession, current_user_id, mocker) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with dependency overrides."""
    from app.api.v1 import messages
    from app.core.websocket import connection_manager
    from app.dependencies import get_current_user

    async def override_get_db():
        yield db_session

    async def override_get_current_user():
        user = await db_session.get(User, current_user_id)
        return {"id": current_user_id, "username": current_user_id, "role": user.role if user else "MEMBER"}

    # Override dependencies
    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_current_user] = override_get_current_user
    mocker.patch.object(connection_manager, "publish", mocker.AsyncMock(return_value=True))
    mocker.patch.object(messages.limiter, "enabled", False)

    async with AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="http://test") as ac:
        yield ac

    # Clear overrides after test
    fastapi_app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def unauth_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client WITHOUT authentication (for testing unauthorized access)."""

    async def override_get_db():
        yield db_session

    # Only override database, not authentication
    fastapi_app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="http://test") as ac:
        yield ac

    # Clear overrides after test
    fastapi_app.dependency_overrides.clear()
