"""
Tests for the Socket.IO connection manager.
Presence tracking and best-effort publishing.
"""
import pytest

from app.core.websocket import ConnectionManager, conversation_topic, user_topic


@pytest.fixture
def manager(mocker):
    manager = ConnectionManager()
    mocker.patch.object(manager.sio, "enter_room", mocker.AsyncMock())
    mocker.patch.object(manager.sio, "emit", mocker.AsyncMock())
    return manager


def test_topics():
    assert user_topic("u1") == "user:u1"
    assert conversation_topic("c1") == "conversation:c1"


@pytest.mark.asyncio
class TestPresence:

    async def test_register_and_unregister(self, manager):
        await manager.register_session("sid-1", "a")
        await manager.register_session("sid-2", "a")

        assert manager.is_online("a")
        assert await manager.unregister_session("sid-1") == "a"
        assert manager.is_online("a")

        await manager.unregister_session("sid-2")
        assert not manager.is_online("a")

    async def test_unknown_user_offline(self, manager):
        assert not manager.is_online("nobody")

    async def test_register_joins_user_room(self, manager):
        await manager.register_session("sid-1", "a")

        manager.sio.enter_room.assert_awaited_once_with("sid-1", "user:a")


@pytest.mark.asyncio
class TestPublish:

    async def test_publish_emits_to_room(self, manager):
        assert await manager.publish("user:a", "messages_deleted_for_me", {"message_ids": ["m1"]}) is True

        manager.sio.emit.assert_awaited_once_with(
            "messages_deleted_for_me", {"message_ids": ["m1"]}, room="user:a"
        )

    async def test_publish_failure_is_swallowed(self, manager):
        manager.sio.emit.side_effect = RuntimeError("transport closed")

        assert await manager.publish("user:a", "messages_hard_deleted", {}) is False

    async def test_publish_to_users_deduplicates(self, manager):
        await manager.publish_to_users(["a", "b", "a"], "messages_soft_deleted", {})

        rooms = [call.kwargs["room"] for call in manager.sio.emit.await_args_list]
        assert rooms == ["user:a", "user:b"]


@pytest.mark.asyncio
class TestGraceDrainOnConnect:

    async def test_drain_failure_is_logged_not_raised(self, manager, mocker):
        drain = mocker.patch(
            "app.services.grace_queue_service.GraceQueueService.drain",
            side_effect=RuntimeError("db down"),
        )

        await manager._drain_grace_queue("a")

        drain.assert_awaited_once_with("a")
