"""
Unit tests for ConversationService.
Tests participant checks, summaries, last-message recompute and clear-chat.
"""
import pytest

from app.core.exceptions import AccessDenied, NotFound
from app.core.cache import cache
from app.models.conversation import Conversation, ConversationMember
from app.services.conversation_service import ConversationService
from app.services.message_deletion_service import MessageDeletionService


@pytest.fixture
def service(db_session, clock, notifier):
    return ConversationService(db_session, clock=clock, notifier=notifier)


@pytest.fixture
def redis_store(mocker):
    """In-memory stand-in for the Redis cache."""
    store = {}

    async def fake_get(key):
        return store.get(key)

    async def fake_set(key, value, ttl=None):
        store[key] = value
        return True

    mocker.patch.object(cache, "get", side_effect=fake_get)
    mocker.patch.object(cache, "set", side_effect=fake_set)
    return store


@pytest.fixture
def deletion_service(db_session, clock, media_store, notifier):
    return MessageDeletionService(db_session, clock=clock, media_store=media_store, notifier=notifier)


@pytest.mark.asyncio
class TestParticipants:

    async def test_ensure_participant(self, service, dm):
        conversation, member = await service.ensure_participant("dm-1", "a")

        assert conversation.id == "dm-1"
        assert member.user_id == "a"

    async def test_ensure_participant_rejects_stranger(self, service, dm):
        with pytest.raises(AccessDenied):
            await service.ensure_participant("dm-1", "stranger")

    async def test_ensure_participant_unknown_conversation(self, service, dm):
        with pytest.raises(NotFound):
            await service.ensure_participant("missing", "a")

    async def test_actor_context_for_group_roles(self, service, group):
        conversation, admin = await service.ensure_participant("group-1", "x")
        _, member = await service.ensure_participant("group-1", "y")

        assert ConversationService.actor_context(conversation, admin).is_group_admin is True
        assert ConversationService.actor_context(conversation, member).is_group_admin is False

    async def test_actor_context_direct_chat(self, service, dm):
        conversation, member = await service.ensure_participant("dm-1", "a")
        actor = ConversationService.actor_context(conversation, member)

        assert actor.is_group is False
        assert actor.can_override_ownership is False


@pytest.mark.asyncio
class TestSummary:
    """Viewer-specific summary: last visible message and clamped unread count."""

    async def test_last_message_is_per_viewer(self, service, deletion_service, dm, make_message):
        await make_message("dm-1", "a", message_id="m1", seconds_ago=20)
        await make_message("dm-1", "a", message_id="m2", seconds_ago=10)
        await deletion_service.delete_for_me("dm-1", "b", ["m2"])

        for_b = await service.get_conversation_summary("dm-1", "b")
        for_a = await service.get_conversation_summary("dm-1", "a")

        assert for_b["last_message"].id == "m1"
        assert for_a["last_message"].id == "m2"

    async def test_unread_clamped_to_visible(self, service, deletion_service, make_user, make_conversation, make_message):
        await make_user("a")
        await make_user("b")
        await make_conversation("dm-2", ["a", "b"], unread_counts={"b": 3})
        for index in range(3):
            await make_message("dm-2", "a", message_id=f"m{index}", seconds_ago=30 - index)

        await deletion_service.delete_for_everyone("dm-2", "a", ["m0", "m1"])
        summary = await service.get_conversation_summary("dm-2", "b")

        assert summary["unread_count"] == 1

    async def test_unread_never_exceeds_counter(self, service, make_user, make_conversation, make_message):
        await make_user("a")
        await make_user("b")
        await make_conversation("dm-2", ["a", "b"], unread_counts={"b": 1})
        for index in range(4):
            await make_message("dm-2", "a", message_id=f"m{index}", seconds_ago=30 - index)

        summary = await service.get_conversation_summary("dm-2", "b")

        assert summary["unread_count"] == 1

    async def test_read_and_own_messages_not_unread(self, service, make_user, make_conversation, make_message):
        await make_user("a")
        await make_user("b")
        await make_conversation("dm-2", ["a", "b"], unread_counts={"b": 10})
        await make_message("dm-2", "a", message_id="read", seconds_ago=30, read_by=["b"])
        await make_message("dm-2", "b", message_id="own", seconds_ago=20)
        await make_message("dm-2", "a", message_id="new", seconds_ago=10)

        summary = await service.get_conversation_summary("dm-2", "b")

        assert summary["unread_count"] == 1


    async def test_cached_unread_follows_counter_changes(
        self, service, make_user, make_conversation, make_message, db_session, redis_store
    ):
        """A message arriving through the compose path moves the counter, which retires the cached count."""
        await make_user("a")
        await make_user("b")
        await make_conversation("dm-2", ["a", "b"], unread_counts={"b": 1})
        await make_message("dm-2", "a", message_id="m1", seconds_ago=20)

        assert (await service.get_conversation_summary("dm-2", "b"))["unread_count"] == 1
        assert redis_store["unread:b:dm-2"] == {"counter": 1, "visible": 1}

        await make_message("dm-2", "a", message_id="m2", seconds_ago=10)
        member = await db_session.get(ConversationMember, ("dm-2", "b"))
        member.unread_count = 2
        await db_session.commit()

        assert (await service.get_conversation_summary("dm-2", "b"))["unread_count"] == 2
        assert redis_store["unread:b:dm-2"] == {"counter": 2, "visible": 2}

    async def test_cached_unread_reused_while_counter_unchanged(
        self, service, make_user, make_conversation, make_message, redis_store, mocker
    ):
        await make_user("a")
        await make_user("b")
        await make_conversation("dm-2", ["a", "b"], unread_counts={"b": 5})
        await make_message("dm-2", "a", message_id="m1")
        await service.get_conversation_summary("dm-2", "b")
        count = mocker.spy(service.message_repo, "count_unread_visible")

        summary = await service.get_conversation_summary("dm-2", "b")

        assert summary["unread_count"] == 1
        count.assert_not_called()
    async def test_summary_fields(self, service, group):
        summary = await service.get_conversation_summary("group-1", "y")

        assert summary["conversation_id"] == "group-1"
        assert summary["is_group_chat"] is True
        assert sorted(summary["participant_ids"]) == ["x", "y", "z"]
        assert summary["last_message"] is None
        assert summary["unread_count"] == 0

    async def test_summary_does_not_write(self, service, dm, make_message, db_session):
        await make_message("dm-1", "a", message_id="m1")

        await service.get_conversation_summary("dm-1", "b")

        conversation = await db_session.get(Conversation, "dm-1", populate_existing=True)
        assert conversation.last_message_id is None


@pytest.mark.asyncio
class TestLastMessage:

    async def test_recomputed_from_log(self, service, dm, make_message, db_session):
        await make_message("dm-1", "a", message_id="m1", seconds_ago=20)
        await make_message("dm-1", "b", message_id="m2", seconds_ago=10)

        latest = await service.refresh_last_message("dm-1")
        await db_session.commit()

        conversation = await db_session.get(Conversation, "dm-1", populate_existing=True)
        assert latest.id == "m2"
        assert conversation.last_message_id == "m2"

    async def test_skips_hard_and_soft_deleted(self, service, deletion_service, group, make_message, db_session):
        await make_message("group-1", "y", message_id="m1", seconds_ago=30)
        await make_message("group-1", "y", message_id="m2", seconds_ago=20)
        await make_message("group-1", "z", message_id="m3", seconds_ago=10)

        await deletion_service.hard_delete("group-1", "x", ["m3"])
        await deletion_service.soft_delete("group-1", "y", ["m2"])

        conversation = await db_session.get(Conversation, "group-1", populate_existing=True)
        assert conversation.last_message_id == "m1"

    async def test_skips_expired(self, service, dm, make_message, clock, db_session):
        await make_message("dm-1", "a", message_id="m1", seconds_ago=20)
        await make_message("dm-1", "a", message_id="m2", seconds_ago=10, auto_delete_expires_at=clock.now)

        latest = await service.refresh_last_message("dm-1")

        assert latest.id == "m1"


@pytest.mark.asyncio
class TestClearConversation:

    async def test_hides_everything_for_caller_only(self, service, dm, make_message, db_session, clock):
        await make_message("dm-1", "a", message_id="m1", seconds_ago=20)
        await make_message("dm-1", "b", message_id="m2", seconds_ago=10)

        result = await service.clear_conversation("dm-1", "b")

        assert result["deleted_count"] == 2
        assert sorted(result["message_ids"]) == ["m1", "m2"]
        assert (await service.get_conversation_summary("dm-1", "b"))["last_message"] is None
        assert (await service.get_conversation_summary("dm-1", "a"))["last_message"].id == "m2"

    async def test_repeat_clears_nothing(self, service, dm, make_message, notifier):
        await make_message("dm-1", "a", message_id="m1")

        await service.clear_conversation("dm-1", "b")
        again = await service.clear_conversation("dm-1", "b")

        assert again["deleted_count"] == 0
        assert notifier.publish.await_count == 1

    async def test_event_goes_to_caller_only(self, service, dm, make_message, notifier):
        await make_message("dm-1", "a", message_id="m1")

        await service.clear_conversation("dm-1", "b")

        topic, event, payload = notifier.publish.await_args.args
        assert topic == "user:b"
        assert event == "chat_cleared_for_me"
        assert payload["message_ids"] == ["m1"]

    async def test_group_clear_leaves_others(self, service, group, make_message):
        await make_message("group-1", "y", message_id="m1")

        await service.clear_conversation("group-1", "z")

        assert (await service.get_conversation_summary("group-1", "x"))["last_message"].id == "m1"
        summary = await service.get_conversation_summary("group-1", "z")
        assert summary["last_message"] is None
        assert summary["is_group_chat"] is True

    async def test_stranger_cannot_clear(self, service, dm):
        with pytest.raises(AccessDenied):
            await service.clear_conversation("dm-1", "stranger")
