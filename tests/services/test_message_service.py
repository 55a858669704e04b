"""
Unit tests for MessageService.
Tests the per-viewer visibility projection and pagination.
"""
import pytest

from app.config import settings
from app.core.exceptions import AccessDenied, InvalidDeletionRequest, NotFound
from app.models.message import DELETED_PLACEHOLDER, MessageType
from app.services.message_deletion_service import MessageDeletionService
from app.services.message_service import MessageService


@pytest.fixture
def service(db_session, clock):
    return MessageService(db_session, clock=clock)


@pytest.fixture
def deletion_service(db_session, clock, media_store, notifier):
    return MessageDeletionService(db_session, clock=clock, media_store=media_store, notifier=notifier)


@pytest.fixture
async def five_messages(dm, make_message):
    """A sends M1..M5 in order."""
    for index in range(1, 6):
        await make_message("dm-1", "a", message_id=f"M{index}", seconds_ago=60 - index * 10, content=f"text {index}")


def ids(result):
    return [m.id for m in result["messages"]]


@pytest.mark.asyncio
class TestVisibility:
    """Two participants of one chat see different things."""

    async def test_delete_for_me_then_for_everyone(self, service, deletion_service, five_messages):
        """B hides M2 and M4; A then deletes M3 for everyone."""
        await deletion_service.delete_for_me("dm-1", "b", ["M2", "M4"])

        assert ids(await service.list_visible_messages("dm-1", "b")) == ["M1", "M3", "M5"]
        assert ids(await service.list_visible_messages("dm-1", "a")) == ["M1", "M2", "M3", "M4", "M5"]

        await deletion_service.delete_for_everyone("dm-1", "a", ["M3"])

        assert ids(await service.list_visible_messages("dm-1", "b")) == ["M1", "M5"]
        sender_view = await service.list_visible_messages("dm-1", "a")
        assert ids(sender_view) == ["M1", "M2", "M3", "M4", "M5"]

        tombstone = sender_view["messages"][2]
        assert tombstone.is_deleted_for_everyone is True
        assert tombstone.content == DELETED_PLACEHOLDER

    async def test_sender_exception_off(self, service, deletion_service, five_messages, mocker):
        mocker.patch.object(settings, "sender_sees_deleted_for_everyone", False)

        await deletion_service.delete_for_everyone("dm-1", "a", ["M3"])

        assert ids(await service.list_visible_messages("dm-1", "a")) == ["M1", "M2", "M4", "M5"]

    async def test_total_matches_visible_rows(self, service, deletion_service, five_messages):
        await deletion_service.delete_for_me("dm-1", "b", ["M2", "M4"])

        viewer_b = await service.list_visible_messages("dm-1", "b")
        viewer_a = await service.list_visible_messages("dm-1", "a")

        assert viewer_b["total_visible_count"] == 3
        assert viewer_a["total_visible_count"] == 5

    async def test_other_users_markers_not_exposed(self, service, deletion_service, five_messages):
        await deletion_service.delete_for_me("dm-1", "b", ["M1"])

        first = (await service.list_visible_messages("dm-1", "a"))["messages"][0]
        dumped = first.model_dump(by_alias=True)

        assert "deletedBy" not in dumped
        assert dumped["isOwn"] is True
        assert dumped["isDeletedForEveryone"] is False

    async def test_media_ref_hidden_on_tombstone(self, service, deletion_service, dm, make_message):
        await make_message(
            "dm-1", "a", message_id="img", content=None,
            type=MessageType.IMAGE, media_ref="messages/dm-1/img.jpg",
        )
        await deletion_service.delete_for_everyone("dm-1", "a", ["img"])

        projection = (await service.list_visible_messages("dm-1", "a"))["messages"][0]

        assert projection.media_ref is None

    async def test_read_by_projection(self, service, dm, make_message):
        await make_message("dm-1", "a", message_id="m1", read_by=["b"])

        projection = (await service.list_visible_messages("dm-1", "a"))["messages"][0]

        assert [receipt.user_id for receipt in projection.read_by] == ["b"]

    async def test_soft_and_hard_deleted_hidden_from_sender(self, service, deletion_service, five_messages):
        await deletion_service.soft_delete("dm-1", "a", ["M1"])
        await deletion_service.hard_delete("dm-1", "a", ["M2"])

        assert ids(await service.list_visible_messages("dm-1", "a")) == ["M3", "M4", "M5"]


@pytest.mark.asyncio
class TestPagination:

    async def test_pages_newest_first_in_chronological_order(self, service, dm, make_message):
        for index in range(7):
            await make_message("dm-1", "a", message_id=f"m{index}", seconds_ago=100 - index)

        first = await service.list_visible_messages("dm-1", "b", page=1, limit=3)
        last = await service.list_visible_messages("dm-1", "b", page=3, limit=3)

        assert ids(first) == ["m4", "m5", "m6"]
        assert first["total_pages"] == 3
        assert first["has_more"] is True
        assert ids(last) == ["m0"]
        assert last["has_more"] is False

    async def test_hidden_messages_do_not_leave_gaps(self, service, deletion_service, dm, make_message):
        for index in range(6):
            await make_message("dm-1", "a", message_id=f"m{index}", seconds_ago=100 - index)
        await deletion_service.delete_for_me("dm-1", "b", ["m5", "m4"])

        page = await service.list_visible_messages("dm-1", "b", page=1, limit=2)

        assert ids(page) == ["m2", "m3"]
        assert page["total_visible_count"] == 4
        assert page["total_pages"] == 2

    async def test_ties_broken_by_id(self, service, dm, make_message):
        await make_message("dm-1", "a", message_id="b-second", seconds_ago=5)
        await make_message("dm-1", "a", message_id="a-first", seconds_ago=5)

        assert ids(await service.list_visible_messages("dm-1", "a")) == ["a-first", "b-second"]

    async def test_empty_conversation(self, service, dm):
        result = await service.list_visible_messages("dm-1", "a")

        assert result["messages"] == []
        assert result["total_pages"] == 0
        assert result["has_more"] is False

    @pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (1, 101)])
    async def test_invalid_paging(self, service, dm, page, limit):
        with pytest.raises(InvalidDeletionRequest):
            await service.list_visible_messages("dm-1", "a", page=page, limit=limit)


@pytest.mark.asyncio
class TestAccess:

    async def test_non_participant(self, service, dm):
        with pytest.raises(AccessDenied):
            await service.list_visible_messages("dm-1", "stranger")

    async def test_unknown_conversation(self, service, dm):
        with pytest.raises(NotFound):
            await service.list_visible_messages("missing", "a")
