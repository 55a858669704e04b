"""
Integration tests for Message API endpoints.
Tests API routes and HTTP interactions.
"""
import pytest

from app.core.websocket import connection_manager
from app.models.message import MessageType


BASE = "/api/v1/messages"


def body(message_ids, conversation_id="dm-1", **extra):
    payload = {"conversationId": conversation_id, "messageIds": message_ids}
    payload.update(extra)
    return payload


@pytest.mark.asyncio
class TestListMessagesAPI:
    """Test cases for the visible message listing."""

    async def test_list_unauthorized(self, unauth_client, dm):
        """Test listing without authentication."""
        response = await unauth_client.get(f"{BASE}/conversations/dm-1/messages")

        assert response.status_code == 401

    async def test_list_visible_messages(self, client, dm, make_message):
        """Test listing returns camelCase projections in chronological order."""
        await make_message("dm-1", "a", message_id="m1", seconds_ago=20)
        await make_message("dm-1", "b", message_id="m2", seconds_ago=10, read_by=["a"])

        response = await client.get(f"{BASE}/conversations/dm-1/messages")

        assert response.status_code == 200
        data = response.json()
        assert [m["id"] for m in data["messages"]] == ["m1", "m2"]
        assert data["totalVisibleCount"] == 2
        assert data["hasMore"] is False
        assert data["messages"][0]["isOwn"] is True
        assert data["messages"][1]["readBy"][0]["userId"] == "a"

    async def test_list_pagination(self, client, dm, make_message):
        for index in range(5):
            await make_message("dm-1", "b", message_id=f"m{index}", seconds_ago=50 - index)

        response = await client.get(f"{BASE}/conversations/dm-1/messages", params={"page": 2, "limit": 2})

        data = response.json()
        assert [m["id"] for m in data["messages"]] == ["m1", "m2"]
        assert data["totalPages"] == 3
        assert data["hasMore"] is True

    async def test_limit_out_of_range(self, client, dm):
        response = await client.get(f"{BASE}/conversations/dm-1/messages", params={"limit": 500})

        assert response.status_code == 422

    async def test_non_participant(self, client, group):
        response = await client.get(f"{BASE}/conversations/group-1/messages")

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "ACCESS_DENIED"

    async def test_unknown_conversation(self, client, dm):
        response = await client.get(f"{BASE}/conversations/nowhere/messages")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
class TestDeletionAPI:
    """Test cases for deletion endpoints."""

    async def test_delete_unauthorized(self, unauth_client, dm):
        response = await unauth_client.post(f"{BASE}/deletions/for-me", json=body(["m1"]))

        assert response.status_code == 401

    @pytest.mark.parametrize("current_user_id", ["b"])
    async def test_delete_for_me(self, client, dm, make_message):
        await make_message("dm-1", "a", message_id="m1")

        response = await client.post(f"{BASE}/deletions/for-me", json=body(["m1"]))

        assert response.status_code == 200
        assert response.json()["deletedCount"] == 1
        assert response.json()["messageIds"] == ["m1"]

        listing = await client.get(f"{BASE}/conversations/dm-1/messages")
        assert listing.json()["messages"] == []

    async def test_delete_for_everyone_publishes(self, client, dm, make_message):
        await make_message("dm-1", "a", message_id="m1")

        response = await client.post(f"{BASE}/deletions/for-everyone", json=body(["m1"]))

        assert response.status_code == 200
        events = [call.args[1] for call in connection_manager.publish.await_args_list]
        assert events == ["messages_deleted_for_everyone", "messages_deleted_for_everyone"]

    async def test_delete_for_everyone_window_expired(self, client, dm, make_message):
        await make_message("dm-1", "a", message_id="m1", seconds_ago=3600)

        response = await client.post(f"{BASE}/deletions/for-everyone", json=body(["m1"]))

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "WINDOW_EXPIRED"
        assert response.json()["detail"]["messageId"] == "m1"

    @pytest.mark.parametrize("current_user_id", ["b"])
    async def test_delete_for_everyone_by_other_participant(self, client, dm, make_message):
        await make_message("dm-1", "a", message_id="m1")

        response = await client.post(f"{BASE}/deletions/for-everyone", json=body(["m1"]))

        assert response.status_code == 403

    async def test_empty_message_ids(self, client, dm):
        response = await client.post(f"{BASE}/deletions/for-me", json=body([]))

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_REQUEST"

    async def test_hard_delete_media_pending_without_blob_store(self, client, dm, make_message):
        """Without OSS credentials the release fails and stays queued; the request still succeeds."""
        await make_message(
            "dm-1", "a", message_id="m1", content=None,
            type=MessageType.IMAGE, media_ref="messages/dm-1/m1.jpg",
        )

        response = await client.post(f"{BASE}/deletions/hard", json=body(["m1"]))

        data = response.json()
        assert response.status_code == 200
        assert data["deletedCount"] == 1
        assert data["releasedMediaCount"] == 0
        assert data["mediaPendingCount"] == 1

    async def test_soft_delete(self, client, dm, make_message):
        await make_message("dm-1", "a", message_id="m1")

        response = await client.post(f"{BASE}/deletions/soft", json=body(["m1"]))

        assert response.json()["deletedCount"] == 1

    async def test_auto_delete_preset(self, client, dm, make_message):
        await make_message("dm-1", "a", message_id="m1")

        response = await client.post(f"{BASE}/deletions/auto", json=body(["m1"], durationSeconds="7d"))

        data = response.json()
        assert response.status_code == 200
        assert data["affectedCount"] == 1
        assert data["durationSeconds"] == 604800
        assert data["expiresAt"]

    async def test_auto_delete_bad_duration(self, client, dm, make_message):
        await make_message("dm-1", "a", message_id="m1")

        response = await client.post(f"{BASE}/deletions/auto", json=body(["m1"], durationSeconds="1y"))

        assert response.status_code == 400

    @pytest.mark.parametrize("current_user_id", ["x"])
    async def test_admin_delete(self, client, group, make_message):
        await make_message("group-1", "y", message_id="m1", seconds_ago=7200)

        response = await client.post(f"{BASE}/deletions/admin", json=body(["m1"], conversation_id="group-1"))

        assert response.status_code == 200
        assert response.json()["messageIds"] == ["m1"]

    @pytest.mark.parametrize("current_user_id", ["z"])
    async def test_admin_delete_by_member(self, client, group, make_message):
        await make_message("group-1", "y", message_id="m1")

        response = await client.post(f"{BASE}/deletions/admin", json=body(["m1"], conversation_id="group-1"))

        assert response.status_code == 403

    @pytest.mark.parametrize("current_user_id", ["y"])
    async def test_bulk_delete_reports_skipped(self, client, group, make_message):
        await make_message("group-1", "y", message_id="mine")
        await make_message("group-1", "z", message_id="theirs")

        response = await client.post(
            f"{BASE}/deletions/bulk",
            json=body(["mine", "theirs"], conversation_id="group-1", mode="forEveryone"),
        )

        data = response.json()
        assert response.status_code == 200
        assert data["messageIds"] == ["mine"]
        assert data["mode"] == "forEveryone"
        assert data["skipped"] == [
            {"messageId": "theirs", "code": "ACCESS_DENIED", "reason": "Only the sender or a group admin can do this"}
        ]

    async def test_bulk_delete_unknown_mode(self, client, dm, make_message):
        await make_message("dm-1", "a", message_id="m1")

        response = await client.post(f"{BASE}/deletions/bulk", json=body(["m1"], mode="everything"))

        assert response.status_code == 400

    async def test_media_delete_local_only(self, client, dm, make_message):
        await make_message(
            "dm-1", "a", message_id="m1", content=None,
            type=MessageType.IMAGE, media_ref="messages/dm-1/m1.jpg",
        )

        response = await client.post(f"{BASE}/deletions/media", json=body(["m1"], deleteLocalOnly=True))

        assert response.json()["deletedCount"] == 1
        listing = await client.get(f"{BASE}/conversations/dm-1/messages")
        assert listing.json()["messages"][0]["mediaRef"] is None
        assert listing.json()["messages"][0]["content"] == "[Media deleted]"

    async def test_unsent_delete(self, client, dm, make_message):
        await make_message("dm-1", "a", message_id="m1")
        await make_message("dm-1", "a", message_id="m2", read_by=["b"])

        response = await client.post(f"{BASE}/deletions/unsent", json=body(["m1", "m2"]))

        data = response.json()
        assert data["messageIds"] == ["m1"]
        assert data["skipped"][0]["code"] == "NOT_ELIGIBLE"

    async def test_grace_delete(self, client, dm, make_message):
        await make_message("dm-1", "a", message_id="m1")

        response = await client.post(f"{BASE}/deletions/grace", json=body(["m1"], recipientIds=["b"]))

        data = response.json()
        assert response.status_code == 200
        assert data["queued"] is True
        assert data["recipientIds"] == ["b"]

    async def test_drain_own_queue(self, client, dm):
        response = await client.post(f"{BASE}/deletions/grace/drain")

        assert response.status_code == 200
        assert response.json() == {"appliedCount": 0}


@pytest.mark.asyncio
class TestServerCleanupAPI:

    async def test_requires_operator_role(self, client, dm):
        response = await client.post(f"{BASE}/deletions/server-cleanup", json={})

        assert response.status_code == 403

    @pytest.mark.parametrize("current_user_id", ["ops"])
    async def test_operator_cleanup(self, client, dm, make_user, make_message):
        await make_user("ops", role="ADMIN")
        await make_message("dm-1", "a", message_id="m1")

        response = await client.post(
            f"{BASE}/deletions/server-cleanup",
            json={"deleteOrphaned": False, "softDeleteRetentionDays": 7},
        )

        data = response.json()
        assert response.status_code == 200
        assert data["purgedCount"] == 0
        assert set(data["results"]) == {"orphaned", "expiredAutoDelete", "oldSoftDeleted", "hardDeletedPurged"}
