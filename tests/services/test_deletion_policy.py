"""
Unit tests for the deletion policy engine.
Pure decision logic, no database.
"""
from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import AccessDenied, InvalidDeletionRequest, NotFound, WindowExpired
from app.models.message import Message, MessageDeliveryStatus
from app.services.deletion_policy import (
    ActorContext,
    DeletionOperation,
    evaluate,
    resolve_auto_delete_duration,
    resolve_window,
    within_window,
)

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
WINDOW = 900


def build_message(sender_id="a", seconds_ago=0, **fields):
    values = dict(
        id="m1",
        conversation_id="c1",
        sender_id=sender_id,
        content="hello",
        created_at=NOW - timedelta(seconds=seconds_ago),
        status=MessageDeliveryStatus.SENT,
        hard_deleted=False,
        deleted_for_everyone=False,
        soft_deleted=False,
        auto_delete_expires_at=None,
        media_ref=None,
    )
    values.update(fields)
    return Message(**values)


DM_SENDER = ActorContext(actor_id="a", is_group=False, is_group_admin=False)
DM_OTHER = ActorContext(actor_id="b", is_group=False, is_group_admin=False)
GROUP_ADMIN = ActorContext(actor_id="x", is_group=True, is_group_admin=True)
GROUP_MEMBER = ActorContext(actor_id="z", is_group=True, is_group_admin=False)


def decide(operation, message, actor, **kwargs):
    kwargs.setdefault("window_seconds", WINDOW)
    return evaluate(operation, message, actor, NOW, **kwargs)


class TestOwnershipRule:
    """Non-owners act only as group admins; direct chats have no override."""

    @pytest.mark.parametrize("operation", [
        DeletionOperation.FOR_EVERYONE,
        DeletionOperation.HARD,
        DeletionOperation.SOFT,
        DeletionOperation.AUTO_DELETE,
    ])
    def test_other_participant_in_dm_is_denied(self, operation):
        decision = decide(operation, build_message(sender_id="a"), DM_OTHER)

        assert not decision.allowed
        assert decision.error is AccessDenied

    def test_other_participant_may_delete_for_me(self):
        decision = decide(DeletionOperation.FOR_ME, build_message(sender_id="a"), DM_OTHER)
        assert decision.allowed and decision.effective

    def test_group_member_cannot_delete_for_everyone(self):
        decision = decide(DeletionOperation.FOR_EVERYONE, build_message(sender_id="y"), GROUP_MEMBER)

        assert not decision.allowed
        assert decision.to_exception().status_code == 403

    def test_group_admin_may_hard_delete_others(self):
        decision = decide(DeletionOperation.HARD, build_message(sender_id="y"), GROUP_ADMIN)
        assert decision.allowed and decision.effective

    def test_admin_role_without_group_grants_nothing(self):
        actor = ActorContext(actor_id="b", is_group=False, is_group_admin=True)
        decision = decide(DeletionOperation.HARD, build_message(sender_id="a"), actor)
        assert not decision.allowed


class TestDeleteForEveryoneWindow:
    """Window edges for senders; admins bypass the window."""

    def test_sender_allowed_one_second_before_window_ends(self):
        decision = decide(DeletionOperation.FOR_EVERYONE, build_message(seconds_ago=WINDOW - 1), DM_SENDER)
        assert decision.allowed and decision.effective

    def test_sender_allowed_exactly_at_window_end(self):
        decision = decide(DeletionOperation.FOR_EVERYONE, build_message(seconds_ago=WINDOW), DM_SENDER)
        assert decision.allowed

    def test_sender_rejected_one_second_after_window(self):
        decision = decide(DeletionOperation.FOR_EVERYONE, build_message(seconds_ago=WINDOW + 1), DM_SENDER)

        assert not decision.allowed
        assert decision.error is WindowExpired
        assert decision.to_exception().detail["code"] == "WINDOW_EXPIRED"

    def test_group_admin_bypasses_window(self):
        message = build_message(sender_id="y", seconds_ago=WINDOW * 10)
        decision = decide(DeletionOperation.FOR_EVERYONE, message, GROUP_ADMIN)

        assert decision.allowed
        assert decision.window_bypassed

    @pytest.mark.parametrize("seconds_ago", [WINDOW - 1, WINDOW + 1])
    def test_admin_delete_ignores_window(self, seconds_ago):
        message = build_message(sender_id="y", seconds_ago=seconds_ago)
        decision = decide(DeletionOperation.ADMIN, message, GROUP_ADMIN)
        assert decision.allowed and decision.effective

    def test_already_deleted_for_everyone_is_satisfied(self):
        message = build_message(deleted_for_everyone=True, seconds_ago=WINDOW * 2)
        decision = decide(DeletionOperation.FOR_EVERYONE, message, DM_SENDER)

        assert decision.allowed
        assert not decision.effective


class TestAdminDelete:

    def test_denied_in_direct_chat(self):
        actor = ActorContext(actor_id="a", is_group=False, is_group_admin=False)
        decision = decide(DeletionOperation.ADMIN, build_message(sender_id="a"), actor)
        assert decision.error is AccessDenied

    def test_denied_for_group_member(self):
        decision = decide(DeletionOperation.ADMIN, build_message(sender_id="z"), GROUP_MEMBER)
        assert decision.error is AccessDenied


class TestGoneMessages:
    """Hard deleted and expired messages satisfy every destructive request."""

    @pytest.mark.parametrize("operation", list(DeletionOperation))
    def test_hard_deleted_is_satisfied_not_found(self, operation):
        message = build_message(hard_deleted=True)
        decision = decide(operation, message, GROUP_ADMIN if operation == DeletionOperation.ADMIN else DM_SENDER)

        assert decision.allowed
        assert not decision.effective
        assert decision.code == NotFound.code

    def test_expired_auto_delete_counts_as_gone(self):
        message = build_message(auto_delete_expires_at=NOW - timedelta(seconds=1))
        decision = decide(DeletionOperation.FOR_EVERYONE, message, DM_SENDER)
        assert decision.code == NotFound.code

    def test_for_me_on_hidden_message_is_satisfied(self):
        decision = decide(DeletionOperation.FOR_ME, build_message(), DM_OTHER, visible_to_actor=False)
        assert decision.allowed and not decision.effective


class TestUnsent:

    def test_sent_and_unread_is_eligible(self):
        decision = decide(DeletionOperation.UNSENT, build_message(), DM_SENDER)
        assert decision.allowed and decision.effective

    @pytest.mark.parametrize("status", [MessageDeliveryStatus.DELIVERED, MessageDeliveryStatus.READ])
    def test_delivered_or_read_is_not_eligible(self, status):
        decision = decide(DeletionOperation.UNSENT, build_message(status=status), DM_SENDER)

        assert not decision.effective
        assert decision.as_skipped()["code"] == "NOT_ELIGIBLE"

    def test_read_receipt_from_other_makes_it_ineligible(self):
        decision = decide(DeletionOperation.UNSENT, build_message(), DM_SENDER, read_by_others=True)
        assert decision.code == "NOT_ELIGIBLE"

    def test_admin_cannot_retract_for_sender(self):
        decision = decide(DeletionOperation.UNSENT, build_message(sender_id="y"), GROUP_ADMIN)
        assert decision.error is AccessDenied


class TestMediaAndSoft:

    def test_media_without_ref_is_satisfied(self):
        decision = decide(DeletionOperation.MEDIA, build_message(), DM_SENDER)
        assert decision.allowed and not decision.effective

    def test_media_with_ref_is_permitted(self):
        decision = decide(DeletionOperation.MEDIA, build_message(media_ref="messages/c1/a.jpg"), DM_SENDER)
        assert decision.effective

    def test_soft_delete_twice_is_satisfied(self):
        decision = decide(DeletionOperation.SOFT, build_message(soft_deleted=True), DM_SENDER)
        assert decision.allowed and not decision.effective


class TestHelpers:

    @pytest.mark.parametrize("value,expected", [
        ("24h", 86400),
        ("7d", 604800),
        ("90d", 7776000),
        (30, 30),
        ("45", 45),
    ])
    def test_resolve_auto_delete_duration(self, value, expected):
        assert resolve_auto_delete_duration(value) == expected

    @pytest.mark.parametrize("value", [0, -5, "2w", "", None, True])
    def test_resolve_auto_delete_duration_rejects(self, value):
        with pytest.raises(InvalidDeletionRequest):
            resolve_auto_delete_duration(value)

    def test_resolve_window_caps_override(self):
        assert resolve_window(None, 900, 86400) == 900
        assert resolve_window(60, 900, 86400) == 60
        assert resolve_window(10 ** 6, 900, 86400) == 86400

    def test_within_window_accepts_naive_created_at(self):
        naive = (NOW - timedelta(seconds=10)).replace(tzinfo=None)
        assert within_window(naive, NOW, 10)
        assert not within_window(naive, NOW, 9)
