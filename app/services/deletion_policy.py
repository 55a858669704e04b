"""
Deletion policy engine.

Pure decision logic: given an operation, the acting participant's role in
the conversation and one message, decide whether the operation is allowed
and whether it still has an effect. Nothing here touches the database.

Ownership rule shared by every destructive operation except delete-for-me:
a non-owner may act on someone else's message only as the primary or a
secondary admin of a group conversation. Direct chats have no override.
"""
import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Type, Union

from app.core.exceptions import (
    AccessDenied,
    DeletionError,
    InvalidDeletionRequest,
    NotFound,
    WindowExpired,
)
from app.models.message import Message, MessageDeliveryStatus
from app.utils.datetime_utils import ensure_utc


class DeletionOperation(str, enum.Enum):
    """Operations exposed by the deletion subsystem."""
    FOR_ME = "forMe"
    FOR_EVERYONE = "forEveryone"
    HARD = "hard"
    SOFT = "soft"
    AUTO_DELETE = "autoDelete"
    ADMIN = "admin"
    MEDIA = "media"
    UNSENT = "unsent"


BULK_MODES = frozenset({
    DeletionOperation.FOR_ME,
    DeletionOperation.FOR_EVERYONE,
    DeletionOperation.HARD,
    DeletionOperation.SOFT,
})

AUTO_DELETE_PRESETS: Dict[str, int] = {
    "24h": 24 * 60 * 60,
    "7d": 7 * 24 * 60 * 60,
    "90d": 90 * 24 * 60 * 60,
}

UNSENT_STATUSES = frozenset({
    MessageDeliveryStatus.SENDING,
    MessageDeliveryStatus.SENT,
    MessageDeliveryStatus.FAILED,
})


@dataclass(frozen=True)
class ActorContext:
    """The acting user's standing in one conversation."""
    actor_id: str
    is_group: bool
    is_group_admin: bool

    @property
    def can_override_ownership(self) -> bool:
        return self.is_group and self.is_group_admin


@dataclass(frozen=True)
class Decision:
    """
    Outcome of evaluating one operation against one message.

    ``allowed`` False means the actor may not perform the operation and
    ``error`` names the exception to surface. An allowed decision with
    ``effective`` False means the message is already in (or past) the
    target state: the request is satisfied with zero effect.
    """
    message_id: str
    allowed: bool
    effective: bool = True
    error: Optional[Type[DeletionError]] = None
    reason: Optional[str] = None
    code: Optional[str] = None
    window_bypassed: bool = False

    @classmethod
    def permit(cls, message_id: str, window_bypassed: bool = False) -> "Decision":
        return cls(message_id=message_id, allowed=True, window_bypassed=window_bypassed)

    @classmethod
    def satisfied(cls, message_id: str, reason: str, code: Optional[str] = None) -> "Decision":
        return cls(message_id=message_id, allowed=True, effective=False, reason=reason, code=code)

    @classmethod
    def deny(cls, message_id: str, error: Type[DeletionError], reason: str) -> "Decision":
        return cls(message_id=message_id, allowed=False, effective=False, error=error, reason=reason)

    def to_exception(self) -> DeletionError:
        error = self.error or AccessDenied
        return error(self.reason or "Operation not permitted", extra={"messageId": self.message_id})

    def as_skipped(self) -> Dict[str, Any]:
        code = self.code or (self.error.code if self.error else NotFound.code)
        return {"message_id": self.message_id, "code": code, "reason": self.reason}


def resolve_auto_delete_duration(duration: Union[int, str, None]) -> int:
    """
    Normalize an auto-delete duration to seconds.

    Accepts a positive number of seconds or one of the presets
    ``24h``, ``7d``, ``90d``.

    Raises:
        InvalidDeletionRequest: For unknown presets and non-positive values
    """
    if isinstance(duration, str):
        if duration in AUTO_DELETE_PRESETS:
            return AUTO_DELETE_PRESETS[duration]
        if not duration.isdigit():
            raise InvalidDeletionRequest(
                f"Invalid duration '{duration}'; use seconds or one of {sorted(AUTO_DELETE_PRESETS)}"
            )
        duration = int(duration)

    if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
        raise InvalidDeletionRequest("Auto-delete duration must be a positive number of seconds")

    return duration


def resolve_window(
    override: Optional[int],
    default_seconds: int,
    max_seconds: int
) -> int:
    """
    Pick the delete-for-everyone window.

    A caller-supplied override may shorten or extend the default but is
    capped at ``max_seconds``.
    """
    if override is None:
        return default_seconds
    if override <= 0:
        raise InvalidDeletionRequest("timeWindowOverride must be positive")
    return min(override, max_seconds)


def within_window(created_at: datetime, now: datetime, window_seconds: int) -> bool:
    """True while ``now`` is at most ``window_seconds`` after ``created_at``."""
    return ensure_utc(now) - ensure_utc(created_at) <= timedelta(seconds=window_seconds)


def is_expired(message: Message, now: datetime) -> bool:
    expires_at = ensure_utc(message.auto_delete_expires_at)
    return expires_at is not None and expires_at <= ensure_utc(now)


def is_gone(message: Message, now: datetime) -> bool:
    """Hard deleted, or past auto-delete expiry (which behaves as hard deleted)."""
    return message.hard_deleted or is_expired(message, now)


def evaluate(
    operation: DeletionOperation,
    message: Message,
    actor: ActorContext,
    now: datetime,
    *,
    window_seconds: int,
    visible_to_actor: bool = True,
    read_by_others: bool = False
) -> Decision:
    """
    Decide whether ``actor`` may apply ``operation`` to ``message``.

    Args:
        operation: Requested operation
        message: Target message (current persisted state)
        actor: Actor's standing in the conversation
        now: Reference time
        window_seconds: Delete-for-everyone window in effect
        visible_to_actor: Whether the message is currently visible to the actor
        read_by_others: Whether anyone but the sender has a read receipt

    Returns:
        Decision for this message
    """
    message_id = message.id

    if is_gone(message, now):
        return Decision.satisfied(message_id, "Message no longer exists", code=NotFound.code)

    if operation == DeletionOperation.FOR_ME:
        if not visible_to_actor:
            return Decision.satisfied(message_id, "Message is not visible to this user")
        return Decision.permit(message_id)

    is_owner = message.sender_id == actor.actor_id

    if operation == DeletionOperation.ADMIN:
        if not actor.is_group:
            return Decision.deny(message_id, AccessDenied, "Admin delete is only available in group chats")
        if not actor.is_group_admin:
            return Decision.deny(message_id, AccessDenied, "Only group admins can admin-delete messages")
        if message.deleted_for_everyone:
            return Decision.satisfied(message_id, "Message already deleted for everyone")
        return Decision.permit(message_id, window_bypassed=True)

    if operation == DeletionOperation.UNSENT:
        if not is_owner:
            return Decision.deny(message_id, AccessDenied, "Only the sender can retract an unsent message")
        if message.status not in UNSENT_STATUSES or read_by_others:
            return Decision.satisfied(message_id, "Message was already delivered or read", code="NOT_ELIGIBLE")
        return Decision.permit(message_id)

    if not is_owner and not actor.can_override_ownership:
        if actor.is_group:
            reason = "Only the sender or a group admin can do this"
        else:
            reason = "Only the sender can do this; other participants may only delete for themselves"
        return Decision.deny(message_id, AccessDenied, reason)

    if operation == DeletionOperation.FOR_EVERYONE:
        if message.deleted_for_everyone:
            return Decision.satisfied(message_id, "Message already deleted for everyone")
        if actor.can_override_ownership:
            return Decision.permit(message_id, window_bypassed=True)
        if not within_window(message.created_at, now, window_seconds):
            return Decision.deny(
                message_id,
                WindowExpired,
                f"Messages can only be deleted for everyone within {window_seconds} seconds of sending",
            )
        return Decision.permit(message_id)

    if operation == DeletionOperation.SOFT:
        if message.soft_deleted:
            return Decision.satisfied(message_id, "Message already soft deleted")
        return Decision.permit(message_id)

    if operation == DeletionOperation.MEDIA:
        if not message.has_media:
            return Decision.satisfied(message_id, "Message has no media")
        return Decision.permit(message_id)

    if operation in (DeletionOperation.HARD, DeletionOperation.AUTO_DELETE):
        return Decision.permit(message_id)

    raise InvalidDeletionRequest(f"Unsupported operation '{operation}'")
