"""
Conversation service containing the conversation ledger logic.
Handles participant checks, last-message recompute, summaries and clear-chat.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.cache import (
    cache_unread_count,
    get_cached_unread_count,
    invalidate_unread_for_users,
)
from app.core.exceptions import AccessDenied, NotFound, StoreUnavailable
from app.core.websocket import connection_manager, user_topic
from app.models.conversation import Conversation, ConversationMember, ConversationRole
from app.models.message import Message
from app.repositories.conversation_repo import (
    ConversationRepository,
    ConversationMemberRepository
)
from app.repositories.message_repo import MessageRepository
from app.schemas.message import MessageProjection
from app.services.deletion_policy import ActorContext
from app.utils.datetime_utils import to_iso_utc, utc_now

logger = logging.getLogger(__name__)


class ConversationService:
    """Service for conversation ledger operations."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
        notifier=None
    ):
        """
        Initialize conversation service.

        Args:
            db: Database session
            clock: Source of the current time
            notifier: Real-time fan-out (defaults to the Socket.IO manager)
        """
        self.db = db
        self.clock = clock
        self.conversation_repo = ConversationRepository(db)
        self.member_repo = ConversationMemberRepository(db)
        self.message_repo = MessageRepository(db)
        self.ws_manager = notifier or connection_manager

    async def ensure_participant(
        self,
        conversation_id: str,
        user_id: str
    ) -> Tuple[Conversation, ConversationMember]:
        """
        Load a conversation and the caller's membership.

        Args:
            conversation_id: Conversation ID
            user_id: Caller

        Returns:
            Tuple of (conversation, member record)

        Raises:
            NotFound: Conversation does not exist
            AccessDenied: Caller is not a participant
        """
        conversation = await self.conversation_repo.get(conversation_id)
        if not conversation:
            raise NotFound("Conversation not found", extra={"conversationId": conversation_id})

        member = await self.member_repo.get_member(conversation_id, user_id)
        if not member:
            raise AccessDenied(
                "You are not a member of this conversation",
                extra={"conversationId": conversation_id}
            )

        return conversation, member

    @staticmethod
    def actor_context(
        conversation: Conversation,
        member: ConversationMember
    ) -> ActorContext:
        """Primary admin is ``group_admin_id``; secondary admins carry the admin role."""
        is_group_admin = conversation.is_group and (
            conversation.group_admin_id == member.user_id
            or member.role == ConversationRole.ADMIN
        )
        return ActorContext(
            actor_id=member.user_id,
            is_group=conversation.is_group,
            is_group_admin=is_group_admin,
        )

    async def refresh_last_message(
        self,
        conversation_id: str,
        now: Optional[datetime] = None
    ) -> Optional[Message]:
        """
        Recompute the denormalized last message from the log.

        Picks the greatest ``created_at`` among globally visible messages
        at write time. Does not commit; callers stage it with the deletion
        that made it necessary.
        """
        latest = await self.message_repo.get_latest_globally_visible(
            conversation_id,
            now or self.clock()
        )
        await self.conversation_repo.set_last_message(conversation_id, latest)
        return latest

    async def get_conversation_summary(
        self,
        conversation_id: str,
        viewer_id: str
    ) -> Dict[str, Any]:
        """
        Build the viewer-specific conversation summary.

        The unread counter on the member row is maintained outside this
        subsystem and can drift; it is clamped to the number of visible
        messages the viewer neither sent nor read. Nothing is written.

        Args:
            conversation_id: Conversation ID
            viewer_id: Viewing participant

        Returns:
            Summary dict (conversation id, participants, last message, unread count)
        """
        conversation, member = await self.ensure_participant(conversation_id, viewer_id)
        now = self.clock()
        sender_sees = settings.sender_sees_deleted_for_everyone

        try:
            last_message = await self.message_repo.get_latest_visible(
                conversation_id, viewer_id, now, sender_sees
            )
            participant_ids = await self.member_repo.get_member_ids(conversation_id)
            counter = member.unread_count or 0
            visible_unread = await self._visible_unread_count(conversation_id, viewer_id, counter, now)
        except SQLAlchemyError as e:
            logger.error(f"Failed to build summary for conversation {conversation_id}: {e}")
            raise StoreUnavailable("Could not load conversation summary") from e

        return {
            "conversation_id": conversation_id,
            "is_group_chat": conversation.is_group,
            "participant_ids": participant_ids,
            "last_message": (
                MessageProjection.from_message(last_message, viewer_id)
                if last_message else None
            ),
            "unread_count": min(counter, visible_unread),
        }

    async def _visible_unread_count(
        self,
        conversation_id: str,
        viewer_id: str,
        counter: int,
        now: datetime
    ) -> int:
        try:
            cached = await get_cached_unread_count(viewer_id, conversation_id, counter)
        except RedisError as e:
            logger.warning(f"Unread cache read failed for {viewer_id}: {e}")
            cached = None

        if cached is not None:
            return cached

        count = await self.message_repo.count_unread_visible(
            conversation_id,
            viewer_id,
            now,
            settings.sender_sees_deleted_for_everyone
        )

        try:
            await cache_unread_count(viewer_id, conversation_id, count, counter)
        except RedisError as e:
            logger.warning(f"Unread cache write failed for {viewer_id}: {e}")

        return count

    async def clear_conversation(
        self,
        conversation_id: str,
        user_id: str
    ) -> Dict[str, Any]:
        """
        Clear a chat for the caller only.

        Applies delete-for-me to every message the caller can currently
        see. Other participants are unaffected and are not notified.

        Returns:
            Dict with ``deleted_count`` and the hidden ``message_ids``
        """
        await self.ensure_participant(conversation_id, user_id)
        now = self.clock()

        try:
            visible_ids = await self.message_repo.list_visible_ids(
                conversation_id,
                user_id,
                now,
                settings.sender_sees_deleted_for_everyone
            )
            hidden_ids = await self.message_repo.hide_for_user(user_id, visible_ids, now)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to clear conversation {conversation_id} for {user_id}: {e}")
            raise StoreUnavailable("Could not clear conversation; retry the request") from e

        if hidden_ids:
            await invalidate_unread_for_users(conversation_id, [user_id])
            await self.ws_manager.publish(
                user_topic(user_id),
                "chat_cleared_for_me",
                {
                    "conversation_id": conversation_id,
                    "message_ids": hidden_ids,
                    "cleared_at": to_iso_utc(now),
                }
            )

        logger.info(
            f"Conversation {conversation_id} cleared for {user_id}: {len(hidden_ids)} messages hidden"
        )

        return {"deleted_count": len(hidden_ids), "message_ids": hidden_ids}
