"""
Grace queue service.
Replays deletions queued for a recipient while they were offline.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import invalidate_unread_for_users
from app.core.exceptions import StoreUnavailable
from app.core.websocket import connection_manager, user_topic
from app.models.grace_delete import DeletionTransition
from app.repositories.grace_queue_repo import GraceQueueRepository
from app.repositories.message_repo import MessageRepository
from app.services.conversation_service import ConversationService
from app.utils.datetime_utils import to_iso_utc, utc_now

logger = logging.getLogger(__name__)


class GraceQueueService:
    """Service for draining per-recipient grace delete queues."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
        notifier=None
    ):
        self.db = db
        self.clock = clock
        self.grace_repo = GraceQueueRepository(db)
        self.message_repo = MessageRepository(db)
        self.conversation_service = ConversationService(db, clock=clock)
        self.ws_manager = notifier or connection_manager

    async def drain(self, recipient_id: str) -> Dict[str, Any]:
        """
        Replay a recipient's queued transitions in enqueue order.

        Each transition is re-applied with the same conditional updates the
        live operation uses, so an entry whose messages were since deleted
        more strongly changes nothing. Drained entries are removed in the
        same transaction; one ``grace_delete_replayed`` event is published
        to the recipient afterwards.

        Args:
            recipient_id: User whose queue is drained

        Returns:
            Dict with ``applied_count`` (distinct message ids replayed)
        """
        now = self.clock()

        try:
            entries = await self.grace_repo.get_for_recipient(recipient_id)
            if not entries:
                return {"applied_count": 0}

            replayed: Set[str] = set()
            conversations: Dict[str, Set[str]] = {}

            for entry in entries:
                message_ids = list(entry.message_ids or [])
                if entry.transition == DeletionTransition.HARD:
                    transitioned = await self.message_repo.mark_hard_deleted(message_ids, now)
                    await self.message_repo.schedule_media_release(
                        [m.id for m in transitioned if m.media_ref], now
                    )
                else:
                    await self.message_repo.mark_deleted_for_everyone(message_ids, entry.actor_id, now)

                replayed.update(message_ids)
                conversations.setdefault(entry.conversation_id, set()).update(message_ids)

            for conversation_id in conversations:
                await self.conversation_service.refresh_last_message(conversation_id, now)

            await self.grace_repo.delete_entries([entry.id for entry in entries])
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Grace queue drain failed for {recipient_id}: {e}", exc_info=True)
            raise StoreUnavailable("Could not drain the grace queue; retry later") from e

        for conversation_id in conversations:
            await invalidate_unread_for_users(conversation_id, [recipient_id])

        await self.ws_manager.publish(
            user_topic(recipient_id),
            "grace_delete_replayed",
            {
                "conversations": [
                    {"conversation_id": conversation_id, "message_ids": sorted(message_ids)}
                    for conversation_id, message_ids in conversations.items()
                ],
                "applied_count": len(replayed),
                "timestamp": to_iso_utc(now),
            }
        )

        logger.info(
            f"Drained {len(entries)} grace entries for {recipient_id}: {len(replayed)} messages replayed"
        )
        return {"applied_count": len(replayed)}
