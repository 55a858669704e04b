"""
Message repository for database operations.

Builds the per-viewer visibility predicate and the atomic, conditional
state transitions used by the deletion services. Every transition is a
single ``UPDATE ... WHERE <weaker state> RETURNING id`` so concurrent
writers converge on the strongest state without read-modify-write.
"""
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Set

from sqlalchemy import and_, delete, desc, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from app.models.conversation import Conversation
from app.models.message import Message, MessageStatus, MessageStatusType
from app.models.user_deleted_message import DeleteMode, UserDeletedMessage
from app.repositories.base import BaseRepository


def not_expired(now: datetime) -> ColumnElement[bool]:
    """Auto-delete expiry evaluated at read time."""
    return or_(
        Message.auto_delete_expires_at.is_(None),
        Message.auto_delete_expires_at > now,
    )


def visible_to(
    viewer_id: str,
    now: datetime,
    sender_sees_deleted_for_everyone: bool = True,
) -> ColumnElement[bool]:
    """
    Exclusion predicate for one viewer.

    A message is visible to ``viewer_id`` unless it is hard deleted, soft
    deleted, deleted for everyone (the sender keeps seeing it when the
    sender exception is on), hidden by the viewer's own delete-for-me
    marker, or past its auto-delete expiry.

    The same expression feeds page queries, counts and last-message
    lookups so totals never diverge from returned rows.
    """
    hidden_for_viewer = (
        select(UserDeletedMessage.message_id)
        .where(UserDeletedMessage.user_id == viewer_id)
    )

    if sender_sees_deleted_for_everyone:
        everyone_clause = or_(
            Message.deleted_for_everyone.is_(False),
            Message.sender_id == viewer_id,
        )
    else:
        everyone_clause = Message.deleted_for_everyone.is_(False)

    return and_(
        Message.hard_deleted.is_(False),
        Message.soft_deleted.is_(False),
        everyone_clause,
        Message.id.notin_(hidden_for_viewer),
        not_expired(now),
    )


def globally_visible(now: datetime) -> ColumnElement[bool]:
    """Visible to every participant: no global deletion state applies."""
    return and_(
        Message.hard_deleted.is_(False),
        Message.soft_deleted.is_(False),
        Message.deleted_for_everyone.is_(False),
        not_expired(now),
    )


class MessageRepository(BaseRepository[Message]):
    """Repository for message visibility queries and deletion transitions."""

    def __init__(self, db: AsyncSession):
        """Initialize message repository."""
        super().__init__(Message, db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_in_conversation(
        self,
        conversation_id: str,
        message_ids: Sequence[str]
    ) -> List[Message]:
        """
        Load messages by id, restricted to one conversation.

        Ids that do not exist or belong to another conversation are simply
        absent from the result. Rows are refreshed from the database so
        callers always see the state left by concurrent transitions.

        Args:
            conversation_id: Conversation ID
            message_ids: Requested message IDs

        Returns:
            Messages found, in no particular order
        """
        if not message_ids:
            return []

        result = await self.db.execute(
            select(Message)
            .where(
                and_(
                    Message.conversation_id == conversation_id,
                    Message.id.in_(list(message_ids))
                )
            )
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_visible(
        self,
        conversation_id: str,
        viewer_id: str,
        now: datetime,
        limit: int,
        offset: int = 0,
        sender_sees_deleted_for_everyone: bool = True
    ) -> List[Message]:
        """
        Get one page of messages visible to a viewer, newest first.

        Args:
            conversation_id: Conversation ID
            viewer_id: Viewing participant
            now: Reference time for auto-delete expiry
            limit: Page size
            offset: Rows to skip
            sender_sees_deleted_for_everyone: Sender exception policy

        Returns:
            Messages ordered by ``created_at DESC, id DESC``
        """
        query = (
            select(Message)
            .where(
                and_(
                    Message.conversation_id == conversation_id,
                    visible_to(viewer_id, now, sender_sees_deleted_for_everyone),
                )
            )
            .order_by(desc(Message.created_at), desc(Message.id))
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count_visible(
        self,
        conversation_id: str,
        viewer_id: str,
        now: datetime,
        sender_sees_deleted_for_everyone: bool = True
    ) -> int:
        """Count messages visible to a viewer (same predicate as list_visible)."""
        result = await self.db.execute(
            select(func.count())
            .select_from(Message)
            .where(
                and_(
                    Message.conversation_id == conversation_id,
                    visible_to(viewer_id, now, sender_sees_deleted_for_everyone),
                )
            )
        )
        return result.scalar() or 0

    async def list_visible_ids(
        self,
        conversation_id: str,
        viewer_id: str,
        now: datetime,
        sender_sees_deleted_for_everyone: bool = True
    ) -> List[str]:
        """Get ids of every message currently visible to a viewer."""
        result = await self.db.execute(
            select(Message.id).where(
                and_(
                    Message.conversation_id == conversation_id,
                    visible_to(viewer_id, now, sender_sees_deleted_for_everyone),
                )
            )
        )
        return list(result.scalars().all())

    async def filter_visible_ids(
        self,
        message_ids: Sequence[str],
        viewer_id: str,
        now: datetime,
        sender_sees_deleted_for_everyone: bool = True
    ) -> Set[str]:
        """Return the subset of ``message_ids`` the viewer can currently see."""
        if not message_ids:
            return set()

        result = await self.db.execute(
            select(Message.id).where(
                and_(
                    Message.id.in_(list(message_ids)),
                    visible_to(viewer_id, now, sender_sees_deleted_for_everyone),
                )
            )
        )
        return set(result.scalars().all())

    async def get_latest_visible(
        self,
        conversation_id: str,
        viewer_id: str,
        now: datetime,
        sender_sees_deleted_for_everyone: bool = True
    ) -> Optional[Message]:
        """Get the newest message visible to a viewer, or None."""
        messages = await self.list_visible(
            conversation_id,
            viewer_id,
            now,
            limit=1,
            sender_sees_deleted_for_everyone=sender_sees_deleted_for_everyone,
        )
        return messages[0] if messages else None

    async def get_latest_globally_visible(
        self,
        conversation_id: str,
        now: datetime
    ) -> Optional[Message]:
        """
        Get the newest message no global deletion state hides.

        Always recomputed from the log, never from the cached pointer on
        the conversation row.
        """
        result = await self.db.execute(
            select(Message)
            .where(
                and_(
                    Message.conversation_id == conversation_id,
                    globally_visible(now),
                )
            )
            .order_by(desc(Message.created_at), desc(Message.id))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def count_unread_visible(
        self,
        conversation_id: str,
        viewer_id: str,
        now: datetime,
        sender_sees_deleted_for_everyone: bool = True
    ) -> int:
        """
        Count visible messages the viewer did not send and has not read.

        Args:
            conversation_id: Conversation ID
            viewer_id: Viewing participant
            now: Reference time for auto-delete expiry
            sender_sees_deleted_for_everyone: Sender exception policy

        Returns:
            Number of unread visible messages
        """
        read_subquery = (
            select(MessageStatus.message_id)
            .where(
                and_(
                    MessageStatus.user_id == viewer_id,
                    MessageStatus.status == MessageStatusType.READ
                )
            )
        )

        result = await self.db.execute(
            select(func.count())
            .select_from(Message)
            .where(
                and_(
                    Message.conversation_id == conversation_id,
                    Message.sender_id != viewer_id,
                    Message.id.notin_(read_subquery),
                    visible_to(viewer_id, now, sender_sees_deleted_for_everyone),
                )
            )
        )
        return result.scalar() or 0

    async def get_ids_read_by_others(self, message_ids: Sequence[str]) -> Set[str]:
        """
        Return message ids carrying a read receipt from anyone but the sender.

        Args:
            message_ids: Message IDs to check

        Returns:
            Subset of ``message_ids`` that someone else has read
        """
        if not message_ids:
            return set()

        result = await self.db.execute(
            select(MessageStatus.message_id)
            .join(Message, Message.id == MessageStatus.message_id)
            .where(
                and_(
                    MessageStatus.message_id.in_(list(message_ids)),
                    MessageStatus.status == MessageStatusType.READ,
                    MessageStatus.user_id != Message.sender_id,
                )
            )
            .distinct()
        )
        return set(result.scalars().all())

    # ------------------------------------------------------------------
    # Atomic transitions
    # ------------------------------------------------------------------

    async def hide_for_user(
        self,
        user_id: str,
        message_ids: Sequence[str],
        now: datetime
    ) -> List[str]:
        """
        Add delete-for-me markers with an atomic add-to-set insert.

        Concurrent or repeated calls never duplicate a marker; only ids
        that were newly hidden are returned.

        Args:
            user_id: User hiding the messages
            message_ids: Messages to hide
            now: Timestamp recorded on the marker

        Returns:
            Newly hidden message IDs
        """
        if not message_ids:
            return []

        rows = [
            {
                "user_id": user_id,
                "message_id": message_id,
                "delete_mode": DeleteMode.FOR_ME,
                "deleted_at": now,
            }
            for message_id in dict.fromkeys(message_ids)
        ]
        stmt = (
            self.dialect_insert(UserDeletedMessage)
            .values(rows)
            .on_conflict_do_nothing(
                index_elements=[UserDeletedMessage.user_id, UserDeletedMessage.message_id]
            )
            .returning(UserDeletedMessage.message_id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def mark_deleted_for_everyone(
        self,
        message_ids: Sequence[str],
        actor_id: Optional[str],
        now: datetime
    ) -> List[str]:
        """
        Set ``deleted_for_everyone`` where it is not already set.

        Hard deleted rows are left untouched; the stronger state wins.

        Returns:
            IDs that transitioned
        """
        if not message_ids:
            return []

        result = await self.db.execute(
            update(Message)
            .where(
                and_(
                    Message.id.in_(list(message_ids)),
                    Message.hard_deleted.is_(False),
                    Message.deleted_for_everyone.is_(False),
                )
            )
            .values(
                deleted_for_everyone=True,
                deleted_for_everyone_at=now,
                deleted_for_everyone_by=actor_id,
            )
            .returning(Message.id)
            .execution_options(synchronize_session=False)
        )
        return list(result.scalars().all())

    async def mark_hard_deleted(
        self,
        message_ids: Sequence[str],
        now: datetime,
        keep_media_ref: bool = True
    ) -> List[Message]:
        """
        Hard delete messages that are not hard deleted yet.

        Content is cleared. With ``keep_media_ref`` the blob reference stays
        on the tombstone so the release can be performed (and retried);
        otherwise it is detached and the blob is left alone.

        Args:
            message_ids: Messages to hard delete
            now: Deletion timestamp
            keep_media_ref: Keep ``media_ref`` for a subsequent release

        Returns:
            Messages that transitioned (refreshed)
        """
        if not message_ids:
            return []

        values = {
            "hard_deleted": True,
            "hard_deleted_at": now,
            "content": None,
        }
        if not keep_media_ref:
            values["media_ref"] = None

        result = await self.db.execute(
            update(Message)
            .where(
                and_(
                    Message.id.in_(list(message_ids)),
                    Message.hard_deleted.is_(False),
                )
            )
            .values(**values)
            .returning(Message.id)
            .execution_options(synchronize_session=False)
        )
        transitioned = list(result.scalars().all())
        return await self._reload(transitioned)

    async def mark_soft_deleted(
        self,
        message_ids: Sequence[str],
        actor_id: str,
        now: datetime
    ) -> List[str]:
        """Tombstone messages for audit; returns IDs that transitioned."""
        if not message_ids:
            return []

        result = await self.db.execute(
            update(Message)
            .where(
                and_(
                    Message.id.in_(list(message_ids)),
                    Message.hard_deleted.is_(False),
                    Message.soft_deleted.is_(False),
                )
            )
            .values(soft_deleted=True, soft_deleted_at=now, soft_deleted_by=actor_id)
            .returning(Message.id)
            .execution_options(synchronize_session=False)
        )
        return list(result.scalars().all())

    async def set_auto_delete(
        self,
        message_ids: Sequence[str],
        expires_at: datetime
    ) -> List[str]:
        """Arm (or re-arm) disappearing-message expiry on live messages."""
        if not message_ids:
            return []

        result = await self.db.execute(
            update(Message)
            .where(
                and_(
                    Message.id.in_(list(message_ids)),
                    Message.hard_deleted.is_(False),
                )
            )
            .values(auto_delete_expires_at=expires_at)
            .returning(Message.id)
            .execution_options(synchronize_session=False)
        )
        return list(result.scalars().all())

    async def detach_media(
        self,
        message_ids: Sequence[str],
        placeholder: str
    ) -> List[str]:
        """Drop the media reference and replace content with a placeholder."""
        if not message_ids:
            return []

        result = await self.db.execute(
            update(Message)
            .where(
                and_(
                    Message.id.in_(list(message_ids)),
                    Message.hard_deleted.is_(False),
                    Message.media_ref.is_not(None),
                )
            )
            .values(media_ref=None, content=placeholder)
            .returning(Message.id)
            .execution_options(synchronize_session=False)
        )
        return list(result.scalars().all())

    async def set_media_placeholder(
        self,
        message_ids: Sequence[str],
        placeholder: str
    ) -> List[str]:
        """Replace content of live media messages, keeping ``media_ref`` for release."""
        if not message_ids:
            return []

        result = await self.db.execute(
            update(Message)
            .where(
                and_(
                    Message.id.in_(list(message_ids)),
                    Message.hard_deleted.is_(False),
                    Message.media_ref.is_not(None),
                )
            )
            .values(content=placeholder)
            .returning(Message.id)
            .execution_options(synchronize_session=False)
        )
        return list(result.scalars().all())

    async def schedule_media_release(self, message_ids: Sequence[str], now: datetime) -> None:
        """Queue blob releases for the retention sweep to perform."""
        if not message_ids:
            return

        await self.db.execute(
            update(Message)
            .where(
                and_(
                    Message.id.in_(list(message_ids)),
                    Message.media_ref.is_not(None),
                )
            )
            .values(media_release_pending=True, media_release_next_attempt_at=now)
            .execution_options(synchronize_session=False)
        )

    async def mark_media_released(self, message_id: str, now: datetime) -> None:
        """Record a successful blob release."""
        await self.db.execute(
            update(Message)
            .where(Message.id == message_id)
            .values(
                media_ref=None,
                media_released_at=now,
                media_release_pending=False,
                media_release_next_attempt_at=None,
            )
            .execution_options(synchronize_session=False)
        )

    async def mark_media_release_failed(
        self,
        message_id: str,
        attempts: int,
        next_attempt_at: Optional[datetime]
    ) -> None:
        """
        Record a failed blob release.

        A ``next_attempt_at`` of None means retries are exhausted: the row
        leaves the retry queue but keeps its ``media_ref`` for operators.
        """
        await self.db.execute(
            update(Message)
            .where(Message.id == message_id)
            .values(
                media_release_pending=next_attempt_at is not None,
                media_release_attempts=attempts,
                media_release_next_attempt_at=next_attempt_at,
            )
            .execution_options(synchronize_session=False)
        )

    # ------------------------------------------------------------------
    # Retention queries
    # ------------------------------------------------------------------

    async def find_expired_auto_delete(self, now: datetime, limit: int) -> List[Message]:
        """Messages whose auto-delete expiry passed but are not hard deleted yet."""
        result = await self.db.execute(
            select(Message)
            .where(
                and_(
                    Message.auto_delete_expires_at.is_not(None),
                    Message.auto_delete_expires_at <= now,
                    Message.hard_deleted.is_(False),
                )
            )
            .order_by(Message.auto_delete_expires_at)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def find_pending_media_releases(self, now: datetime, limit: int) -> List[Message]:
        """Hard deleted messages whose blob release is due for a retry."""
        result = await self.db.execute(
            select(Message)
            .where(
                and_(
                    Message.media_release_pending.is_(True),
                    Message.media_ref.is_not(None),
                    or_(
                        Message.media_release_next_attempt_at.is_(None),
                        Message.media_release_next_attempt_at <= now,
                    ),
                )
            )
            .order_by(Message.media_release_next_attempt_at)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def find_orphaned(self, limit: int) -> List[Message]:
        """Messages whose conversation row no longer exists."""
        result = await self.db.execute(
            select(Message)
            .where(Message.conversation_id.notin_(select(Conversation.id)))
            .limit(limit)
        )
        return list(result.scalars().all())

    async def find_soft_deleted_before(self, cutoff: datetime, limit: int) -> List[Message]:
        """Soft deleted messages tombstoned before ``cutoff``."""
        result = await self.db.execute(
            select(Message)
            .where(
                and_(
                    Message.soft_deleted.is_(True),
                    Message.soft_deleted_at <= cutoff,
                )
            )
            .limit(limit)
        )
        return list(result.scalars().all())

    async def find_purgeable_hard_deleted(self, limit: int) -> List[str]:
        """Hard deleted tombstones with no blob left to release."""
        result = await self.db.execute(
            select(Message.id)
            .where(
                and_(
                    Message.hard_deleted.is_(True),
                    Message.media_ref.is_(None),
                    Message.media_release_pending.is_(False),
                )
            )
            .limit(limit)
        )
        return list(result.scalars().all())

    async def purge(self, message_ids: Iterable[str]) -> int:
        """
        Physically remove messages and their overlay rows.

        Args:
            message_ids: Messages to remove

        Returns:
            Number of message rows deleted
        """
        ids = list(message_ids)
        if not ids:
            return 0

        await self.db.execute(
            delete(UserDeletedMessage).where(UserDeletedMessage.message_id.in_(ids))
        )
        await self.db.execute(
            delete(MessageStatus).where(MessageStatus.message_id.in_(ids))
        )
        result = await self.db.execute(
            delete(Message)
            .where(Message.id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return result.rowcount or 0

    async def _reload(self, message_ids: Sequence[str]) -> List[Message]:
        if not message_ids:
            return []

        result = await self.db.execute(
            select(Message)
            .where(Message.id.in_(list(message_ids)))
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
