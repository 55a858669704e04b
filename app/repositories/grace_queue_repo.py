"""
Grace delete queue repository.
Stores and drains deferred deletions for recipients who were offline.
"""
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.grace_delete import GraceDeleteEntry, DeletionTransition
from app.repositories.base import BaseRepository


class GraceQueueRepository(BaseRepository[GraceDeleteEntry]):
    """Repository for grace delete queue entries."""

    def __init__(self, db: AsyncSession):
        super().__init__(GraceDeleteEntry, db)

    async def enqueue(
        self,
        conversation_id: str,
        recipient_ids: Sequence[str],
        message_ids: Sequence[str],
        transition: DeletionTransition,
        operation: str,
        actor_id: Optional[str],
        now: datetime
    ) -> List[GraceDeleteEntry]:
        """
        Add one entry per recipient.

        Args:
            conversation_id: Conversation the messages belong to
            recipient_ids: Offline participants to replay for
            message_ids: Affected messages
            transition: Resolved transition to replay
            operation: Originating operation name
            actor_id: Actor of the deletion (None for scheduler expiries)
            now: Enqueue timestamp

        Returns:
            Created entries
        """
        entries = [
            GraceDeleteEntry(
                conversation_id=conversation_id,
                recipient_id=recipient_id,
                message_ids=list(message_ids),
                transition=transition,
                operation=operation,
                actor_id=actor_id,
                enqueued_at=now,
            )
            for recipient_id in dict.fromkeys(recipient_ids)
        ]
        if not entries or not message_ids:
            return []

        self.db.add_all(entries)
        await self.db.flush()
        return entries

    async def get_for_recipient(self, recipient_id: str) -> List[GraceDeleteEntry]:
        """Get a recipient's pending entries in enqueue order."""
        result = await self.db.execute(
            select(GraceDeleteEntry)
            .where(GraceDeleteEntry.recipient_id == recipient_id)
            .order_by(GraceDeleteEntry.enqueued_at, GraceDeleteEntry.id)
        )
        return list(result.scalars().all())

    async def delete_entries(self, entry_ids: Sequence[int]) -> int:
        """Remove drained entries; returns number removed."""
        if not entry_ids:
            return 0

        result = await self.db.execute(
            delete(GraceDeleteEntry)
            .where(GraceDeleteEntry.id.in_(list(entry_ids)))
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return result.rowcount or 0
