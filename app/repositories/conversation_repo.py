"""
Conversation repository for database operations.
Handles conversations, members, and the denormalized ledger fields.
"""
from typing import Optional, List

from sqlalchemy import select, func, and_, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.conversation import Conversation, ConversationMember
from app.models.message import Message
from app.repositories.base import BaseRepository


class ConversationRepository(BaseRepository[Conversation]):
    """Repository for conversation database operations."""

    def __init__(self, db: AsyncSession):
        super().__init__(Conversation, db)

    async def set_last_message(
        self,
        conversation_id: str,
        message: Optional[Message]
    ) -> None:
        """
        Overwrite the denormalized last-message fields.

        Args:
            conversation_id: Conversation ID
            message: New last message, or None when nothing is visible
        """
        await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(
                last_message_id=message.id if message else None,
                last_message_content=message.content if message else None,
                last_message_time=message.created_at if message else None,
            )
            .execution_options(synchronize_session=False)
        )


class ConversationMemberRepository:
    """Repository for conversation member operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_member(
        self, conversation_id: str, user_id: str
    ) -> Optional[ConversationMember]:
        """
        Get conversation member record.

        Args:
            conversation_id: Conversation ID
            user_id: User ID

        Returns:
            ConversationMember or None
        """
        result = await self.db.execute(
            select(ConversationMember)
            .where(
                and_(
                    ConversationMember.conversation_id == conversation_id,
                    ConversationMember.user_id == user_id
                )
            )
        )
        return result.scalar_one_or_none()

    async def is_member(self, conversation_id: str, user_id: str) -> bool:
        """
        Check if user is a member of conversation.

        Args:
            conversation_id: Conversation ID
            user_id: User ID

        Returns:
            True if member, False otherwise
        """
        result = await self.db.execute(
            select(func.count())
            .select_from(ConversationMember)
            .where(
                and_(
                    ConversationMember.conversation_id == conversation_id,
                    ConversationMember.user_id == user_id
                )
            )
        )
        return result.scalar() > 0

    async def get_member_ids(self, conversation_id: str) -> List[str]:
        """Get ids of all participants of a conversation."""
        result = await self.db.execute(
            select(ConversationMember.user_id)
            .where(ConversationMember.conversation_id == conversation_id)
        )
        return list(result.scalars().all())
