"""
Message service containing the visibility projection.
Lists what one participant can see in a conversation.
"""
import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import InvalidDeletionRequest, StoreUnavailable
from app.repositories.message_repo import MessageRepository
from app.schemas.message import MessageProjection
from app.services.conversation_service import ConversationService
from app.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class MessageService:
    """Service for reading messages through the per-viewer visibility filter."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utc_now):
        """
        Initialize message service.

        Args:
            db: Database session
            clock: Source of the current time
        """
        self.db = db
        self.clock = clock
        self.message_repo = MessageRepository(db)
        self.conversation_service = ConversationService(db, clock=clock)

    async def list_visible_messages(
        self,
        conversation_id: str,
        viewer_id: str,
        page: int = 1,
        limit: int = 50
    ) -> Dict[str, Any]:
        """
        Get one page of messages visible to a viewer.

        The page is fetched newest-first and returned in chronological
        order. ``total_visible_count`` is computed with the same predicate
        and the same reference time as the page, so two viewers of one
        conversation can legitimately get different totals.

        Args:
            conversation_id: Conversation ID
            viewer_id: Requesting participant
            page: 1-based page number (page 1 holds the newest messages)
            limit: Page size

        Returns:
            Dict with messages, total_visible_count, page, limit, total_pages, has_more

        Raises:
            NotFound: Conversation does not exist
            AccessDenied: Viewer is not a participant
            InvalidDeletionRequest: Page or limit out of range
        """
        if page < 1:
            raise InvalidDeletionRequest("page must be >= 1")
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise InvalidDeletionRequest(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        await self.conversation_service.ensure_participant(conversation_id, viewer_id)

        now = self.clock()
        sender_sees = settings.sender_sees_deleted_for_everyone

        try:
            total = await self.message_repo.count_visible(
                conversation_id, viewer_id, now, sender_sees
            )
            messages = await self.message_repo.list_visible(
                conversation_id,
                viewer_id,
                now,
                limit=limit,
                offset=(page - 1) * limit,
                sender_sees_deleted_for_everyone=sender_sees,
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to list messages for conversation {conversation_id}: {e}")
            raise StoreUnavailable("Could not load messages") from e

        # Newest-first from the store, chronological for delivery
        messages.reverse()
        total_pages = math.ceil(total / limit) if total else 0

        return {
            "messages": [MessageProjection.from_message(m, viewer_id) for m in messages],
            "total_visible_count": total,
            "page": page,
            "limit": limit,
            "total_pages": total_pages,
            "has_more": page < total_pages,
        }
