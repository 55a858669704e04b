"""
Conversation API routes.
Provides the viewer-specific conversation summary and clear-chat.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.dependencies import get_current_user
from app.schemas.conversation import ClearConversationResponse, ConversationSummaryResponse
from app.services.conversation_service import ConversationService
from app.api.v1.messages import DELETION_RATE, limiter

router = APIRouter()


@router.get(
    "/{conversation_id}/summary",
    response_model=ConversationSummaryResponse,
    summary="Get conversation summary"
)
async def get_conversation_summary(
    conversation_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Get the caller's view of a conversation.

    - **lastMessage**: newest message the caller can see
    - **unreadCount**: unread messages the caller can see
    """
    service = ConversationService(db)
    return await service.get_conversation_summary(conversation_id, current_user["id"])


@router.delete(
    "/{conversation_id}/messages",
    response_model=ClearConversationResponse,
    summary="Clear conversation for me"
)
@limiter.limit(DELETION_RATE)
async def clear_conversation(
    request: Request,
    conversation_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Delete every visible message for the caller only."""
    service = ConversationService(db)
    return await service.clear_conversation(conversation_id, current_user["id"])
