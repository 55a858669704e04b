"""
Pydantic schemas for conversation ledger responses.
"""
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict

from app.schemas.message import MessageProjection


class ConversationSummaryResponse(BaseModel):
    """Viewer-specific summary: last visible message and unread count."""

    conversation_id: str = Field(serialization_alias="conversationId")
    is_group_chat: bool = Field(serialization_alias="isGroupChat")
    participant_ids: List[str] = Field(serialization_alias="participantIds")
    last_message: Optional[MessageProjection] = Field(None, serialization_alias="lastMessage")
    unread_count: int = Field(serialization_alias="unreadCount")

    model_config = ConfigDict(populate_by_name=True)


class ClearConversationResponse(BaseModel):
    """Result of clearing a conversation for the caller."""

    success: bool = True
    deleted_count: int = Field(serialization_alias="deletedCount")

    model_config = ConfigDict(populate_by_name=True)
