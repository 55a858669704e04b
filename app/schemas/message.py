"""
Pydantic schemas for message responses.
Projects stored messages into what a given viewer is allowed to see.
"""
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field, ConfigDict

from app.models.message import (
    DELETED_PLACEHOLDER,
    Message,
    MessageDeliveryStatus,
    MessageStatusType,
    MessageType,
)
from app.utils.datetime_utils import ensure_utc


class ReadReceipt(BaseModel):
    """One entry of a message's readBy set."""

    user_id: str = Field(serialization_alias="userId")
    read_at: datetime = Field(serialization_alias="readAt")

    model_config = ConfigDict(populate_by_name=True)


class MessageProjection(BaseModel):
    """
    A message as seen by one viewer.

    Other users' delete-for-me markers are never exposed. A message the
    viewer sent and then deleted for everyone is shown as a placeholder.
    """

    id: str
    conversation_id: str = Field(serialization_alias="conversationId")
    sender_id: str = Field(serialization_alias="senderId")
    content: Optional[str] = None
    type: MessageType
    media_ref: Optional[str] = Field(None, serialization_alias="mediaRef")
    status: MessageDeliveryStatus
    created_at: datetime = Field(serialization_alias="createdAt")
    is_own: bool = Field(serialization_alias="isOwn")
    is_deleted_for_everyone: bool = Field(False, serialization_alias="isDeletedForEveryone")
    deleted_for_everyone_at: Optional[datetime] = Field(None, serialization_alias="deletedForEveryoneAt")
    auto_delete_expires_at: Optional[datetime] = Field(None, serialization_alias="autoDeleteExpiresAt")
    read_by: List[ReadReceipt] = Field(default_factory=list, serialization_alias="readBy")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "msg-1",
                "conversationId": "conv-1",
                "senderId": "user-a",
                "content": "Hello",
                "type": "TEXT",
                "mediaRef": None,
                "status": "read",
                "createdAt": "2025-10-10T10:00:00Z",
                "isOwn": True,
                "isDeletedForEveryone": False,
                "deletedForEveryoneAt": None,
                "autoDeleteExpiresAt": None,
                "readBy": [{"userId": "user-b", "readAt": "2025-10-10T10:01:00Z"}]
            }
        }
    )

    @classmethod
    def from_message(cls, message: Message, viewer_id: str) -> "MessageProjection":
        """Build the viewer-specific projection of a stored message."""
        deleted_for_everyone = bool(message.deleted_for_everyone)
        # A pending or failed release must not keep handing out the blob
        hide_media = deleted_for_everyone or message.media_withdrawn

        return cls(
            id=message.id,
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            content=DELETED_PLACEHOLDER if deleted_for_everyone else message.content,
            type=message.type,
            media_ref=None if hide_media else message.media_ref,
            status=message.status,
            created_at=ensure_utc(message.created_at),
            is_own=message.sender_id == viewer_id,
            is_deleted_for_everyone=deleted_for_everyone,
            deleted_for_everyone_at=ensure_utc(message.deleted_for_everyone_at),
            auto_delete_expires_at=ensure_utc(message.auto_delete_expires_at),
            read_by=[
                ReadReceipt(user_id=status.user_id, read_at=ensure_utc(status.timestamp))
                for status in message.statuses
                if status.status == MessageStatusType.READ
            ],
        )


class MessageListResponse(BaseModel):
    """Schema for a page of visible messages (chronological order)."""

    messages: List[MessageProjection]
    total_visible_count: int = Field(serialization_alias="totalVisibleCount")
    page: int
    limit: int
    total_pages: int = Field(serialization_alias="totalPages")
    has_more: bool = Field(serialization_alias="hasMore")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "messages": [],
                "totalVisibleCount": 120,
                "page": 1,
                "limit": 50,
                "totalPages": 3,
                "hasMore": True
            }
        }
    )
