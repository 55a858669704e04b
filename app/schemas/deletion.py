"""
Pydantic schemas for deletion requests and responses.
Request bodies accept camelCase keys (snake_case also works).
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ConfigDict


# ============================================================================
# Request Schemas
# ============================================================================

class DeletionRequest(BaseModel):
    """Common body: which messages, in which conversation."""

    conversation_id: str = Field(..., alias="conversationId", min_length=1, description="Conversation ID")
    message_ids: List[str] = Field(..., alias="messageIds", description="Message IDs")

    model_config = ConfigDict(populate_by_name=True)


class DeleteForEveryoneRequest(DeletionRequest):
    """Delete for everyone, optionally with a custom window."""

    time_window_override: Optional[int] = Field(
        None,
        alias="timeWindowOverride",
        gt=0,
        description="Window in seconds (capped by server maximum)"
    )


class HardDeleteRequest(DeletionRequest):
    """Hard delete, optionally releasing attached media."""

    delete_media: bool = Field(True, alias="deleteMedia")


class AutoDeleteRequest(DeletionRequest):
    """Arm disappearing-message expiry."""

    duration_seconds: Union[int, str] = Field(
        ...,
        alias="durationSeconds",
        description="Seconds, or a preset: 24h, 7d, 90d"
    )

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "conversationId": "conv-1",
                "messageIds": ["msg-1"],
                "durationSeconds": "24h"
            }
        }
    )


class BulkDeleteOptions(BaseModel):
    """Options for bulk deletion."""

    filter: Literal["all", "media"] = "all"
    delete_media: bool = Field(True, alias="deleteMedia")

    model_config = ConfigDict(populate_by_name=True)


class BulkDeleteRequest(DeletionRequest):
    """Bulk deletion in one mode; each message is authorized on its own."""

    mode: str = Field(..., description="forMe, forEveryone, hard or soft")
    options: BulkDeleteOptions = Field(default_factory=BulkDeleteOptions)


class MediaDeleteRequest(DeletionRequest):
    """Media deletion."""

    delete_message: bool = Field(False, alias="deleteMessage")
    delete_local_only: bool = Field(False, alias="deleteLocalOnly")


class GraceDeleteRequest(DeletionRequest):
    """Delete for everyone and queue a replay for named recipients."""

    recipient_ids: List[str] = Field(..., alias="recipientIds", min_length=1)


class ServerCleanupRequest(BaseModel):
    """Operator-triggered cleanup options."""

    delete_orphaned: bool = Field(True, alias="deleteOrphaned")
    delete_expired_auto_delete: bool = Field(True, alias="deleteExpiredAutoDelete")
    delete_old_soft_deleted: bool = Field(True, alias="deleteOldSoftDeleted")
    soft_delete_retention_days: Optional[int] = Field(None, alias="softDeleteRetentionDays", gt=0)
    purge_hard_deleted: bool = Field(True, alias="purgeHardDeleted")

    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Response Schemas
# ============================================================================

class SkippedMessage(BaseModel):
    """A message a bulk-style request did not apply to."""

    message_id: str = Field(serialization_alias="messageId")
    code: str
    reason: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class DeletionResponse(BaseModel):
    """Result of a deletion operation."""

    success: bool = True
    deleted_count: int = Field(serialization_alias="deletedCount")
    message_ids: List[str] = Field(default_factory=list, serialization_alias="messageIds")
    skipped: List[SkippedMessage] = Field(default_factory=list)
    mode: Optional[str] = None
    released_media_count: Optional[int] = Field(None, serialization_alias="releasedMediaCount")
    media_pending_count: Optional[int] = Field(None, serialization_alias="mediaPendingCount")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "success": True,
                "deletedCount": 2,
                "messageIds": ["msg-1", "msg-2"],
                "skipped": [{"messageId": "msg-3", "code": "ACCESS_DENIED", "reason": "..."}],
                "mode": "forEveryone"
            }
        }
    )


class AutoDeleteResponse(BaseModel):
    """Result of arming auto-delete."""

    success: bool = True
    affected_count: int = Field(serialization_alias="affectedCount")
    message_ids: List[str] = Field(default_factory=list, serialization_alias="messageIds")
    expires_at: datetime = Field(serialization_alias="expiresAt")
    duration_seconds: int = Field(serialization_alias="durationSeconds")

    model_config = ConfigDict(populate_by_name=True)


class GraceDeleteResponse(BaseModel):
    """Result of a grace delete."""

    success: bool = True
    queued: bool
    deleted_count: int = Field(serialization_alias="deletedCount")
    message_ids: List[str] = Field(default_factory=list, serialization_alias="messageIds")
    recipient_ids: List[str] = Field(default_factory=list, serialization_alias="recipientIds")

    model_config = ConfigDict(populate_by_name=True)


class GraceDrainResponse(BaseModel):
    """Result of replaying a recipient's queue."""

    applied_count: int = Field(serialization_alias="appliedCount")

    model_config = ConfigDict(populate_by_name=True)


class ServerCleanupResponse(BaseModel):
    """Result of operator cleanup."""

    success: bool = True
    purged_count: int = Field(serialization_alias="purgedCount")
    results: Dict[str, int]
    errors: List[Dict[str, Any]] = Field(default_factory=list)

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "success": True,
                "purgedCount": 12,
                "results": {
                    "orphaned": 0,
                    "expiredAutoDelete": 4,
                    "oldSoftDeleted": 3,
                    "hardDeletedPurged": 5
                },
                "errors": []
            }
        }
    )
