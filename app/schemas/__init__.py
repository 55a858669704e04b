"""
Pydantic schema exports.
Provides request/response models for API endpoints.
"""
from app.schemas.message import (
    ReadReceipt,
    MessageProjection,
    MessageListResponse,
)
from app.schemas.deletion import (
    DeletionRequest,
    DeleteForEveryoneRequest,
    HardDeleteRequest,
    AutoDeleteRequest,
    BulkDeleteOptions,
    BulkDeleteRequest,
    MediaDeleteRequest,
    GraceDeleteRequest,
    ServerCleanupRequest,
    SkippedMessage,
    DeletionResponse,
    AutoDeleteResponse,
    GraceDeleteResponse,
    GraceDrainResponse,
    ServerCleanupResponse,
)
from app.schemas.conversation import (
    ConversationSummaryResponse,
    ClearConversationResponse,
)

__all__ = [
    "ReadReceipt",
    "MessageProjection",
    "MessageListResponse",
    "DeletionRequest",
    "DeleteForEveryoneRequest",
    "HardDeleteRequest",
    "AutoDeleteRequest",
    "BulkDeleteOptions",
    "BulkDeleteRequest",
    "MediaDeleteRequest",
    "GraceDeleteRequest",
    "ServerCleanupRequest",
    "SkippedMessage",
    "DeletionResponse",
    "AutoDeleteResponse",
    "GraceDeleteResponse",
    "GraceDrainResponse",
    "ServerCleanupResponse",
    "ConversationSummaryResponse",
    "ClearConversationResponse",
]
