"""
Message API routes.
Provides endpoints for listing visible messages and for every deletion operation.
"""
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.config import settings
from app.core.database import get_db
from app.dependencies import get_admin_user, get_current_user
from app.schemas.deletion import (
    AutoDeleteRequest,
    AutoDeleteResponse,
    BulkDeleteRequest,
    DeleteForEveryoneRequest,
    DeletionRequest,
    DeletionResponse,
    GraceDeleteRequest,
    GraceDeleteResponse,
    GraceDrainResponse,
    HardDeleteRequest,
    MediaDeleteRequest,
    ServerCleanupRequest,
    ServerCleanupResponse,
)
from app.schemas.message import MessageListResponse
from app.services.grace_queue_service import GraceQueueService
from app.services.message_deletion_service import MessageDeletionService
from app.services.message_service import MAX_PAGE_SIZE, MessageService
from app.services.retention_service import RetentionService

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)

DELETION_RATE = f"{settings.rate_limit_deletions_per_minute}/minute"


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=MessageListResponse,
    summary="List visible messages",
    description="Get one page of the messages the caller can see, in chronological order."
)
async def list_visible_messages(
    conversation_id: str,
    page: int = Query(1, ge=1, description="1-based page number; page 1 holds the newest messages"),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE, description="Page size"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    List messages visible to the caller.

    Messages the caller deleted for themselves, messages deleted for
    everyone by someone else, hard or soft deleted messages and expired
    disappearing messages are excluded. ``totalVisibleCount`` uses the
    same rules.
    """
    service = MessageService(db)
    return await service.list_visible_messages(
        conversation_id=conversation_id,
        viewer_id=current_user["id"],
        page=page,
        limit=limit,
    )


@router.post(
    "/deletions/for-me",
    response_model=DeletionResponse,
    summary="Delete messages for me"
)
@limiter.limit(DELETION_RATE)
async def delete_for_me(
    request: Request,
    body: DeletionRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Hide messages from the caller's own view. Other participants are unaffected."""
    service = MessageDeletionService(db)
    return await service.delete_for_me(body.conversation_id, current_user["id"], body.message_ids)


@router.post(
    "/deletions/for-everyone",
    response_model=DeletionResponse,
    summary="Delete messages for everyone"
)
@limiter.limit(DELETION_RATE)
async def delete_for_everyone(
    request: Request,
    body: DeleteForEveryoneRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete messages for every participant.

    - Senders may do this within the delete-for-everyone window
      (``timeWindowOverride`` adjusts it, capped by the server maximum)
    - Group admins may do this for any message at any time
    """
    service = MessageDeletionService(db)
    return await service.delete_for_everyone(
        body.conversation_id,
        current_user["id"],
        body.message_ids,
        time_window_override=body.time_window_override,
    )


@router.post(
    "/deletions/hard",
    response_model=DeletionResponse,
    summary="Hard delete messages"
)
@limiter.limit(DELETION_RATE)
async def hard_delete(
    request: Request,
    body: HardDeleteRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Irreversibly remove messages, releasing attached media when ``deleteMedia`` is true."""
    service = MessageDeletionService(db)
    return await service.hard_delete(
        body.conversation_id,
        current_user["id"],
        body.message_ids,
        delete_media=body.delete_media,
    )


@router.post(
    "/deletions/soft",
    response_model=DeletionResponse,
    summary="Soft delete messages"
)
@limiter.limit(DELETION_RATE)
async def soft_delete(
    request: Request,
    body: DeletionRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Suppress messages from every view while keeping the record for audit."""
    service = MessageDeletionService(db)
    return await service.soft_delete(body.conversation_id, current_user["id"], body.message_ids)


@router.post(
    "/deletions/auto",
    response_model=AutoDeleteResponse,
    summary="Set auto-delete on messages"
)
@limiter.limit(DELETION_RATE)
async def set_auto_delete(
    request: Request,
    body: AutoDeleteRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Arm disappearing-message expiry (seconds, or ``24h`` / ``7d`` / ``90d``)."""
    service = MessageDeletionService(db)
    return await service.set_auto_delete(
        body.conversation_id,
        current_user["id"],
        body.message_ids,
        body.duration_seconds,
    )


@router.post(
    "/deletions/admin",
    response_model=DeletionResponse,
    summary="Admin delete messages (group chats)"
)
@limiter.limit(DELETION_RATE)
async def admin_delete(
    request: Request,
    body: DeletionRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Delete any message for everyone as a group admin, regardless of the window."""
    service = MessageDeletionService(db)
    return await service.admin_delete(body.conversation_id, current_user["id"], body.message_ids)


@router.post(
    "/deletions/bulk",
    response_model=DeletionResponse,
    summary="Bulk delete messages"
)
@limiter.limit(DELETION_RATE)
async def bulk_delete(
    request: Request,
    body: BulkDeleteRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete many messages in one mode.

    Each message is checked on its own; the ones the caller may not delete
    are listed in ``skipped`` instead of failing the request.
    """
    service = MessageDeletionService(db)
    return await service.bulk_delete(
        body.conversation_id,
        current_user["id"],
        body.message_ids,
        body.mode,
        media_only=body.options.filter == "media",
        delete_media=body.options.delete_media,
    )


@router.post(
    "/deletions/media",
    response_model=DeletionResponse,
    summary="Delete message media"
)
@limiter.limit(DELETION_RATE)
async def media_delete(
    request: Request,
    body: MediaDeleteRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Release attached media; optionally delete the message or only the local reference."""
    service = MessageDeletionService(db)
    return await service.media_delete(
        body.conversation_id,
        current_user["id"],
        body.message_ids,
        delete_message=body.delete_message,
        delete_local_only=body.delete_local_only,
    )


@router.post(
    "/deletions/unsent",
    response_model=DeletionResponse,
    summary="Delete unsent messages"
)
@limiter.limit(DELETION_RATE)
async def unsent_delete(
    request: Request,
    body: DeletionRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Retract messages nobody has read yet."""
    service = MessageDeletionService(db)
    return await service.unsent_delete(body.conversation_id, current_user["id"], body.message_ids)


@router.post(
    "/deletions/grace",
    response_model=GraceDeleteResponse,
    summary="Grace delete messages"
)
@limiter.limit(DELETION_RATE)
async def grace_delete(
    request: Request,
    body: GraceDeleteRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Delete for everyone and queue a replay for the named recipients."""
    service = MessageDeletionService(db)
    return await service.grace_delete(
        body.conversation_id,
        current_user["id"],
        body.message_ids,
        body.recipient_ids,
    )


@router.post(
    "/deletions/grace/drain",
    response_model=GraceDrainResponse,
    summary="Drain the caller's grace queue"
)
async def drain_grace_queue(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Replay deletions queued for the caller while they were offline."""
    service = GraceQueueService(db)
    return await service.drain(current_user["id"])


@router.post(
    "/deletions/server-cleanup",
    response_model=ServerCleanupResponse,
    status_code=status.HTTP_200_OK,
    summary="Server cleanup (operators only)"
)
async def server_cleanup(
    body: ServerCleanupRequest,
    admin: dict = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Purge orphaned messages, expire auto-delete messages, purge old soft
    deleted messages and hard deleted tombstones.
    """
    service = RetentionService(db)
    return await service.server_cleanup(
        delete_orphaned=body.delete_orphaned,
        delete_expired_auto_delete=body.delete_expired_auto_delete,
        delete_old_soft_deleted=body.delete_old_soft_deleted,
        soft_delete_retention_days=body.soft_delete_retention_days,
        purge_hard_deleted=body.purge_hard_deleted,
    )
