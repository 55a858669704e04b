"""
Retention service.

Eventual-consistency cleanup behind the read-time visibility rules: expired
disappearing messages are hard deleted, failed blob releases are retried,
and operators can purge tombstones on demand.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import MediaReleaseFailure, StoreUnavailable
from app.models.message import Message
from app.repositories.message_repo import MessageRepository
from app.services.message_deletion_service import MessageDeletionService, media_jobs
from app.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class RetentionService:
    """Service for the retention sweep and operator cleanup."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
        media_store=None,
        notifier=None
    ):
        self.db = db
        self.clock = clock
        self.message_repo = MessageRepository(db)
        self.deletion_service = MessageDeletionService(
            db,
            clock=clock,
            media_store=media_store,
            notifier=notifier,
        )
        self.media_store = self.deletion_service.media_store

    async def expire_auto_deleted(self, errors: List[Dict[str, Any]]) -> int:
        """
        Hard delete messages past their auto-delete expiry.

        Each message is handled in its own transaction; a failure is
        appended to ``errors`` and the batch continues.

        Returns:
            Number of messages that transitioned
        """
        now = self.clock()
        expired = await self.message_repo.find_expired_auto_delete(now, settings.retention_batch_size)
        targets = [(message.id, message.conversation_id) for message in expired]

        count = 0
        for message_id, conversation_id in targets:
            try:
                changed = await self.deletion_service.expire_messages(conversation_id, [message_id])
                count += len(changed)
            except Exception as e:
                await self.db.rollback()
                logger.error(f"Auto-delete expiry failed for message {message_id}: {e}", exc_info=True)
                errors.append({"messageId": message_id, "step": "expiredAutoDelete", "error": str(e)})

        return count

    async def retry_media_releases(self, errors: List[Dict[str, Any]]) -> Dict[str, int]:
        """
        Retry blob releases that are due.

        Returns:
            Dict with ``released`` and ``failed`` counts
        """
        now = self.clock()
        pending = await self.message_repo.find_pending_media_releases(now, settings.retention_batch_size)
        # Plain tuples: a rollback below expires the loaded rows
        jobs = media_jobs(pending)

        released = failed = 0
        for job in jobs:
            message_id = job.message_id
            try:
                if await self.deletion_service.release_media_job(job, now):
                    released += 1
                else:
                    failed += 1
            except Exception as e:
                await self.db.rollback()
                failed += 1
                logger.error(f"Media release retry failed for message {message_id}: {e}", exc_info=True)
                errors.append({"messageId": message_id, "step": "mediaRelease", "error": str(e)})

        return {"released": released, "failed": failed}

    async def run_sweep(self) -> Dict[str, Any]:
        """
        Run one retention sweep.

        Returns:
            Report with expired, media_released, media_failed and errors
        """
        errors: List[Dict[str, Any]] = []

        expired = await self.expire_auto_deleted(errors)
        media = await self.retry_media_releases(errors)

        report = {
            "expired": expired,
            "media_released": media["released"],
            "media_failed": media["failed"],
            "errors": errors,
        }
        if expired or media["released"] or media["failed"] or errors:
            logger.info(
                f"Retention sweep: {expired} expired, {media['released']} media released, "
                f"{media['failed']} media failed, {len(errors)} errors"
            )
        return report

    async def _purge_with_media(
        self,
        messages: List[Message],
        step: str,
        errors: List[Dict[str, Any]]
    ) -> int:
        """Release any remaining blob, then purge. Messages whose blob cannot be released are kept."""
        purgeable = []
        for message in messages:
            if message.media_ref:
                try:
                    await self.media_store.release_media(message.media_ref)
                except Exception as e:
                    reason = e.reason if isinstance(e, MediaReleaseFailure) else repr(e)
                    logger.warning(f"Keeping message {message.id}: media release failed ({reason})")
                    errors.append({"messageId": message.id, "step": step, "error": reason})
                    continue
            purgeable.append(message.id)

        count = await self.message_repo.purge(purgeable)
        await self.db.commit()
        return count

    async def server_cleanup(
        self,
        delete_orphaned: bool = True,
        delete_expired_auto_delete: bool = True,
        delete_old_soft_deleted: bool = True,
        soft_delete_retention_days: Optional[int] = None,
        purge_hard_deleted: bool = True
    ) -> Dict[str, Any]:
        """
        Operator-triggered cleanup.

        Args:
            delete_orphaned: Purge messages whose conversation is gone
            delete_expired_auto_delete: Run the auto-delete expiry step
            delete_old_soft_deleted: Purge soft deleted messages older than the threshold
            soft_delete_retention_days: Threshold in days (defaults to settings)
            purge_hard_deleted: Remove hard deleted tombstones with no blob left

        Returns:
            Dict with purged_count, per-step results and accumulated errors
        """
        batch_size = settings.retention_batch_size
        retention_days = soft_delete_retention_days or settings.soft_delete_retention_days
        errors: List[Dict[str, Any]] = []
        results = {
            "orphaned": 0,
            "expiredAutoDelete": 0,
            "oldSoftDeleted": 0,
            "hardDeletedPurged": 0,
        }

        try:
            if delete_orphaned:
                while True:
                    batch = await self.message_repo.find_orphaned(batch_size)
                    purged = await self._purge_with_media(batch, "orphaned", errors)
                    results["orphaned"] += purged
                    if len(batch) < batch_size or purged < len(batch):
                        break

            if delete_expired_auto_delete:
                results["expiredAutoDelete"] = await self.expire_auto_deleted(errors)

            if delete_old_soft_deleted:
                cutoff = self.clock() - timedelta(days=retention_days)
                while True:
                    batch = await self.message_repo.find_soft_deleted_before(cutoff, batch_size)
                    purged = await self._purge_with_media(batch, "oldSoftDeleted", errors)
                    results["oldSoftDeleted"] += purged
                    if len(batch) < batch_size or purged < len(batch):
                        break

            if purge_hard_deleted:
                while True:
                    ids = await self.message_repo.find_purgeable_hard_deleted(batch_size)
                    purged = await self.message_repo.purge(ids)
                    await self.db.commit()
                    results["hardDeletedPurged"] += purged
                    if len(ids) < batch_size or not purged:
                        break
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Server cleanup failed: {e}", exc_info=True)
            raise StoreUnavailable("Server cleanup could not complete; retry the request") from e

        purged_count = sum(results.values())
        logger.info(f"Server cleanup purged {purged_count} messages: {results}")

        return {"purged_count": purged_count, "results": results, "errors": errors}
