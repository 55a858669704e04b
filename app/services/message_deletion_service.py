"""
Message deletion service.

Dispatches every deletion operation through the policy engine, applies the
resulting transitions atomically, keeps the conversation ledger in step,
queues replays for offline participants and publishes fan-out events once
the transaction has committed.
"""
import logging
from collections import namedtuple
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.cache import invalidate_unread_for_users
from app.core.exceptions import (
    AccessDenied,
    InvalidDeletionRequest,
    MediaReleaseFailure,
    NotFound,
    StoreUnavailable,
)
from app.core.websocket import connection_manager
from app.models.grace_delete import DeletionTransition
from app.models.message import MEDIA_DELETED_PLACEHOLDER, Message
from app.repositories.grace_queue_repo import GraceQueueRepository
from app.repositories.conversation_repo import ConversationMemberRepository
from app.repositories.message_repo import MessageRepository
from app.services.conversation_service import ConversationService
from app.services.deletion_policy import (
    BULK_MODES,
    ActorContext,
    Decision,
    DeletionOperation,
    evaluate,
    resolve_auto_delete_duration,
    resolve_window,
)
from app.services.oss_service import oss_service
from app.utils.datetime_utils import to_iso_utc, utc_now

logger = logging.getLogger(__name__)


# Blob release captured before commit so it can run on expired instances
MediaJob = namedtuple("MediaJob", ["message_id", "media_ref", "attempts"])


@dataclass
class DeletionContext:
    """Conversation-level facts resolved once per request."""
    conversation_id: str
    actor: ActorContext
    participant_ids: List[str]

    @property
    def actor_id(self) -> str:
        return self.actor.actor_id


def media_jobs(messages: Iterable[Message]) -> List[MediaJob]:
    return [
        MediaJob(m.id, m.media_ref, m.media_release_attempts or 0)
        for m in messages
        if m.media_ref
    ]


def ordered(requested: Sequence[str], changed: Iterable[str]) -> List[str]:
    """Order changed ids the way the caller listed them."""
    changed_set = set(changed)
    return [message_id for message_id in requested if message_id in changed_set]


class MessageDeletionService:
    """Service for message deletion operations."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
        media_store=None,
        notifier=None
    ):
        """
        Initialize message deletion service.

        Args:
            db: Database session
            clock: Source of the current time
            media_store: Blob store exposing ``release_media`` (defaults to OSS)
            notifier: Real-time fan-out (defaults to the Socket.IO manager)
        """
        self.db = db
        self.clock = clock
        self.media_store = media_store or oss_service
        self.ws_manager = notifier or connection_manager
        self.message_repo = MessageRepository(db)
        self.member_repo = ConversationMemberRepository(db)
        self.grace_repo = GraceQueueRepository(db)
        self.conversation_service = ConversationService(db, clock=clock, notifier=self.ws_manager)

    # ------------------------------------------------------------------
    # Shared plumbing
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _transaction(self, operation: str):
        """Commit on success; map store failures to ``StoreUnavailable``."""
        try:
            yield
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"{operation} failed in the store: {e}", exc_info=True)
            raise StoreUnavailable(f"Could not complete {operation}; retry the request") from e

    @staticmethod
    def _normalize_ids(message_ids: Sequence[str]) -> List[str]:
        ids = list(dict.fromkeys(message_id for message_id in (message_ids or []) if message_id))
        if not ids:
            raise InvalidDeletionRequest("messageIds must contain at least one id")
        if len(ids) > settings.bulk_delete_max_messages:
            raise InvalidDeletionRequest(
                f"At most {settings.bulk_delete_max_messages} messages per request"
            )
        return ids

    async def _load_context(self, conversation_id: str, actor_id: str) -> DeletionContext:
        conversation, member = await self.conversation_service.ensure_participant(
            conversation_id, actor_id
        )
        return DeletionContext(
            conversation_id=conversation_id,
            actor=ConversationService.actor_context(conversation, member),
            participant_ids=await self.member_repo.get_member_ids(conversation_id),
        )

    async def _authorize(
        self,
        operation: DeletionOperation,
        context: DeletionContext,
        message_ids: Sequence[str],
        now: datetime,
        window_seconds: Optional[int] = None
    ) -> Tuple[Dict[str, Message], List[Decision]]:
        """
        Evaluate ``operation`` for every requested id.

        Ids that do not exist in the conversation are reported as satisfied
        with code ``NOT_FOUND``: a destructive retry of a purged message
        must not fail.
        """
        messages = await self.message_repo.get_in_conversation(context.conversation_id, message_ids)
        by_id = {message.id: message for message in messages}

        visible_ids = set()
        if operation == DeletionOperation.FOR_ME:
            visible_ids = await self.message_repo.filter_visible_ids(
                list(by_id),
                context.actor_id,
                now,
                settings.sender_sees_deleted_for_everyone
            )

        read_by_others = set()
        if operation == DeletionOperation.UNSENT:
            read_by_others = await self.message_repo.get_ids_read_by_others(list(by_id))

        window = window_seconds or settings.delete_for_everyone_window_seconds
        decisions = []
        for message_id in message_ids:
            message = by_id.get(message_id)
            if message is None:
                decisions.append(
                    Decision.satisfied(message_id, "Message not found in this conversation", code=NotFound.code)
                )
                continue
            decisions.append(
                evaluate(
                    operation,
                    message,
                    context.actor,
                    now,
                    window_seconds=window,
                    visible_to_actor=message_id in visible_ids,
                    read_by_others=message_id in read_by_others,
                )
            )

        return by_id, decisions

    @staticmethod
    def _raise_first_denial(decisions: Sequence[Decision]) -> None:
        for decision in decisions:
            if not decision.allowed:
                raise decision.to_exception()

    @staticmethod
    def _effective_ids(decisions: Sequence[Decision]) -> List[str]:
        return [d.message_id for d in decisions if d.allowed and d.effective]

    async def _stage_global_transition(
        self,
        conversation_id: str,
        participant_ids: Sequence[str],
        actor_id: Optional[str],
        message_ids: Sequence[str],
        transition: Optional[DeletionTransition],
        operation: str,
        now: datetime,
        exclude_ids: Sequence[str] = ()
    ) -> None:
        """
        Stage ledger and grace queue updates inside the current transaction.

        Every participant other than the actor who has no live session gets
        a queue entry so the transition is replayed on reconnect.
        """
        if not message_ids:
            return

        await self.conversation_service.refresh_last_message(conversation_id, now)

        if transition is None:
            return

        offline = [
            user_id for user_id in participant_ids
            if user_id != actor_id
            and user_id not in exclude_ids
            and not self.ws_manager.is_online(user_id)
        ]
        if offline:
            await self.grace_repo.enqueue(
                conversation_id,
                offline,
                message_ids,
                transition,
                operation,
                actor_id,
                now,
            )

    async def _notify(
        self,
        conversation_id: str,
        recipients: Sequence[str],
        event: str,
        message_ids: Sequence[str],
        actor_id: Optional[str],
        now: datetime,
        **extra: Any
    ) -> None:
        """Invalidate unread caches and publish, after commit, best-effort."""
        if not message_ids:
            return

        await invalidate_unread_for_users(conversation_id, recipients)

        payload = {
            "conversation_id": conversation_id,
            "message_ids": list(message_ids),
            "actor_id": actor_id,
            "timestamp": to_iso_utc(now),
        }
        payload.update(extra)
        await self.ws_manager.publish_to_users(recipients, event, payload)

    @staticmethod
    def _result(message_ids: Sequence[str], **extra: Any) -> Dict[str, Any]:
        result = {"deleted_count": len(message_ids), "message_ids": list(message_ids)}
        result.update(extra)
        return result

    # ------------------------------------------------------------------
    # Transitions shared by single-mode and bulk operations
    # ------------------------------------------------------------------

    async def _apply_for_me(self, context: DeletionContext, ids: Sequence[str], now: datetime) -> List[str]:
        hidden = await self.message_repo.hide_for_user(context.actor_id, ids, now)
        return ordered(ids, hidden)

    async def _apply_for_everyone(
        self,
        context: DeletionContext,
        ids: Sequence[str],
        now: datetime,
        operation: str
    ) -> List[str]:
        changed = await self.message_repo.mark_deleted_for_everyone(ids, context.actor_id, now)
        changed = ordered(ids, changed)
        await self._stage_global_transition(
            context.conversation_id,
            context.participant_ids,
            context.actor_id,
            changed,
            DeletionTransition.FOR_EVERYONE,
            operation,
            now,
        )
        return changed

    async def _apply_hard(
        self,
        context: DeletionContext,
        ids: Sequence[str],
        now: datetime,
        delete_media: bool,
        operation: str
    ) -> Tuple[List[str], List[MediaJob]]:
        transitioned = await self.message_repo.mark_hard_deleted(ids, now, keep_media_ref=delete_media)
        changed = ordered(ids, (m.id for m in transitioned))
        jobs = media_jobs(transitioned) if delete_media else []
        await self.message_repo.schedule_media_release([job.message_id for job in jobs], now)
        await self._stage_global_transition(
            context.conversation_id,
            context.participant_ids,
            context.actor_id,
            changed,
            DeletionTransition.HARD,
            operation,
            now,
        )
        return changed, jobs

    async def _apply_soft(self, context: DeletionContext, ids: Sequence[str], now: datetime) -> List[str]:
        changed = await self.message_repo.mark_soft_deleted(ids, context.actor_id, now)
        changed = ordered(ids, changed)
        await self._stage_global_transition(
            context.conversation_id,
            context.participant_ids,
            context.actor_id,
            changed,
            None,
            DeletionOperation.SOFT.value,
            now,
        )
        return changed

    # ------------------------------------------------------------------
    # Media release
    # ------------------------------------------------------------------

    async def _release(self, job: MediaJob, now: datetime) -> bool:
        """
        Release one blob and record the outcome in its own commit.

        Failures schedule a retry with exponential backoff; once
        ``media_release_max_attempts`` is reached the message leaves the
        retry queue and the failure is logged. Any error raised by the blob
        store counts as a failed attempt.
        """
        try:
            await self.media_store.release_media(job.media_ref)
        except Exception as e:
            reason = e.reason if isinstance(e, MediaReleaseFailure) else repr(e)
            attempts = job.attempts + 1
            if attempts >= settings.media_release_max_attempts:
                next_attempt_at = None
                logger.warning(
                    f"Media release for message {job.message_id} failed permanently "
                    f"after {attempts} attempts: {reason}",
                    extra={"message_id": job.message_id, "media_ref": job.media_ref},
                )
            else:
                delay = settings.media_release_backoff_base_seconds * 2 ** (attempts - 1)
                next_attempt_at = now + timedelta(seconds=delay)
                logger.warning(
                    f"Media release for message {job.message_id} failed "
                    f"(attempt {attempts}), retrying in {delay}s: {reason}",
                    extra={"message_id": job.message_id, "media_ref": job.media_ref},
                )
            await self.message_repo.mark_media_release_failed(job.message_id, attempts, next_attempt_at)
            await self.db.commit()
            return False

        await self.message_repo.mark_media_released(job.message_id, now)
        await self.db.commit()
        return True

    async def _release_all(self, jobs: Sequence[MediaJob], now: datetime) -> Tuple[int, int]:
        """Release blobs after the visibility change committed; returns (released, pending)."""
        released = 0
        for job in jobs:
            try:
                if await self._release(job, now):
                    released += 1
            except SQLAlchemyError as e:
                # The message stays flagged pending; the sweep picks it up
                await self.db.rollback()
                logger.error(f"Could not record media release for {job.message_id}: {e}")
        return released, len(jobs) - released

    async def release_media_job(self, job: MediaJob, now: Optional[datetime] = None) -> bool:
        """Retry the blob release of one message (used by the retention sweep)."""
        return await self._release(job, now or self.clock())

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def delete_for_me(
        self,
        conversation_id: str,
        actor_id: str,
        message_ids: Sequence[str]
    ) -> Dict[str, Any]:
        """
        Hide messages from the actor only.

        Other participants' views are untouched. Repeating the call is a
        no-op with ``deleted_count`` 0.
        """
        ids = self._normalize_ids(message_ids)
        now = self.clock()

        async with self._transaction("deleteForMe"):
            context = await self._load_context(conversation_id, actor_id)
            _, decisions = await self._authorize(DeletionOperation.FOR_ME, context, ids, now)
            hidden = await self._apply_for_me(context, self._effective_ids(decisions), now)

        await self._notify(conversation_id, [actor_id], "messages_deleted_for_me", hidden, actor_id, now)
        logger.info(f"deleteForMe by {actor_id} in {conversation_id}: {len(hidden)} hidden")
        return self._result(hidden)

    async def delete_for_everyone(
        self,
        conversation_id: str,
        actor_id: str,
        message_ids: Sequence[str],
        time_window_override: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Hide messages from every participant.

        The sender must act within the delete-for-everyone window; group
        admins may act on any message at any time.

        Raises:
            AccessDenied: Actor is neither the sender nor a group admin
            WindowExpired: Sender acting after the window
        """
        ids = self._normalize_ids(message_ids)
        window = resolve_window(
            time_window_override,
            settings.delete_for_everyone_window_seconds,
            settings.max_delete_for_everyone_window_seconds,
        )
        now = self.clock()

        async with self._transaction("deleteForEveryone"):
            context = await self._load_context(conversation_id, actor_id)
            _, decisions = await self._authorize(
                DeletionOperation.FOR_EVERYONE, context, ids, now, window_seconds=window
            )
            self._raise_first_denial(decisions)
            changed = await self._apply_for_everyone(
                context, self._effective_ids(decisions), now, DeletionOperation.FOR_EVERYONE.value
            )

        await self._notify(
            conversation_id,
            context.participant_ids,
            "messages_deleted_for_everyone",
            changed,
            actor_id,
            now,
        )
        logger.info(f"deleteForEveryone by {actor_id} in {conversation_id}: {len(changed)} deleted")
        return self._result(changed)

    async def admin_delete(
        self,
        conversation_id: str,
        actor_id: str,
        message_ids: Sequence[str]
    ) -> Dict[str, Any]:
        """
        Delete for everyone as a group admin, exempt from the window.

        Raises:
            AccessDenied: Not a group conversation, or actor is not an admin
        """
        ids = self._normalize_ids(message_ids)
        now = self.clock()

        async with self._transaction("adminDelete"):
            context = await self._load_context(conversation_id, actor_id)
            if not context.actor.is_group:
                raise AccessDenied("Admin delete is only available in group chats")
            if not context.actor.is_group_admin:
                raise AccessDenied("Only group admins can admin-delete messages")

            _, decisions = await self._authorize(DeletionOperation.ADMIN, context, ids, now)
            self._raise_first_denial(decisions)
            changed = await self._apply_for_everyone(
                context, self._effective_ids(decisions), now, DeletionOperation.ADMIN.value
            )

        await self._notify(
            conversation_id,
            context.participant_ids,
            "messages_admin_deleted",
            changed,
            actor_id,
            now,
        )
        logger.info(f"adminDelete by {actor_id} in {conversation_id}: {len(changed)} deleted")
        return self._result(changed)

    async def hard_delete(
        self,
        conversation_id: str,
        actor_id: str,
        message_ids: Sequence[str],
        delete_media: bool = True
    ) -> Dict[str, Any]:
        """
        Irreversibly remove messages from every view.

        The visibility change commits first. With ``delete_media`` the
        attached blobs are then released inline; a failed release never
        fails the request and is retried by the retention sweep. Without
        it the media reference is detached and the blob is kept.
        """
        ids = self._normalize_ids(message_ids)
        now = self.clock()

        async with self._transaction("hardDelete"):
            context = await self._load_context(conversation_id, actor_id)
            _, decisions = await self._authorize(DeletionOperation.HARD, context, ids, now)
            self._raise_first_denial(decisions)
            changed, jobs = await self._apply_hard(
                context, self._effective_ids(decisions), now, delete_media, DeletionOperation.HARD.value
            )

        released, pending = await self._release_all(jobs, now)

        await self._notify(
            conversation_id,
            context.participant_ids,
            "messages_hard_deleted",
            changed,
            actor_id,
            now,
        )
        logger.info(
            f"hardDelete by {actor_id} in {conversation_id}: {len(changed)} deleted, "
            f"{released} media released, {pending} pending"
        )
        return self._result(changed, released_media_count=released, media_pending_count=pending)

    async def soft_delete(
        self,
        conversation_id: str,
        actor_id: str,
        message_ids: Sequence[str]
    ) -> Dict[str, Any]:
        """Tombstone messages: hidden from every view, record kept for audit."""
        ids = self._normalize_ids(message_ids)
        now = self.clock()

        async with self._transaction("softDelete"):
            context = await self._load_context(conversation_id, actor_id)
            _, decisions = await self._authorize(DeletionOperation.SOFT, context, ids, now)
            self._raise_first_denial(decisions)
            changed = await self._apply_soft(context, self._effective_ids(decisions), now)

        await self._notify(
            conversation_id,
            context.participant_ids,
            "messages_soft_deleted",
            changed,
            actor_id,
            now,
        )
        logger.info(f"softDelete by {actor_id} in {conversation_id}: {len(changed)} tombstoned")
        return self._result(changed)

    async def set_auto_delete(
        self,
        conversation_id: str,
        actor_id: str,
        message_ids: Sequence[str],
        duration: Union[int, str]
    ) -> Dict[str, Any]:
        """
        Arm disappearing-message expiry.

        Args:
            duration: Seconds, or one of the presets ``24h``, ``7d``, ``90d``

        Returns:
            Dict with affected_count, message_ids, expires_at, duration_seconds
        """
        ids = self._normalize_ids(message_ids)
        duration_seconds = resolve_auto_delete_duration(duration)
        now = self.clock()
        expires_at = now + timedelta(seconds=duration_seconds)

        async with self._transaction("setAutoDelete"):
            context = await self._load_context(conversation_id, actor_id)
            _, decisions = await self._authorize(DeletionOperation.AUTO_DELETE, context, ids, now)
            self._raise_first_denial(decisions)
            changed = await self.message_repo.set_auto_delete(self._effective_ids(decisions), expires_at)
            changed = ordered(ids, changed)

        await self._notify(
            conversation_id,
            context.participant_ids,
            "messages_auto_delete_set",
            changed,
            actor_id,
            now,
            expires_at=to_iso_utc(expires_at),
        )
        logger.info(
            f"setAutoDelete by {actor_id} in {conversation_id}: {len(changed)} armed for {duration_seconds}s"
        )
        return {
            "affected_count": len(changed),
            "message_ids": changed,
            "expires_at": expires_at,
            "duration_seconds": duration_seconds,
        }

    async def media_delete(
        self,
        conversation_id: str,
        actor_id: str,
        message_ids: Sequence[str],
        delete_message: bool = False,
        delete_local_only: bool = False
    ) -> Dict[str, Any]:
        """
        Delete the media attached to messages.

        - ``delete_local_only``: detach the reference, keep the blob
        - ``delete_message``: hard delete the message and release the blob
        - otherwise: release the blob and leave a "[Media deleted]" placeholder

        Messages without media are ignored.
        """
        ids = self._normalize_ids(message_ids)
        now = self.clock()
        jobs: List[MediaJob] = []

        async with self._transaction("mediaDelete"):
            context = await self._load_context(conversation_id, actor_id)
            by_id, decisions = await self._authorize(DeletionOperation.MEDIA, context, ids, now)
            self._raise_first_denial(decisions)
            effective = self._effective_ids(decisions)

            if delete_local_only:
                changed = ordered(ids, await self.message_repo.detach_media(effective, MEDIA_DELETED_PLACEHOLDER))
                await self.conversation_service.refresh_last_message(conversation_id, now)
            elif delete_message:
                changed, jobs = await self._apply_hard(
                    context, effective, now, True, DeletionOperation.MEDIA.value
                )
            else:
                changed = ordered(ids, await self.message_repo.set_media_placeholder(
                    effective, MEDIA_DELETED_PLACEHOLDER
                ))
                jobs = media_jobs(by_id[message_id] for message_id in changed)
                await self.message_repo.schedule_media_release(changed, now)
                await self.conversation_service.refresh_last_message(conversation_id, now)

        released, pending = await self._release_all(jobs, now)

        await self._notify(
            conversation_id,
            context.participant_ids,
            "messages_media_deleted",
            changed,
            actor_id,
            now,
            message_deleted=delete_message and not delete_local_only,
            local_only=delete_local_only,
        )
        logger.info(
            f"mediaDelete by {actor_id} in {conversation_id}: {len(changed)} affected, "
            f"{released} released, {pending} pending"
        )
        return self._result(changed, released_media_count=released, media_pending_count=pending)

    async def unsent_delete(
        self,
        conversation_id: str,
        actor_id: str,
        message_ids: Sequence[str]
    ) -> Dict[str, Any]:
        """
        Retract messages nobody has seen yet.

        Eligible messages (status sending, sent or failed and no read
        receipt from another user) are deleted for everyone and hidden from
        the sender as well. Ineligible ids are returned in ``skipped``.

        Raises:
            AccessDenied: Actor is not the sender of a requested message
        """
        ids = self._normalize_ids(message_ids)
        now = self.clock()

        async with self._transaction("unsentDelete"):
            context = await self._load_context(conversation_id, actor_id)
            _, decisions = await self._authorize(DeletionOperation.UNSENT, context, ids, now)
            self._raise_first_denial(decisions)
            effective = self._effective_ids(decisions)
            for_everyone = await self._apply_for_everyone(
                context, effective, now, DeletionOperation.UNSENT.value
            )
            hidden = await self.message_repo.hide_for_user(actor_id, effective, now)
            changed = ordered(ids, set(for_everyone) | set(hidden))

        await self._notify(
            conversation_id,
            context.participant_ids,
            "unsent_messages_deleted",
            changed,
            actor_id,
            now,
        )
        skipped = [d.as_skipped() for d in decisions if not d.effective and d.code]
        logger.info(
            f"unsentDelete by {actor_id} in {conversation_id}: {len(changed)} retracted, {len(skipped)} skipped"
        )
        return self._result(changed, skipped=skipped)

    async def bulk_delete(
        self,
        conversation_id: str,
        actor_id: str,
        message_ids: Sequence[str],
        mode: Union[str, DeletionOperation],
        media_only: bool = False,
        delete_media: bool = True
    ) -> Dict[str, Any]:
        """
        Delete many messages in one mode.

        Not all-or-nothing: every id is authorized against the mode's own
        rule and the ones that fail are reported in ``skipped`` with a code
        instead of failing the batch. Retrying the same request is safe.

        Args:
            mode: forMe, forEveryone, hard or soft
            media_only: Only act on messages carrying media
            delete_media: Release blobs in hard mode

        Raises:
            InvalidDeletionRequest: Unknown mode
        """
        try:
            operation = DeletionOperation(mode)
        except ValueError:
            raise InvalidDeletionRequest(f"Unknown bulk mode '{mode}'")
        if operation not in BULK_MODES:
            raise InvalidDeletionRequest(f"Mode '{operation.value}' is not available for bulk deletion")

        ids = self._normalize_ids(message_ids)
        now = self.clock()
        jobs: List[MediaJob] = []

        async with self._transaction("bulkDelete"):
            context = await self._load_context(conversation_id, actor_id)
            by_id, decisions = await self._authorize(operation, context, ids, now)

            if media_only:
                decisions = [
                    Decision.satisfied(d.message_id, "Message has no media", code="FILTERED_OUT")
                    if d.allowed and d.effective and not by_id[d.message_id].has_media
                    else d
                    for d in decisions
                ]

            effective = self._effective_ids(decisions)
            if operation == DeletionOperation.FOR_ME:
                changed = await self._apply_for_me(context, effective, now)
            elif operation == DeletionOperation.FOR_EVERYONE:
                changed = await self._apply_for_everyone(context, effective, now, "bulk")
            elif operation == DeletionOperation.HARD:
                changed, jobs = await self._apply_hard(context, effective, now, delete_media, "bulk")
            else:
                changed = await self._apply_soft(context, effective, now)

        released, pending = await self._release_all(jobs, now)

        recipients = [actor_id] if operation == DeletionOperation.FOR_ME else context.participant_ids
        await self._notify(
            conversation_id,
            recipients,
            "messages_bulk_deleted",
            changed,
            actor_id,
            now,
            mode=operation.value,
        )

        skipped = [d.as_skipped() for d in decisions if not d.allowed or (not d.effective and d.code)]
        logger.info(
            f"bulkDelete ({operation.value}) by {actor_id} in {conversation_id}: "
            f"{len(changed)} deleted, {len(skipped)} skipped"
        )
        result = self._result(changed, skipped=skipped, mode=operation.value)
        if operation == DeletionOperation.HARD:
            result.update(released_media_count=released, media_pending_count=pending)
        return result

    async def grace_delete(
        self,
        conversation_id: str,
        actor_id: str,
        message_ids: Sequence[str],
        recipient_ids: Sequence[str]
    ) -> Dict[str, Any]:
        """
        Delete for everyone now and queue a replay for named recipients.

        The named recipients get a queue entry whether or not they are
        connected; other offline participants are queued as for any
        delete-for-everyone. Recipients who are not participants (or are
        the actor) are ignored.

        Returns:
            Dict with queued, deleted_count, message_ids, recipient_ids
        """
        ids = self._normalize_ids(message_ids)
        now = self.clock()

        async with self._transaction("graceDelete"):
            context = await self._load_context(conversation_id, actor_id)
            _, decisions = await self._authorize(DeletionOperation.FOR_EVERYONE, context, ids, now)
            self._raise_first_denial(decisions)

            recipients = [
                user_id for user_id in dict.fromkeys(recipient_ids or [])
                if user_id in context.participant_ids and user_id != actor_id
            ]
            queued_ids = [d.message_id for d in decisions if d.allowed and d.code != NotFound.code]

            changed = ordered(ids, await self.message_repo.mark_deleted_for_everyone(
                self._effective_ids(decisions), actor_id, now
            ))
            await self._stage_global_transition(
                conversation_id,
                context.participant_ids,
                actor_id,
                changed,
                DeletionTransition.FOR_EVERYONE,
                DeletionOperation.FOR_EVERYONE.value,
                now,
                exclude_ids=recipients,
            )
            entries = []
            if recipients:
                entries = await self.grace_repo.enqueue(
                    conversation_id,
                    recipients,
                    queued_ids,
                    DeletionTransition.FOR_EVERYONE,
                    "grace",
                    actor_id,
                    now,
                )

        await self._notify(
            conversation_id,
            context.participant_ids,
            "messages_deleted_for_everyone",
            changed,
            actor_id,
            now,
        )
        logger.info(
            f"graceDelete by {actor_id} in {conversation_id}: {len(changed)} deleted, "
            f"queued for {len(entries)} recipients"
        )
        return self._result(changed, queued=bool(entries), recipient_ids=recipients)

    async def expire_messages(
        self,
        conversation_id: str,
        message_ids: Sequence[str]
    ) -> List[str]:
        """
        Hard delete messages whose auto-delete expiry passed.

        Run by the retention sweep with no live actor. Releases media the
        same way as a hard delete.

        Returns:
            IDs that transitioned
        """
        now = self.clock()

        async with self._transaction("autoDeleteExpiry"):
            participant_ids = await self.member_repo.get_member_ids(conversation_id)
            transitioned = await self.message_repo.mark_hard_deleted(message_ids, now, keep_media_ref=True)
            changed = ordered(message_ids, (m.id for m in transitioned))
            jobs = media_jobs(transitioned)
            await self.message_repo.schedule_media_release([job.message_id for job in jobs], now)
            await self._stage_global_transition(
                conversation_id,
                participant_ids,
                None,
                changed,
                DeletionTransition.HARD,
                DeletionOperation.AUTO_DELETE.value,
                now,
            )

        await self._release_all(jobs, now)
        await self._notify(conversation_id, participant_ids, "messages_expired", changed, None, now)
        return changed
