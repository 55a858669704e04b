"""
GraceDeleteEntry model - deferred deletions for offline recipients.

When a deletion lands while a participant is not connected to the real-time
channel, an entry is stored here and replayed on their next connect.
"""
import enum
from datetime import datetime
from typing import List

from sqlalchemy import DateTime, ForeignKey, Index, Integer, JSON, String, Enum as SQLEnum, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class DeletionTransition(str, enum.Enum):
    """Resolved state transition carried by a queue entry."""
    FOR_EVERYONE = "forEveryone"
    HARD = "hard"


class GraceDeleteEntry(Base):
    """One queued transition for one recipient in one conversation."""

    __tablename__ = "grace_delete_queue"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True
    )

    conversation_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False
    )

    recipient_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        doc="Participant the deletion is replayed for"
    )

    message_ids: Mapped[List[str]] = mapped_column(
        JSON,
        default=list,
        nullable=False
    )

    transition: Mapped[DeletionTransition] = mapped_column(
        SQLEnum(DeletionTransition, name="deletion_transition", native_enum=False),
        nullable=False
    )

    operation: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        doc="Originating operation (forEveryone, hard, admin, unsent, grace, autoDelete)"
    )

    actor_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        doc="Actor of the original deletion (null for scheduler expiries)"
    )

    enqueued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<GraceDeleteEntry(id={self.id}, recipient_id={self.recipient_id}, "
            f"transition={self.transition}, messages={len(self.message_ids or [])})>"
        )


Index("idx_grace_delete_recipient", GraceDeleteEntry.recipient_id, GraceDeleteEntry.enqueued_at)
