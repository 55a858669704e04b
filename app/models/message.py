"""
Message and MessageStatus models.

A message row holds immutable facts (sender, conversation, creation time)
plus the mutable deletion metadata that drives per-viewer visibility.
Per-user "delete for me" markers live in ``user_deleted_messages``.
"""
import enum
from datetime import datetime
from typing import TYPE_CHECKING, List

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Enum as SQLEnum,
    func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, UUIDMixin
from app.utils.datetime_utils import utc_now

if TYPE_CHECKING:
    from app.models.user import User
    from app.models.conversation import Conversation
    from app.models.user_deleted_message import UserDeletedMessage


class MessageType(str, enum.Enum):
    """Enum for message types."""
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    FILE = "FILE"
    VOICE = "VOICE"
    SYSTEM = "SYSTEM"


class MessageDeliveryStatus(str, enum.Enum):
    """Sender-side delivery state of a message."""
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class MessageStatusType(str, enum.Enum):
    """Enum for per-recipient receipt types."""
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


DELETED_PLACEHOLDER = "This message was deleted"
MEDIA_DELETED_PLACEHOLDER = "[Media deleted]"


class Message(Base, UUIDMixin):
    """
    Message model with deletion metadata.

    Deletion states only ever get stronger: visible, then deleted for
    everyone, then hard deleted. Hard deleted rows keep no content and
    remain as tombstones until operator cleanup purges them.
    """

    __tablename__ = "messages"

    # References
    conversation_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        doc="Conversation this message belongs to"
    )

    sender_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        doc="User who sent the message"
    )

    # Content
    content: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        doc="Message text (placeholder for media messages)"
    )

    type: Mapped[MessageType] = mapped_column(
        SQLEnum(MessageType, name="message_type", native_enum=False),
        default=MessageType.TEXT,
        nullable=False,
        doc="Type of message"
    )

    media_ref: Mapped[str | None] = mapped_column(
        String(1024),
        nullable=True,
        doc="Object key in the blob store (null for text-only messages)"
    )

    status: Mapped[MessageDeliveryStatus] = mapped_column(
        SQLEnum(MessageDeliveryStatus, name="message_delivery_status", native_enum=False),
        default=MessageDeliveryStatus.SENT,
        nullable=False,
        doc="Delivery status from the sender's point of view"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
        index=True,
        doc="When the message was created"
    )

    # Deletion metadata
    hard_deleted: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        doc="Irreversibly removed from every view"
    )

    hard_deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    deleted_for_everyone: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        doc="Hidden from every participant except (by policy) the sender"
    )

    deleted_for_everyone_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    deleted_for_everyone_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        doc="Actor who deleted the message for everyone"
    )

    soft_deleted: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        doc="Display suppressed, record retained for audit"
    )

    soft_deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    soft_deleted_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True
    )

    auto_delete_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Disappearing-message expiry; past values hide the message at read time"
    )

    # Media release bookkeeping
    media_release_pending: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        doc="Blob release failed and is waiting for a retry"
    )

    media_release_attempts: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False
    )

    media_release_next_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    media_released_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    # Relationships
    conversation: Mapped["Conversation"] = relationship(back_populates="messages")
    sender: Mapped["User"] = relationship(
        back_populates="sent_messages",
        foreign_keys=[sender_id]
    )

    statuses: Mapped[List["MessageStatus"]] = relationship(
        back_populates="message",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin"  # Read receipts are projected with every message
    )

    deleted_by_users: Mapped[List["UserDeletedMessage"]] = relationship(
        back_populates="message",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    @property
    def has_media(self) -> bool:
        return self.media_ref is not None

    @property
    def media_withdrawn(self) -> bool:
        """Media deletion was requested, whether or not the blob release has succeeded yet."""
        return bool(
            self.media_release_pending
            or self.media_release_attempts
            or self.media_released_at is not None
        )

    def __repr__(self) -> str:
        content_preview = self.content[:50] if self.content else f"<{self.type}>"
        return f"<Message(id={self.id}, type={self.type}, content='{content_preview}...')>"


class MessageStatus(Base):
    """
    MessageStatus model - tracks delivery and read receipts.

    Each recipient has their own status row per message; ``read`` rows form
    the message's ``readBy`` set.
    """

    __tablename__ = "message_status"

    # Composite primary key
    message_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("messages.id", ondelete="CASCADE"),
        primary_key=True,
        doc="Message ID"
    )

    user_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
        doc="User ID"
    )

    status: Mapped[MessageStatusType] = mapped_column(
        SQLEnum(MessageStatusType, name="message_status_type", native_enum=False),
        nullable=False,
        doc="Status: sent, delivered, or read"
    )

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        doc="When the status was recorded"
    )

    # Relationships
    message: Mapped["Message"] = relationship(back_populates="statuses")
    user: Mapped["User"] = relationship(back_populates="message_statuses")

    def __repr__(self) -> str:
        return (
            f"<MessageStatus(message_id={self.message_id}, "
            f"user_id={self.user_id}, status={self.status})>"
        )


# Indexes for performance
# Composite index for newest-first conversation pages
Index("idx_messages_conversation_created",
      Message.conversation_id,
      Message.created_at.desc(),
      Message.id.desc())

# Partial-style lookups done by the retention sweep
Index("idx_messages_auto_delete", Message.auto_delete_expires_at)
Index("idx_messages_media_release", Message.media_release_pending, Message.media_release_next_attempt_at)

Index("idx_message_status_user", MessageStatus.user_id, MessageStatus.status)
