"""
UserDeletedMessage model - tracks per-user message deletions.

Implements "Delete for Me": messages hidden for individual users without
affecting other participants' view. Rows are only ever added.
"""
import enum
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, String, Enum as SQLEnum, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base

if TYPE_CHECKING:
    from app.models.user import User
    from app.models.message import Message


class DeleteMode(str, enum.Enum):
    """Per-user hide modes."""
    FOR_ME = "forMe"


class UserDeletedMessage(Base):
    """
    Tracks messages that have been deleted "for me" by individual users.

    - "Delete for Me" adds an entry here (message hidden only for this user)
    - "Clear Conversation" adds entries here for every visible message
    - Unsent retraction adds an entry for the sender

    The composite primary key makes the insert an atomic add-to-set:
    concurrent or repeated deletes by the same user collapse into one row.
    """

    __tablename__ = "user_deleted_messages"

    # Composite primary key
    user_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
        doc="User who deleted the message for themselves"
    )

    message_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("messages.id", ondelete="CASCADE"),
        primary_key=True,
        doc="Message that was deleted for this user"
    )

    delete_mode: Mapped[DeleteMode] = mapped_column(
        SQLEnum(DeleteMode, name="delete_mode", native_enum=False),
        default=DeleteMode.FOR_ME,
        nullable=False
    )

    deleted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        doc="When the user deleted this message"
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="deleted_messages")
    message: Mapped["Message"] = relationship(back_populates="deleted_by_users")

    def __repr__(self) -> str:
        return f"<UserDeletedMessage(user_id={self.user_id}, message_id={self.message_id})>"


# Indexes for performance
Index("idx_user_deleted_messages_user", UserDeletedMessage.user_id)
Index("idx_user_deleted_messages_message", UserDeletedMessage.message_id)
