"""
User model - local reference to platform users.

Identity, profiles and login live in the accounts service; this table only
keeps what the messaging core needs to resolve senders and operator roles.
"""
from datetime import datetime
from typing import TYPE_CHECKING, List

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, UUIDMixin

if TYPE_CHECKING:
    from app.models.conversation import ConversationMember
    from app.models.message import Message, MessageStatus
    from app.models.user_deleted_message import UserDeletedMessage


class User(Base, UUIDMixin):
    """User known to the messaging core."""

    __tablename__ = "users"

    username: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        doc="Display username"
    )

    role: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        index=True,
        doc="Platform role (ADMIN, MEMBER); ADMIN may run server cleanup"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        doc="When the user was first created locally"
    )

    # Relationships
    conversation_memberships: Mapped[List["ConversationMember"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan"
    )

    sent_messages: Mapped[List["Message"]] = relationship(
        back_populates="sender",
        foreign_keys="Message.sender_id"
    )

    message_statuses: Mapped[List["MessageStatus"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan"
    )

    deleted_messages: Mapped[List["UserDeletedMessage"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username})>"
