"""
Conversation and ConversationMember models.

Handles both direct messages (DM) and group chats, plus the denormalized
summary fields (last message pointer, per-member unread counters) that make
up the conversation ledger.
"""
import enum
from datetime import datetime
from typing import TYPE_CHECKING, List

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Enum as SQLEnum, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, UUIDMixin, TimestampMixin

if TYPE_CHECKING:
    from app.models.user import User
    from app.models.message import Message


class ConversationType(str, enum.Enum):
    """Enum for conversation types."""
    DM = "dm"
    GROUP = "group"


class ConversationRole(str, enum.Enum):
    """Enum for conversation member roles."""
    ADMIN = "admin"
    MEMBER = "member"


class Conversation(Base, UUIDMixin, TimestampMixin):
    """
    Conversation model for DMs and group chats.

    A conversation can be:
    - DM: Direct message between two users
    - Group: Group chat with a primary admin (``group_admin_id``) and any
      number of secondary admins (members with role ``admin``)
    """

    __tablename__ = "conversations"

    type: Mapped[ConversationType] = mapped_column(
        SQLEnum(ConversationType, name="conversation_type", native_enum=False),
        nullable=False,
        doc="Type of conversation: 'dm' or 'group'"
    )

    name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        doc="Group name (null for DMs)"
    )

    group_admin_id: Mapped[str | None] = mapped_column(
        String(255),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        doc="Primary group admin (null for DMs)"
    )

    is_active: Mapped[bool] = mapped_column(
        default=True,
        nullable=False,
        doc="False once the last participant left a direct chat"
    )

    # Denormalized last message (globally visible)
    last_message_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        doc="Most recent globally visible message"
    )

    last_message_content: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        doc="Preview of the most recent globally visible message"
    )

    last_message_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="created_at of the most recent globally visible message"
    )

    # Relationships
    members: Mapped[List["ConversationMember"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        lazy="selectin"  # Efficient bulk loading of members
    )

    messages: Mapped[List["Message"]] = relationship(
        back_populates="conversation",
        passive_deletes=True,
        lazy="select"  # Standard lazy loading for potentially large collections
    )

    group_admin: Mapped["User | None"] = relationship(foreign_keys=[group_admin_id])

    @property
    def is_group(self) -> bool:
        return self.type == ConversationType.GROUP

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id}, type={self.type}, name={self.name})>"


class ConversationMember(Base):
    """
    ConversationMember model - association table for users in conversations.

    Tracks membership, roles and read status. ``unread_count`` is owned by
    the compose and read-receipt paths; the deletion core only reads it.
    """

    __tablename__ = "conversation_members"

    # Composite primary key
    conversation_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        primary_key=True,
        doc="Conversation ID"
    )

    user_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
        doc="User ID"
    )

    role: Mapped[ConversationRole] = mapped_column(
        SQLEnum(ConversationRole, name="conversation_role", native_enum=False),
        default=ConversationRole.MEMBER,
        nullable=False,
        doc="Member role: 'admin' or 'member'"
    )

    unread_count: Mapped[int] = mapped_column(
        default=0,
        nullable=False,
        doc="Pending-read counter maintained outside the deletion core"
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        doc="When the user joined the conversation"
    )

    last_read_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Last time the user read messages in this conversation"
    )

    # Relationships
    conversation: Mapped["Conversation"] = relationship(back_populates="members")
    user: Mapped["User"] = relationship(back_populates="conversation_memberships")

    def __repr__(self) -> str:
        return (
            f"<ConversationMember(conversation_id={self.conversation_id}, "
            f"user_id={self.user_id}, role={self.role})>"
        )


# Indexes for performance
Index("idx_conversation_members_user", ConversationMember.user_id)
Index("idx_conversation_members_conversation", ConversationMember.conversation_id)
Index("idx_conversations_type", Conversation.type)
