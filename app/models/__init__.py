"""
SQLAlchemy models for the messaging core.

All models must be imported here for Alembic auto-generation to work.
"""

# Import Base first
from app.models.base import Base, TimestampMixin, UUIDMixin

# Import all models (order matters for relationships)
from app.models.user import User
from app.models.conversation import Conversation, ConversationMember, ConversationType, ConversationRole
from app.models.message import (
    Message,
    MessageStatus,
    MessageType,
    MessageStatusType,
    MessageDeliveryStatus,
)
from app.models.user_deleted_message import UserDeletedMessage, DeleteMode
from app.models.grace_delete import GraceDeleteEntry, DeletionTransition

# Export all models and enums
__all__ = [
    # Base classes
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    # User
    "User",
    # Conversations
    "Conversation",
    "ConversationMember",
    "ConversationType",
    "ConversationRole",
    # Messages
    "Message",
    "MessageStatus",
    "MessageType",
    "MessageStatusType",
    "MessageDeliveryStatus",
    # Deletion overlay and queue
    "UserDeletedMessage",
    "DeleteMode",
    "GraceDeleteEntry",
    "DeletionTransition",
]
