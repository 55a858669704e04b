"""
Repository layer exports.
Provides database access layer for the application.
"""
from app.repositories.base import BaseRepository
from app.repositories.message_repo import MessageRepository, visible_to, globally_visible
from app.repositories.conversation_repo import (
    ConversationRepository,
    ConversationMemberRepository
)
from app.repositories.grace_queue_repo import GraceQueueRepository

__all__ = [
    "BaseRepository",
    "MessageRepository",
    "visible_to",
    "globally_visible",
    "ConversationRepository",
    "ConversationMemberRepository",
    "GraceQueueRepository",
]
