"""
Service layer exports.
Provides business logic for message visibility and deletion.
"""
from app.services.message_service import MessageService
from app.services.conversation_service import ConversationService
from app.services.message_deletion_service import MessageDeletionService
from app.services.grace_queue_service import GraceQueueService
from app.services.retention_service import RetentionService

__all__ = [
    "MessageService",
    "ConversationService",
    "MessageDeletionService",
    "GraceQueueService",
    "RetentionService",
]
