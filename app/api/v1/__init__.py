"""
API v1 router exports.
Provides API endpoint routers.
"""
from app.api.v1 import messages, conversations

__all__ = [
    "messages",
    "conversations",
]
