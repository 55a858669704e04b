"""
Domain exceptions for the message deletion subsystem.

Every error carries a stable machine-readable ``code`` alongside the
human-readable message so clients can branch on the reason.
"""
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class DeletionError(HTTPException):
    """Base class for errors surfaced by deletion and visibility operations."""

    code: str = "DELETION_ERROR"
    status_code_default: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self.message = message
        detail: Dict[str, Any] = {"code": self.code, "message": message}
        if extra:
            detail.update(extra)
        super().__init__(status_code=self.status_code_default, detail=detail)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class AccessDenied(DeletionError):
    """Viewer is not a participant, or actor lacks the role for the transition."""

    code = "ACCESS_DENIED"
    status_code_default = status.HTTP_403_FORBIDDEN


class NotFound(DeletionError):
    """Conversation (or, for reads, message) does not exist."""

    code = "NOT_FOUND"
    status_code_default = status.HTTP_404_NOT_FOUND


class WindowExpired(DeletionError):
    """Delete-for-everyone attempted after the edit window by a non-admin."""

    code = "WINDOW_EXPIRED"
    status_code_default = status.HTTP_409_CONFLICT


class InvalidDeletionRequest(DeletionError):
    """Malformed request: unknown mode, bad duration, empty id list."""

    code = "INVALID_REQUEST"
    status_code_default = status.HTTP_400_BAD_REQUEST


class StoreUnavailable(DeletionError):
    """Underlying persistence failed. Safe to retry the whole operation."""

    code = "STORE_UNAVAILABLE"
    status_code_default = status.HTTP_503_SERVICE_UNAVAILABLE


class MediaReleaseFailure(Exception):
    """Blob store refused or failed to release a media object (never surfaced)."""

    code = "MEDIA_RELEASE_FAILED"

    def __init__(self, media_ref: str, reason: str):
        self.media_ref = media_ref
        self.reason = reason
        super().__init__(f"Failed to release media {media_ref}: {reason}")
