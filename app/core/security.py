"""
Security utilities for authentication and authorization.
Handles JWT token creation, validation, and header parsing.
"""
import jwt
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from fastapi import HTTPException, status
from app.config import settings


class SecurityException(HTTPException):
    """Custom exception for security-related errors."""
    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create JWT access token.

    Args:
        data: Payload data to encode
        expires_delta: Optional expiration time delta

    Returns:
        Encoded JWT token

    Example:
        ```python
        token = create_access_token(
            data={"sub": user_id, "role": "MEMBER"},
            expires_delta=timedelta(hours=24)
        )
        ```
    """
    to_encode = data.copy()
    now = datetime.now(timezone.utc)

    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(hours=settings.jwt_expiration_hours)

    to_encode.update({"exp": expire, "iat": now})

    return jwt.encode(
        to_encode,
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm
    )


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate JWT token.

    Args:
        token: JWT token string

    Returns:
        Decoded token payload

    Raises:
        SecurityException: If token is invalid, expired, or has no subject
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise SecurityException("Token has expired")
    except jwt.InvalidTokenError:
        raise SecurityException("Invalid token")

    if not payload.get("sub"):
        raise SecurityException("Token missing subject claim")

    return payload


def extract_token_from_header(authorization: str) -> str:
    """
    Extract JWT token from Authorization header.

    Args:
        authorization: Authorization header value (e.g., "Bearer <token>")

    Returns:
        Extracted token

    Raises:
        SecurityException: If header format is invalid
    """
    parts = authorization.split()

    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise SecurityException("Invalid authorization header format")

    return parts[1]
