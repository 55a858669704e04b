"""
Dependency injection for FastAPI routes.
Provides reusable dependencies for authentication and authorization.
"""
from typing import Optional
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.security import decode_token, extract_token_from_header, SecurityException


async def get_current_user(
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    Dependency to get the current authenticated user.

    The JWT is decoded locally; its ``sub`` claim is the local user id and
    must match a row in ``users``. The ``role`` claim, when present, takes
    precedence over the stored role.

    Args:
        authorization: Authorization header containing Bearer token
        db: Database session

    Returns:
        Dictionary with ``id``, ``username`` and ``role``

    Raises:
        HTTPException: 401 if token is missing, invalid or names an unknown user

    Example:
        ```python
        @router.get("/protected")
        async def protected_route(current_user: dict = Depends(get_current_user)):
            return {"user": current_user["id"]}
        ```
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = extract_token_from_header(authorization)
    payload = decode_token(token)
    user_id = str(payload["sub"])

    from app.models.user import User

    local_user = await db.get(User, user_id)
    if not local_user:
        raise SecurityException("Unknown user")

    return {
        "id": local_user.id,
        "username": local_user.username or payload.get("username"),
        "role": payload.get("role") or local_user.role or "MEMBER",
    }


async def get_admin_user(
    current_user: dict = Depends(get_current_user)
) -> dict:
    """
    Dependency to verify the current user is a platform operator.

    Args:
        current_user: Current authenticated user

    Returns:
        User information if user is admin

    Raises:
        HTTPException: 403 if user is not an admin

    Example:
        ```python
        @router.post("/deletions/server-cleanup")
        async def server_cleanup(admin: dict = Depends(get_admin_user)):
            # Only operators can access this
            pass
        ```
    """
    user_role = current_user.get("role") or ""

    if user_role.upper() != "ADMIN":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )

    return current_user
