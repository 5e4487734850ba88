"""Bearer-token authentication and caller resolution.

Tokens are issued by the external identity service and signed with the
shared ``JWT_SECRET_KEY``; ``sub`` carries the integer user id. Admin and
moderator authority always comes from the user directory, never the token.
"""

import os
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, HTTPException, Request, status

from expertdesk.collaborators import Collaborators, UserInfo
from expertdesk.logging_config import bind_request_context, get_logger

logger = get_logger(__name__)

JWT_ALGORITHM = "HS256"
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = 60


def _jwt_secret() -> str:
    secret = os.getenv("JWT_SECRET_KEY", "")
    if not secret:
        raise RuntimeError("JWT_SECRET_KEY environment variable is required")
    return secret


def create_access_token(user_id: int) -> str:
    """Create an access token (used by local tooling; production tokens come from identity)."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {"sub": str(user_id), "exp": expire, "type": "access"}
    return jwt.encode(payload, _jwt_secret(), algorithm=JWT_ALGORITHM)


def decode_jwt(token: str) -> dict:
    """Decode and validate a JWT token. Raises HTTPException on failure."""
    try:
        return jwt.decode(token, _jwt_secret(), algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def get_collaborators(request: Request) -> Collaborators:
    """FastAPI dependency: the collaborator bundle wired in the app lifespan."""
    return request.app.state.collaborators


async def get_current_user(
    request: Request,
    collab: Collaborators = Depends(get_collaborators),
) -> UserInfo:
    """
    FastAPI dependency: extract and validate the Bearer token.

    Returns the caller's directory record or raises 401/403.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header",
        )

    token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Empty token",
        )

    payload = decode_jwt(token)
    if payload.get("type", "access") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    user = await collab.directory.get_user(user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User not found",
        )

    request_id = getattr(request.state, "request_id", None)
    if request_id is not None:
        bind_request_context(request_id, user_id=user.id)
    return user


async def require_admin(user: UserInfo = Depends(get_current_user)) -> UserInfo:
    """FastAPI dependency: caller must be an admin/moderator in the directory."""
    if not user.is_admin:
        logger.warning("admin_access_denied", user_id=user.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user
