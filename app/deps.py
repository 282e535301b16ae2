"""Shared FastAPI dependencies."""

from beanie import PydanticObjectId
from bson.errors import InvalidId
from fastapi import Request

from app.core.exceptions import ForbiddenError, UnauthorizedError
from app.core.logging import bind_user_id
from app.core.security import load_access_token
from app.models.user import User


def _bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user(request: Request) -> User:
    """Dependency: load bearer token and return User."""
    token = _bearer_token(request)
    if not token:
        raise UnauthorizedError("Not authenticated")
    payload = load_access_token(token)
    if not payload:
        raise UnauthorizedError("Invalid or expired token")
    try:
        user_id = PydanticObjectId(payload.get("user_id"))
    except (InvalidId, TypeError):
        raise UnauthorizedError("Invalid token")
    user = await User.get(user_id)
    if not user:
        raise UnauthorizedError("User not found")
    if payload.get("token_version") != user.token_version:
        raise UnauthorizedError("Token revoked")
    if user.is_blocked:
        raise ForbiddenError("Account is blocked")
    bind_user_id(str(user.id))
    return user


async def require_admin(request: Request) -> User:
    """Dependency: require current user to have role admin."""
    user = await get_current_user(request)
    if user.role != "admin":
        raise ForbiddenError("Admin only")
    return user
