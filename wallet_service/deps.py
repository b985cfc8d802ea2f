"""Shared FastAPI dependencies."""

from beanie import PydanticObjectId
from fastapi import Depends, Request

from wallet_service.core.exceptions import ForbiddenError, UnauthorizedError
from wallet_service.core.logging import bind_account_id
from wallet_service.core.security import load_session_cookie
from wallet_service.models.user import User
from wallet_service.services.limits import LimitDecision, get_limiter

SESSION_COOKIE_NAME = "wallet_session"


async def get_current_user(request: Request) -> User:
    """Dependency: load session from cookie and return User."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    user_id = payload.get("user_id")
    if not user_id or not PydanticObjectId.is_valid(user_id):
        raise UnauthorizedError("Invalid session")
    user = await User.get(PydanticObjectId(user_id))
    if not user or not user.is_active:
        raise UnauthorizedError("User not found")
    if payload.get("session_version") != user.session_version:
        raise UnauthorizedError("Session invalidated")
    bind_account_id(str(user.id))
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Dependency: require current user to have role admin."""
    if not user.is_admin:
        raise ForbiddenError("Admin only")
    return user


def require_global_limit(limit_type: str):
    """Dependency factory: count the request against a global daily limit (admins bypass)."""

    async def _gate(user: User = Depends(get_current_user)) -> LimitDecision:
        return await get_limiter().check_and_consume(limit_type, is_admin=user.is_admin)

    return _gate
