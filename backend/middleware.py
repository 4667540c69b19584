from fastapi import Depends, Request
from typing import Optional
import logging

from errors import ForbiddenError, UnauthorizedError
from models.user import User
from services.container import ServiceContainer

logger = logging.getLogger(__name__)


def get_services(request: Request) -> ServiceContainer:
    """Service container built by the application lifespan."""
    return request.app.state.services


def bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


async def get_current_user(
    request: Request,
    services: ServiceContainer = Depends(get_services),
) -> User:
    """Require a valid bearer token for an active account."""
    token = bearer_token(request)
    if not token:
        raise UnauthorizedError("Not authenticated")

    user = await services.auth.get_current_user(token)
    if not user:
        raise UnauthorizedError("Invalid or expired token")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        logger.warning(f"Admin route denied for user {user.user_id}")
        raise ForbiddenError("Admin access required")
    return user


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
