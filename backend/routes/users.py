from fastapi import APIRouter, Depends, Query
from typing import Optional
import logging

from middleware import get_services, require_admin
from models.user import AdminUserUpdate, User, UserResponse, UserRole
from services.container import ServiceContainer
from utils.responses import success

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[UserRole] = None,
    is_active: Optional[bool] = None,
    admin: User = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
):
    result = await services.users.list_users(page, limit, role, is_active)
    return success(result)


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    admin: User = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
):
    user = await services.users.require_user(user_id)
    return success(UserResponse.from_user(user))


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    data: AdminUserUpdate,
    admin: User = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
):
    user = await services.users.update_user(user_id, data)
    return success(UserResponse.from_user(user), "User updated")


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    admin: User = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
):
    await services.users.delete_user(user_id, admin)
    return success(message="User deleted")


@router.patch("/{user_id}/status")
async def toggle_user_status(
    user_id: str,
    admin: User = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
):
    user = await services.users.toggle_status(user_id, admin)
    state = "activated" if user.is_active else "deactivated"
    return success(UserResponse.from_user(user), f"User {state}")
