"""User Service

Account lookups, admin management and usage counters.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
import logging
import math

from errors import BadRequestError, NotFoundError
from models.subscriptions import SubscriptionPlan, SubscriptionStatus
from models.user import User, UserRole, AdminUserUpdate, UserResponse

logger = logging.getLogger(__name__)

USAGE_FIELDS = {"documents_generated", "documents_analyzed", "documents_edited"}


class UserService:
    def __init__(self, db):
        self.db = db

    async def get_by_id(self, user_id: str) -> Optional[User]:
        doc = await self.db.users.find_one({"user_id": user_id}, {"_id": 0})
        return User(**doc) if doc else None

    async def get_by_email(self, email: str) -> Optional[User]:
        doc = await self.db.users.find_one({"email": email.lower()}, {"_id": 0})
        return User(**doc) if doc else None

    async def get_by_phone(self, phone: str) -> Optional[User]:
        doc = await self.db.users.find_one({"phone": phone}, {"_id": 0})
        return User(**doc) if doc else None

    async def require_user(self, user_id: str) -> User:
        user = await self.get_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    async def record_usage(self, user_id: str, field: str) -> None:
        if field not in USAGE_FIELDS:
            raise ValueError(f"Unknown usage counter: {field}")
        await self.db.users.update_one(
            {"user_id": user_id},
            {
                "$inc": {f"usage_stats.{field}": 1},
                "$set": {"usage_stats.last_activity": datetime.now(timezone.utc)},
            },
        )

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    async def list_users(
        self,
        page: int = 1,
        limit: int = 20,
        role: Optional[UserRole] = None,
        is_active: Optional[bool] = None,
    ) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if role:
            query["role"] = role.value
        if is_active is not None:
            query["is_active"] = is_active

        skip = (page - 1) * limit
        total = await self.db.users.count_documents(query)
        docs = await self.db.users.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)
        return {
            "count": len(docs),
            "total": total,
            "total_pages": math.ceil(total / limit) if limit else 0,
            "current_page": page,
            "users": [UserResponse.from_user(User(**d)) for d in docs],
        }

    async def update_user(self, user_id: str, data: AdminUserUpdate) -> User:
        user = await self.require_user(user_id)
        updates: Dict[str, Any] = {"updated_at": datetime.now(timezone.utc)}
        if data.name is not None:
            if not data.name.strip():
                raise BadRequestError("Name cannot be empty")
            updates["name"] = data.name.strip()
        if data.role is not None:
            updates["role"] = data.role.value
        if data.is_active is not None:
            updates["is_active"] = data.is_active
        if data.plan is not None:
            updates["subscription.plan"] = data.plan.value
            updates["subscription.status"] = SubscriptionStatus.ACTIVE.value
            if data.plan == SubscriptionPlan.FREE:
                updates["subscription.end_date"] = None

        await self.db.users.update_one({"user_id": user.user_id}, {"$set": updates})
        logger.info(f"Admin updated user {user_id}: {sorted(k for k in updates if k != 'updated_at')}")
        return await self.require_user(user_id)

    async def delete_user(self, user_id: str, admin: User) -> None:
        if user_id == admin.user_id:
            raise BadRequestError("Admins cannot delete their own account")
        result = await self.db.users.delete_one({"user_id": user_id})
        if result.deleted_count == 0:
            raise NotFoundError("User not found")
        logger.info(f"User {user_id} deleted by admin {admin.user_id}")

    async def toggle_status(self, user_id: str, admin: User) -> User:
        user = await self.require_user(user_id)
        if user.user_id == admin.user_id:
            raise BadRequestError("Admins cannot deactivate their own account")
        await self.db.users.update_one(
            {"user_id": user_id},
            {"$set": {"is_active": not user.is_active, "updated_at": datetime.now(timezone.utc)}},
        )
        logger.info(f"User {user_id} {'deactivated' if user.is_active else 'activated'} by admin {admin.user_id}")
        return await self.require_user(user_id)
