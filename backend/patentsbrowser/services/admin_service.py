"""Admin Service - user management and subscription statistics."""
from database import database
from patentsbrowser.services.errors import ServiceError
from patentsbrowser.models.user import PRIVATE_FIELDS
from patentsbrowser.models.subscriptions import SubscriptionStatus
from patentsbrowser.services.subscription_service import subscription_service, compute_stack_summary
from datetime import datetime, timezone
from typing import Dict, Any, Optional
import re
import logging

logger = logging.getLogger(__name__)

# Never writable through the admin user editor
PROTECTED_USER_FIELDS = {"password_hash", "active_token", "user_id", "_id"}


class AdminError(ServiceError):
    pass


class AdminService:
    def __init__(self):
        self.db = None

    async def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def _require_user(self, user_id: str) -> Dict[str, Any]:
        db = await self._get_db()
        user = await db.users.find_one({"user_id": user_id}, PRIVATE_FIELDS)
        if not user:
            raise AdminError("User not found", status_code=404)
        return user

    async def list_users(
        self,
        search: Optional[str] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Dict[str, Any]:
        db = await self._get_db()
        query: Dict[str, Any] = {}
        if search:
            pattern = re.escape(search.strip())
            query["$or"] = [
                {"email": {"$regex": pattern, "$options": "i"}},
                {"name": {"$regex": pattern, "$options": "i"}},
            ]
        if status:
            query["subscription_status"] = status

        total = await db.users.count_documents(query)
        users = await db.users.find(query, PRIVATE_FIELDS).sort(
            "created_at", -1
        ).skip(skip).limit(limit).to_list(limit)
        return {"users": users, "total": total, "skip": skip, "limit": limit}

    async def get_user(self, user_id: str) -> Dict[str, Any]:
        user = await self._require_user(user_id)
        subscriptions = await subscription_service.list_user_rows(user_id)
        return {
            "user": user,
            "subscriptions": subscriptions,
            "summary": compute_stack_summary(subscriptions),
        }

    async def update_user(self, user_id: str, updates: Dict[str, Any], admin_id: str) -> Dict[str, Any]:
        blocked = PROTECTED_USER_FIELDS.intersection(updates)
        if blocked:
            raise AdminError(f"Cannot update protected fields: {', '.join(sorted(blocked))}")
        if not updates:
            raise AdminError("No fields to update")

        await self._require_user(user_id)
        db = await self._get_db()
        await db.users.update_one(
            {"user_id": user_id},
            {"$set": {**updates, "updated_at": datetime.now(timezone.utc)}}
        )
        logger.info(f"Admin {admin_id} updated user {user_id}: {sorted(updates)}")
        return await self._require_user(user_id)

    async def delete_user(self, user_id: str, admin_id: str) -> Dict[str, int]:
        if user_id == admin_id:
            raise AdminError("You cannot delete your own account")
        await self._require_user(user_id)

        db = await self._get_db()
        owned = await db.organizations.find_one({"admin_id": user_id}, {"_id": 0, "org_id": 1, "name": 1})
        if owned:
            raise AdminError(
                f"User administers organization {owned.get('name') or owned['org_id']}; delete or reassign it first",
                status_code=409,
            )

        subscriptions = await db.subscriptions.delete_many({"user_id": user_id})
        await db.saved_patents.delete_many({"user_id": user_id})
        await db.custom_patent_lists.delete_many({"user_id": user_id})
        await db.search_history.delete_many({"user_id": user_id})
        await db.patent_read_status.delete_many({"user_id": user_id})
        await db.organizations.update_many(
            {"members.user_id": user_id},
            {"$pull": {"members": {"user_id": user_id}},
             "$set": {"updated_at": datetime.now(timezone.utc)}}
        )
        await db.users.delete_one({"user_id": user_id})

        logger.info(f"Admin {admin_id} deleted user {user_id} ({subscriptions.deleted_count} subscriptions)")
        return {"deleted_subscriptions": subscriptions.deleted_count}

    async def set_admin(self, user_id: str, is_admin: bool, admin_id: str) -> Dict[str, Any]:
        if not is_admin and user_id == admin_id:
            raise AdminError("You cannot remove your own admin rights")
        await self._require_user(user_id)

        db = await self._get_db()
        await db.users.update_one(
            {"user_id": user_id},
            {"$set": {"is_admin": is_admin, "updated_at": datetime.now(timezone.utc)}}
        )
        logger.info(f"Admin {admin_id} set is_admin={is_admin} for {user_id}")
        return await self._require_user(user_id)

    async def get_subscription_stats(self) -> Dict[str, Any]:
        db = await self._get_db()
        total_users = await db.users.count_documents({})
        active = await db.users.count_documents({"subscription_status": {"$in": [
            SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAID.value,
        ]}})
        trial = await db.users.count_documents({"subscription_status": SubscriptionStatus.TRIAL.value})
        expired = await db.users.count_documents({"subscription_status": SubscriptionStatus.INACTIVE.value})
        pending_payments = await db.payments.count_documents({"status": "unverified"})

        return {
            "totalUsers": total_users,
            "activeSubscriptions": active,
            "trialUsers": trial,
            "expiredSubscriptions": expired,
            "pendingPayments": pending_payments,
            "conversionRate": round(active / total_users * 100, 2) if total_users else 0,
        }


admin_service = AdminService()
