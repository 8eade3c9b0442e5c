"""Trial and expiry maintenance - PatentsBrowser

Runs hourly from the scheduler and on demand from the admin panel.
"""
from database import database
from patentsbrowser.services.errors import ServiceError
from patentsbrowser.models.subscriptions import SubscriptionStatus
from patentsbrowser.services.subscription_service import ACTIVE_STATUSES, day_span, as_utc
from datetime import datetime, timezone, timedelta
from typing import Dict, Any, List
import logging

logger = logging.getLogger(__name__)

EXPIRING_SOON_DAYS = 3
DEFAULT_EXTENSION_DAYS = 7


class TrialError(ServiceError):
    pass


class TrialService:
    def __init__(self):
        self.db = None

    async def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def expire_trials(self) -> int:
        """Trial users past trial_end_date become inactive, with their trial rows."""
        db = await self._get_db()
        now = datetime.now(timezone.utc)
        users = await db.users.find(
            {"subscription_status": SubscriptionStatus.TRIAL.value, "trial_end_date": {"$lt": now}},
            {"_id": 0, "user_id": 1}
        ).to_list(10000)

        for user in users:
            await db.users.update_one(
                {"user_id": user["user_id"]},
                {"$set": {"subscription_status": SubscriptionStatus.INACTIVE.value, "updated_at": now}}
            )
            await db.subscriptions.update_many(
                {"user_id": user["user_id"], "status": SubscriptionStatus.TRIAL.value},
                {"$set": {"status": SubscriptionStatus.INACTIVE.value, "updated_at": now}}
            )
            logger.info(f"Trial expired for user {user['user_id']}")
        return len(users)

    async def expire_subscriptions(self) -> int:
        """Active/paid rows past end_date become inactive; users follow once nothing active remains."""
        db = await self._get_db()
        now = datetime.now(timezone.utc)
        rows = await db.subscriptions.find(
            {"status": {"$in": ACTIVE_STATUSES}, "end_date": {"$lt": now}},
            {"_id": 0, "subscription_id": 1, "user_id": 1}
        ).to_list(10000)
        if not rows:
            return 0

        await db.subscriptions.update_many(
            {"subscription_id": {"$in": [r["subscription_id"] for r in rows]}},
            {"$set": {"status": SubscriptionStatus.INACTIVE.value, "updated_at": now}}
        )

        for user_id in sorted({r["user_id"] for r in rows}):
            remaining = await db.subscriptions.count_documents({
                "user_id": user_id,
                "status": {"$in": ACTIVE_STATUSES},
                "end_date": {"$gt": now},
            })
            if remaining:
                continue
            await db.users.update_one(
                {"user_id": user_id, "subscription_status": {"$in": ACTIVE_STATUSES}},
                {"$set": {"subscription_status": SubscriptionStatus.INACTIVE.value, "updated_at": now}}
            )
            logger.info(f"All subscriptions expired for user {user_id}")
        return len(rows)

    async def check_expirations(self) -> Dict[str, int]:
        expired_trials = await self.expire_trials()
        expired_subscriptions = await self.expire_subscriptions()
        return {"expired_trials": expired_trials, "expired_subscriptions": expired_subscriptions}

    # ========================================================================
    # Admin views
    # ========================================================================

    async def get_trial_users(self) -> List[Dict[str, Any]]:
        db = await self._get_db()
        users = await db.users.find(
            {"subscription_status": SubscriptionStatus.TRIAL.value},
            {"_id": 0, "user_id": 1, "name": 1, "email": 1, "trial_start_date": 1, "trial_end_date": 1}
        ).sort("trial_end_date", 1).to_list(10000)

        now = datetime.now(timezone.utc)
        for user in users:
            end = user.get("trial_end_date")
            user["days_remaining"] = day_span(now, end) if end else 0
        return users

    async def get_statistics(self) -> Dict[str, Any]:
        users = await self.get_trial_users()
        days = [u["days_remaining"] for u in users]
        return {
            "total_trial_users": len(users),
            "expiring_soon": sum(1 for d in days if d <= EXPIRING_SOON_DAYS),
            "expiring_today": sum(1 for d in days if d <= 0),
            "average_days_remaining": round(sum(days) / len(days), 1) if days else 0,
        }

    async def extend_trial(self, user_id: str, days: int = DEFAULT_EXTENSION_DAYS) -> Dict[str, Any]:
        if days <= 0:
            raise TrialError("Extension days must be positive")

        db = await self._get_db()
        user = await db.users.find_one({"user_id": user_id}, {"_id": 0, "password_hash": 0})
        if not user:
            raise TrialError("User not found", status_code=404)
        if user.get("subscription_status") != SubscriptionStatus.TRIAL.value:
            raise TrialError("User is not on a trial")

        now = datetime.now(timezone.utc)
        current_end = as_utc(user.get("trial_end_date")) or now
        new_end = max(current_end, now) + timedelta(days=days)

        await db.users.update_one(
            {"user_id": user_id},
            {"$set": {"trial_end_date": new_end, "updated_at": now}}
        )
        await db.subscriptions.update_many(
            {"user_id": user_id, "status": SubscriptionStatus.TRIAL.value},
            {"$set": {"end_date": new_end, "trial_ends_at": new_end, "updated_at": now}}
        )
        logger.info(f"Trial for {user_id} extended by {days} days to {new_end.isoformat()}")
        return {"user_id": user_id, "trial_end_date": new_end, "days_added": days}


trial_service = TrialService()
