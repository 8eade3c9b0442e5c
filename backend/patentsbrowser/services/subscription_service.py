"""Subscription Service - PatentsBrowser billing state machine.

Rows move trial -> payment_pending -> active, with upgrade_pending and
downgrade_pending for plan changes and cancelled/rejected/inactive as end
states. A user holds at most one active "main" row (no parent); any other
active row is stacked under it via parent_subscription_id.

Activation from a verified signature, an admin payment approval or a
gateway webhook all go through activate_verified().
"""
from database import database
from pymongo.errors import DuplicateKeyError
from patentsbrowser.services.errors import ServiceError
from patentsbrowser.models.plans import AccountType, TRIAL_PERIOD_DAYS, period_days
from patentsbrowser.models.subscriptions import (
    Subscription,
    SubscriptionStatus,
    ChangeType,
    PENDING_STATUSES,
)
from patentsbrowser.models.user import AuthContext, UserType
from patentsbrowser.services.plan_service import plan_service
from datetime import datetime, timezone, timedelta
from typing import Dict, Any, List, Optional, Iterable
from urllib.parse import quote
import hashlib
import hmac
import math
import os
import secrets
import time
import logging

logger = logging.getLogger(__name__)

RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
UPI_ID = os.getenv("UPI_ID", "patentsbrowser@upi")
UPI_PAYEE_NAME = "PatentsBrowser"

ACTIVE_STATUSES = [SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAID.value]


# ============================================================================
# Errors
# ============================================================================

class BillingError(ServiceError):
    pass


class PlanNotFoundError(BillingError):
    code = "PLAN_NOT_FOUND"


class InvalidSignatureError(BillingError):
    code = "INVALID_SIGNATURE"


class AlreadySubscribedError(BillingError):
    code = "ALREADY_SUBSCRIBED"


class UserNotFoundError(BillingError):
    status_code = 404
    code = "USER_NOT_FOUND"


class SubscriptionNotFoundError(BillingError):
    status_code = 404
    code = "SUBSCRIPTION_NOT_FOUND"


class BillingNotAllowedError(BillingError):
    status_code = 403
    code = "BILLING_NOT_ALLOWED"


class ConcurrentChangeError(BillingError):
    status_code = 409
    code = "CONCURRENT_CHANGE"

    def __init__(self, message: str = "Concurrent subscription change, retry"):
        super().__init__(message)


# ============================================================================
# Helpers
# ============================================================================

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def generate_order_id() -> str:
    """order_<epoch ms>_<12 hex>"""
    return f"order_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


def sign_order(order_id: str, payment_id: str, secret: str) -> str:
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_order_signature(order_id: str, payment_id: str, signature: str) -> bool:
    """Constant-time check of a gateway order signature. No secret means no match."""
    secret = os.getenv("RAZORPAY_KEY_SECRET", "")
    if not secret or not signature:
        return False
    expected = sign_order(order_id, payment_id, secret)
    return hmac.compare_digest(expected, signature)


def build_upi_link(amount: int, order_id: str, note: str) -> str:
    """UPI deep link for an amount in paise."""
    rupees = f"{amount / 100:.2f}"
    return (
        f"upi://pay?pa={quote(UPI_ID, safe='@')}&pn={quote(UPI_PAYEE_NAME)}"
        f"&am={rupees}&cu=INR&tr={quote(order_id)}&tn={quote(note)}"
    )


def day_span(start: datetime, end: datetime) -> int:
    """Whole days covered by [start, end), rounded up."""
    seconds = (as_utc(end) - as_utc(start)).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def compute_stack_summary(rows: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Aggregate entitlement over the active rows.

    Spans are summed per row; overlapping windows are not merged.
    """
    active = [r for r in rows if r.get("status") == SubscriptionStatus.ACTIVE.value]
    main = [r for r in active if not r.get("parent_subscription_id")]
    additional = [r for r in active if r.get("parent_subscription_id")]

    end_dates = [as_utc(r["end_date"]) for r in active if r.get("end_date")]
    return {
        "main_subscription": main[0] if main else None,
        "additional_subscriptions": additional,
        "total_days": sum(day_span(r["start_date"], r["end_date"]) for r in active),
        "latest_end_date": max(end_dates) if end_dates else None,
        "total_amount": sum(r.get("amount") or 0 for r in active),
        "is_custom_plan": len(additional) > 0,
    }


def _plan_snapshot(plan: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "plan_id": plan["plan_id"],
        "plan_type": plan["type"],
        "plan_name": plan.get("name"),
        "amount": plan["price"],
    }


class SubscriptionService:
    def __init__(self):
        self.db = None

    async def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    # ========================================================================
    # Lookups
    # ========================================================================

    async def get_user(self, user_id: str) -> Dict[str, Any]:
        db = await self._get_db()
        user = await db.users.find_one({"user_id": user_id}, {"_id": 0, "password_hash": 0})
        if not user:
            raise UserNotFoundError("User not found")
        return user

    async def get_active_main(self, user_id: str, exclude_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        db = await self._get_db()
        query: Dict[str, Any] = {
            "user_id": user_id,
            "status": SubscriptionStatus.ACTIVE.value,
            "parent_subscription_id": None,
        }
        if exclude_id:
            query["subscription_id"] = {"$ne": exclude_id}
        return await db.subscriptions.find_one(query, {"_id": 0})

    async def get_subscription(self, subscription_id: str) -> Dict[str, Any]:
        db = await self._get_db()
        row = await db.subscriptions.find_one({"subscription_id": subscription_id}, {"_id": 0})
        if not row:
            raise SubscriptionNotFoundError("Subscription not found")
        return row

    def can_user_purchase_plans(self, auth: AuthContext) -> bool:
        """Organization members are billed through their organization."""
        return not auth.is_organization_member

    # ========================================================================
    # Trial
    # ========================================================================

    async def start_trial(self, user_id: str) -> Dict[str, Any]:
        db = await self._get_db()
        await self.get_user(user_id)

        existing = await db.subscriptions.find({"user_id": user_id}, {"_id": 0}).to_list(100)
        if any(row.get("status") != SubscriptionStatus.INACTIVE.value for row in existing):
            raise AlreadySubscribedError("User already has a subscription")

        now = datetime.now(timezone.utc)
        end_date = now + timedelta(days=TRIAL_PERIOD_DAYS)
        subscription = Subscription(
            user_id=user_id,
            plan_type="trial",
            plan_name="Free Trial",
            amount=0,
            status=SubscriptionStatus.TRIAL,
            start_date=now,
            end_date=end_date,
            trial_ends_at=end_date,
        )
        doc = subscription.model_dump()
        await db.subscriptions.insert_one({**doc})

        await db.users.update_one(
            {"user_id": user_id},
            {"$set": {
                "subscription_status": SubscriptionStatus.TRIAL.value,
                "trial_start_date": now,
                "trial_end_date": end_date,
                "updated_at": now,
            }}
        )
        logger.info(f"Trial started for user {user_id}, ends {end_date.isoformat()}")
        return doc

    # ========================================================================
    # Orders
    # ========================================================================

    async def create_order(self, auth: AuthContext, plan_id: str) -> Dict[str, Any]:
        """Create (or refresh) the caller's payment_pending row for a plan."""
        if not self.can_user_purchase_plans(auth):
            raise BillingNotAllowedError("Organization members cannot purchase plans")

        plan = await plan_service.get_plan(plan_id)
        if not plan:
            raise PlanNotFoundError("Plan not found or inactive")

        account_type = (
            AccountType.ORGANIZATION.value
            if auth.user_type == UserType.ORGANIZATION_ADMIN
            else AccountType.INDIVIDUAL.value
        )
        if plan.get("account_type") != account_type:
            raise BillingError(f"This plan is not available for {account_type} accounts")

        db = await self._get_db()
        now = datetime.now(timezone.utc)
        order_id = generate_order_id()
        snapshot = _plan_snapshot(plan)
        end_date = now + timedelta(days=period_days(plan["type"]))

        pending = await db.subscriptions.find_one(
            {"user_id": auth.user_id, "status": SubscriptionStatus.PAYMENT_PENDING.value},
            {"_id": 0}
        )
        if pending:
            subscription_id = pending["subscription_id"]
            await db.subscriptions.update_one(
                {"subscription_id": subscription_id},
                {"$set": {
                    **snapshot,
                    "order_id": order_id,
                    "start_date": now,
                    "end_date": end_date,
                    "updated_at": now,
                }}
            )
        else:
            subscription = Subscription(
                user_id=auth.user_id,
                status=SubscriptionStatus.PAYMENT_PENDING,
                start_date=now,
                end_date=end_date,
                order_id=order_id,
                **snapshot,
            )
            subscription_id = subscription.subscription_id
            await db.subscriptions.insert_one(subscription.model_dump())

        logger.info(f"Order {order_id} created for user {auth.user_id} on plan {plan_id}")
        return {
            "order_id": order_id,
            "subscription_id": subscription_id,
            "amount": plan["price"],
            "currency": "INR",
            "key_id": RAZORPAY_KEY_ID,
            "plan": {
                "plan_id": plan["plan_id"],
                "name": plan.get("name"),
                "type": plan["type"],
                "features": plan.get("features", []),
            },
            "upi_link": build_upi_link(plan["price"], order_id, plan.get("name") or "Subscription"),
        }

    async def verify_payment(
        self,
        user_id: str,
        order_id: str,
        payment_id: str,
        signature: str,
    ) -> Dict[str, Any]:
        if not verify_order_signature(order_id, payment_id, signature):
            logger.warning(f"Signature mismatch for order {order_id} (user {user_id})")
            raise InvalidSignatureError("Invalid payment signature")

        db = await self._get_db()
        row = await db.subscriptions.find_one(
            {"order_id": order_id, "user_id": user_id, "status": {"$in": PENDING_STATUSES}},
            {"_id": 0}
        )
        if not row:
            raise SubscriptionNotFoundError("No pending order found")

        return await self.activate_verified(row, payment_id=payment_id, signature=signature)

    async def activate_verified(
        self,
        row: Dict[str, Any],
        payment_id: Optional[str] = None,
        signature: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Turn a pending row active once its payment is confirmed."""
        db = await self._get_db()
        user_id = row["user_id"]
        now = datetime.now(timezone.utc)
        days = period_days(row.get("plan_type"))
        main = await self.get_active_main(user_id, exclude_id=row["subscription_id"])

        start_date = now
        parent_id = main["subscription_id"] if main else None
        change_type = row.get("change_type")
        retired = None

        if change_type == ChangeType.UPGRADE.value and main:
            retired = main
            await db.subscriptions.update_one(
                {"subscription_id": main["subscription_id"]},
                {"$set": {"status": SubscriptionStatus.INACTIVE.value, "updated_at": now}}
            )
            parent_id = None
        elif change_type == ChangeType.DOWNGRADE.value and main:
            start_date = as_utc(main["end_date"])

        updates = {
            "status": SubscriptionStatus.ACTIVE.value,
            "start_date": start_date,
            "end_date": start_date + timedelta(days=days),
            "parent_subscription_id": parent_id,
            "updated_at": now,
        }
        if payment_id:
            updates["payment_id"] = payment_id
        if signature:
            updates["signature"] = signature

        try:
            await db.subscriptions.update_one(
                {"subscription_id": row["subscription_id"]},
                {"$set": updates}
            )
        except DuplicateKeyError:
            logger.warning(f"Concurrent activation for user {user_id} on {row['subscription_id']}")
            if retired:
                await db.subscriptions.update_one(
                    {"subscription_id": retired["subscription_id"]},
                    {"$set": {"status": retired["status"], "updated_at": now}}
                )
            raise ConcurrentChangeError()

        # A paid plan supersedes any running trial
        await db.subscriptions.update_many(
            {"user_id": user_id, "status": SubscriptionStatus.TRIAL.value},
            {"$set": {"status": SubscriptionStatus.INACTIVE.value, "updated_at": now}}
        )
        await db.users.update_one(
            {"user_id": user_id},
            {"$set": {
                "subscription_status": SubscriptionStatus.ACTIVE.value,
                "payment_status": "paid",
                "updated_at": now,
            }}
        )

        logger.info(
            f"Subscription {row['subscription_id']} activated for user {user_id} "
            f"({'stacked on ' + parent_id if parent_id else 'main'})"
        )
        return {**row, **updates}

    # ========================================================================
    # Admin grants
    # ========================================================================

    async def activate_manual(
        self,
        user_id: str,
        start_date: datetime,
        end_date: datetime,
        status: str = SubscriptionStatus.ACTIVE.value,
        plan_type: str = "custom",
        amount: int = 0,
        plan_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Insert an admin-granted row.

        The existing main row is never touched; when one is active the new
        row is stacked beneath it.
        """
        start_date = as_utc(start_date)
        end_date = as_utc(end_date)
        if end_date <= start_date:
            raise BillingError("end_date must be after start_date")
        if status not in ACTIVE_STATUSES + [SubscriptionStatus.TRIAL.value]:
            raise BillingError(f"Unsupported status for manual activation: {status}")

        db = await self._get_db()
        await self.get_user(user_id)

        plan_name = None
        if plan_id:
            plan = await plan_service.get_plan(plan_id, active_only=False)
            if not plan:
                raise PlanNotFoundError("Plan not found")
            plan_type = plan["type"]
            plan_name = plan.get("name")

        main = await self.get_active_main(user_id)
        subscription = Subscription(
            user_id=user_id,
            plan_id=plan_id,
            plan_type=plan_type,
            plan_name=plan_name or "Manual grant",
            amount=amount,
            status=status,
            start_date=start_date,
            end_date=end_date,
            parent_subscription_id=main["subscription_id"] if main else None,
            created_by=created_by,
        )
        doc = subscription.model_dump()

        try:
            await db.subscriptions.insert_one({**doc})
        except DuplicateKeyError:
            logger.warning(f"Concurrent manual activation for user {user_id}")
            raise ConcurrentChangeError()

        now = datetime.now(timezone.utc)
        user_updates = {"subscription_status": status, "updated_at": now}
        if status in ACTIVE_STATUSES:
            user_updates["payment_status"] = "paid"
        await db.users.update_one({"user_id": user_id}, {"$set": user_updates})

        logger.info(
            f"Manual subscription {doc['subscription_id']} granted to {user_id} by {created_by} "
            f"({start_date.date()} to {end_date.date()})"
        )
        return doc

    # ========================================================================
    # Cancellation / rejection
    # ========================================================================

    async def cancel(self, user_id: str) -> Dict[str, Any]:
        """Mark the current main row cancelled. Access runs until end_date."""
        db = await self._get_db()
        row = await db.subscriptions.find_one(
            {
                "user_id": user_id,
                "status": {"$in": [SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIAL.value]},
                "parent_subscription_id": None,
            },
            {"_id": 0},
            sort=[("created_at", -1)],
        )
        if not row:
            raise SubscriptionNotFoundError("No active subscription found")

        now = datetime.now(timezone.utc)
        await db.subscriptions.update_one(
            {"subscription_id": row["subscription_id"]},
            {"$set": {"cancelled_at": now, "updated_at": now}}
        )
        logger.info(f"Subscription {row['subscription_id']} cancelled by user {user_id}")
        return {**row, "cancelled_at": now, "updated_at": now}

    async def reject(
        self,
        subscription_id: str,
        reason: Optional[str] = None,
        rejected_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        db = await self._get_db()
        row = await self.get_subscription(subscription_id)
        if row.get("status") not in PENDING_STATUSES:
            raise BillingError(f"Cannot reject a subscription in status {row.get('status')}")

        now = datetime.now(timezone.utc)
        updates = {
            "status": SubscriptionStatus.REJECTED.value,
            "rejection_reason": reason or "Payment could not be verified",
            "updated_at": now,
        }
        await db.subscriptions.update_one({"subscription_id": subscription_id}, {"$set": updates})

        user = await db.users.find_one({"user_id": row["user_id"]}, {"_id": 0, "subscription_status": 1})
        if user and user.get("subscription_status") in (None, SubscriptionStatus.PAYMENT_PENDING.value):
            await db.users.update_one(
                {"user_id": row["user_id"]},
                {"$set": {"subscription_status": SubscriptionStatus.REJECTED.value, "updated_at": now}}
            )

        logger.warning(f"Subscription {subscription_id} rejected by {rejected_by or 'system'}: {updates['rejection_reason']}")
        return {**row, **updates}

    # ========================================================================
    # Plan change
    # ========================================================================

    async def request_plan_change(self, auth: AuthContext, new_plan_id: str) -> Dict[str, Any]:
        """Open an upgrade_pending or downgrade_pending row with a prorated price."""
        if not self.can_user_purchase_plans(auth):
            raise BillingNotAllowedError("Organization members cannot change plans")

        main = await self.get_active_main(auth.user_id)
        if not main:
            raise SubscriptionNotFoundError("No active subscription to change")

        new_plan = await plan_service.get_plan(new_plan_id)
        if not new_plan:
            raise PlanNotFoundError("Plan not found or inactive")
        if new_plan["plan_id"] == main.get("plan_id"):
            raise BillingError("You are already on this plan")

        current_plan = None
        if main.get("plan_id"):
            current_plan = await plan_service.get_plan(main["plan_id"], active_only=False)
        current_price = current_plan["price"] if current_plan else (main.get("amount") or 0)

        now = datetime.now(timezone.utc)
        period = period_days(main.get("plan_type"))
        remaining_days = min(period, day_span(now, main["end_date"]))
        credit = round((main.get("amount") or 0) * remaining_days / period)
        prorated_amount = max(0, new_plan["price"] - credit)

        change_type = ChangeType.UPGRADE if new_plan["price"] > current_price else ChangeType.DOWNGRADE
        status = (
            SubscriptionStatus.UPGRADE_PENDING
            if change_type == ChangeType.UPGRADE
            else SubscriptionStatus.DOWNGRADE_PENDING
        )

        db = await self._get_db()
        # Only one open change request at a time
        await db.subscriptions.update_many(
            {
                "user_id": auth.user_id,
                "status": {"$in": [
                    SubscriptionStatus.UPGRADE_PENDING.value,
                    SubscriptionStatus.DOWNGRADE_PENDING.value,
                ]},
            },
            {"$set": {"status": SubscriptionStatus.CANCELLED.value, "cancelled_at": now, "updated_at": now}}
        )

        order_id = generate_order_id()
        snapshot = _plan_snapshot(new_plan)
        snapshot["amount"] = prorated_amount
        subscription = Subscription(
            user_id=auth.user_id,
            status=status,
            start_date=now,
            end_date=now + timedelta(days=period_days(new_plan["type"])),
            order_id=order_id,
            change_type=change_type,
            previous_subscription_id=main["subscription_id"],
            **snapshot,
        )
        await db.subscriptions.insert_one(subscription.model_dump())

        logger.info(
            f"Plan {change_type.value} requested by {auth.user_id}: "
            f"{main.get('plan_id')} -> {new_plan_id}, prorated {prorated_amount}"
        )
        return {
            "order_id": order_id,
            "subscription_id": subscription.subscription_id,
            "change_type": change_type.value,
            "amount": prorated_amount,
            "credit": credit,
            "remaining_days": remaining_days,
            "currency": "INR",
            "upi_link": build_upi_link(prorated_amount, order_id, new_plan.get("name") or "Plan change"),
        }

    # ========================================================================
    # Views
    # ========================================================================

    async def get_user_subscription(self, user_id: str) -> Dict[str, Any]:
        user = await self.get_user(user_id)
        rows = await self.list_user_rows(user_id)

        summary = compute_stack_summary(rows)
        pending = next((r for r in rows if r.get("status") in PENDING_STATUSES), None)

        trial_days_remaining = 0
        trial_end = as_utc(user.get("trial_end_date"))
        if user.get("subscription_status") == SubscriptionStatus.TRIAL.value and trial_end:
            trial_days_remaining = day_span(datetime.now(timezone.utc), trial_end)

        return {
            "subscription_status": user.get("subscription_status"),
            "payment_status": user.get("payment_status"),
            "trial_end_date": user.get("trial_end_date"),
            "trial_days_remaining": trial_days_remaining,
            "pending_subscription": pending,
            "subscriptions": rows,
            **summary,
        }

    async def list_user_rows(self, user_id: str) -> List[Dict[str, Any]]:
        db = await self._get_db()
        return await db.subscriptions.find(
            {"user_id": user_id}, {"_id": 0}
        ).sort("created_at", -1).to_list(200)


subscription_service = SubscriptionService()
