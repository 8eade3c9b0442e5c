"""Payment Service - UPI reference submission, admin review and gateway webhooks.

Users pay out-of-band through a UPI deep link and submit the bank reference
(UTR). The payment stays unverified until an admin approves or rejects it,
or a signed gateway webhook reports the outcome.
"""
from database import database
from pymongo.errors import DuplicateKeyError
from patentsbrowser.models.payments import Payment, PaymentRecordStatus
from patentsbrowser.models.subscriptions import SubscriptionStatus, PENDING_STATUSES
from patentsbrowser.services.subscription_service import (
    subscription_service,
    BillingError,
    SubscriptionNotFoundError,
    ACTIVE_STATUSES,
)
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional
import hashlib
import hmac
import json
import os
import re
import logging

logger = logging.getLogger(__name__)

UTR_PATTERNS = [
    re.compile(r"^\d{12,18}$"),
    re.compile(r"^[A-Z]{3,6}\d{9,15}$"),
    re.compile(r"^\d{6,18}@\w{3,10}$"),
]


class PaymentError(BillingError):
    code = "PAYMENT_ERROR"


def is_valid_utr(reference_number: str) -> bool:
    value = (reference_number or "").strip()
    return any(pattern.match(value) for pattern in UTR_PATTERNS)


def verify_webhook_signature(body: bytes, signature: Optional[str]) -> bool:
    """HMAC-SHA256 of the raw request body with the webhook secret."""
    secret = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")
    if not secret or not signature:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


class PaymentService:
    def __init__(self):
        self.db = None

    async def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def submit_reference(self, user_id: str, order_id: str, reference_number: str) -> Dict[str, Any]:
        """Record a UTR against the caller's pending order."""
        reference_number = (reference_number or "").strip().upper()
        if not is_valid_utr(reference_number):
            raise PaymentError("Invalid UPI reference number format")

        db = await self._get_db()
        if await db.payments.find_one({"reference_number": reference_number}, {"_id": 0, "payment_id": 1}):
            raise PaymentError("This reference number has already been submitted")

        row = await db.subscriptions.find_one(
            {"order_id": order_id, "user_id": user_id, "status": {"$in": PENDING_STATUSES}},
            {"_id": 0}
        )
        if not row:
            raise SubscriptionNotFoundError("Order not found")

        payment = Payment(
            user_id=user_id,
            subscription_id=row["subscription_id"],
            order_id=order_id,
            plan_id=row.get("plan_id"),
            plan_name=row.get("plan_name"),
            amount=row.get("amount") or 0,
            reference_number=reference_number,
        )
        doc = payment.model_dump()
        try:
            await db.payments.insert_one({**doc})
        except DuplicateKeyError:
            raise PaymentError("This reference number has already been submitted")

        user = await db.users.find_one({"user_id": user_id}, {"_id": 0, "subscription_status": 1})
        current = (user or {}).get("subscription_status")
        if current not in (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAID.value, SubscriptionStatus.TRIAL.value):
            await db.users.update_one(
                {"user_id": user_id},
                {"$set": {"subscription_status": SubscriptionStatus.PAYMENT_PENDING.value,
                          "updated_at": datetime.now(timezone.utc)}}
            )

        logger.info(f"UPI reference {reference_number} submitted by {user_id} for order {order_id}")
        return doc

    async def get_status(self, user_id: str, reference_number: str) -> Dict[str, Any]:
        db = await self._get_db()
        payment = await db.payments.find_one(
            {"reference_number": reference_number.strip().upper(), "user_id": user_id},
            {"_id": 0}
        )
        if not payment:
            raise PaymentError("Payment not found", status_code=404)
        return {
            "payment_id": payment["payment_id"],
            "reference_number": payment["reference_number"],
            "status": payment["status"],
            "amount": payment.get("amount"),
            "plan_name": payment.get("plan_name"),
            "payment_date": payment.get("payment_date"),
            "verification_date": payment.get("verification_date"),
            "rejection_reason": payment.get("rejection_reason"),
        }

    # ========================================================================
    # Admin review
    # ========================================================================

    async def list_payments(self, status: Optional[str] = None, limit: int = 100, skip: int = 0) -> Dict[str, Any]:
        db = await self._get_db()
        query: Dict[str, Any] = {}
        if status:
            query["status"] = PaymentRecordStatus(status).value
        total = await db.payments.count_documents(query)
        payments = await db.payments.find(query, {"_id": 0}).sort(
            "payment_date", -1
        ).skip(skip).limit(limit).to_list(limit)

        user_ids = list({p["user_id"] for p in payments})
        users = await db.users.find(
            {"user_id": {"$in": user_ids}},
            {"_id": 0, "user_id": 1, "name": 1, "email": 1}
        ).to_list(len(user_ids) or 1)
        by_id = {u["user_id"]: u for u in users}
        for payment in payments:
            payment["user"] = by_id.get(payment["user_id"])

        return {"payments": payments, "total": total}

    @staticmethod
    def _require_open(row: Dict[str, Any], settled_ok: List[str]) -> None:
        """A payment decision must agree with where its subscription already is."""
        current = row.get("status")
        if current in PENDING_STATUSES or current in settled_ok:
            return
        raise PaymentError(f"Subscription already settled ({current})", status_code=409)

    async def update_status(
        self,
        payment_id: str,
        status: str,
        admin_id: str,
        notes: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        new_status = PaymentRecordStatus(status)
        db = await self._get_db()
        payment = await db.payments.find_one({"payment_id": payment_id}, {"_id": 0})
        if not payment:
            raise PaymentError("Payment not found", status_code=404)

        now = datetime.now(timezone.utc)
        updates: Dict[str, Any] = {"status": new_status.value}

        if new_status == PaymentRecordStatus.VERIFIED:
            row = await subscription_service.get_subscription(payment["subscription_id"])
            self._require_open(row, settled_ok=ACTIVE_STATUSES)
            if row.get("status") in PENDING_STATUSES:
                await subscription_service.activate_verified(row, payment_id=payment["reference_number"])
            updates.update({
                "verification_date": now,
                "verified_by": admin_id,
                "verification_notes": notes,
            })
        elif new_status == PaymentRecordStatus.REJECTED:
            reason = rejection_reason or notes or "Payment could not be verified"
            row = await subscription_service.get_subscription(payment["subscription_id"])
            self._require_open(row, settled_ok=[SubscriptionStatus.REJECTED.value])
            if row.get("status") in PENDING_STATUSES:
                await subscription_service.reject(row["subscription_id"], reason, rejected_by=admin_id)
            updates.update({
                "rejection_reason": reason,
                "rejected_by": admin_id,
                "rejection_date": now,
            })
        else:
            updates["verification_notes"] = notes

        await db.payments.update_one({"payment_id": payment_id}, {"$set": updates})
        logger.info(f"Payment {payment_id} marked {new_status.value} by {admin_id}")
        return {**payment, **updates}

    # ========================================================================
    # Gateway webhook
    # ========================================================================

    async def handle_webhook(self, body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if not verify_webhook_signature(body, signature):
            logger.warning("Webhook rejected: bad signature")
            raise PaymentError("Invalid webhook signature")

        try:
            event = json.loads(body)
        except ValueError:
            raise PaymentError("Malformed webhook payload")
        if not isinstance(event, dict):
            raise PaymentError("Malformed webhook payload")

        event_type = event.get("event")
        payload = event.get("payload") or {}
        entity = (payload.get("payment") or {}).get("entity") or {}
        order_id = entity.get("order_id")
        gateway_payment_id = entity.get("id")

        if event_type not in ("payment.captured", "payment.failed"):
            logger.info(f"Webhook event {event_type} ignored")
            return {"event": event_type, "handled": False}

        db = await self._get_db()
        row = await db.subscriptions.find_one(
            {"order_id": order_id, "status": {"$in": PENDING_STATUSES}},
            {"_id": 0}
        )
        if not row:
            logger.warning(f"Webhook {event_type} for unknown or settled order {order_id}")
            return {"event": event_type, "handled": False}

        if event_type == "payment.captured":
            await subscription_service.activate_verified(row, payment_id=gateway_payment_id)
        else:
            reason = entity.get("error_description") or "Payment failed"
            await subscription_service.reject(row["subscription_id"], reason, rejected_by="webhook")

        logger.info(f"Webhook {event_type} processed for order {order_id}")
        return {"event": event_type, "handled": True, "subscription_id": row["subscription_id"]}


payment_service = PaymentService()
