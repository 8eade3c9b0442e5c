"""Admin API: users, manual subscriptions, payment review and trials."""
from datetime import datetime
from typing import Optional, Dict, Any
from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field

from middleware import require_admin
from job_runner import run_subscription_expiry
from patentsbrowser.models.user import AuthContext
from patentsbrowser.services.admin_service import admin_service
from patentsbrowser.services.subscription_service import subscription_service
from patentsbrowser.services.payment_service import payment_service
from patentsbrowser.services.trial_service import trial_service, DEFAULT_EXTENSION_DAYS
from utils.responses import success_response
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class ManualSubscriptionRequest(BaseModel):
    start_date: datetime
    end_date: datetime
    status: str = Field("active", pattern="^(active|paid|trial)$")
    plan_type: str = "custom"
    plan_id: Optional[str] = None
    amount: int = Field(0, ge=0)


class PaymentStatusRequest(BaseModel):
    status: str = Field(..., pattern="^(verified|rejected|unverified)$")
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = None


# ============================================
# Users
# ============================================

@router.get("/users")
async def list_users(
    search: Optional[str] = None,
    status: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    admin: AuthContext = Depends(require_admin),
):
    result = await admin_service.list_users(search=search, status=status, skip=skip, limit=limit)
    return success_response("Users fetched", result)


@router.get("/subscription-stats")
async def subscription_stats(admin: AuthContext = Depends(require_admin)):
    stats = await admin_service.get_subscription_stats()
    return success_response("Subscription statistics fetched", stats)


@router.get("/users/{user_id}")
async def get_user(user_id: str, admin: AuthContext = Depends(require_admin)):
    result = await admin_service.get_user(user_id)
    return success_response("User fetched", result)


@router.put("/users/{user_id}")
async def update_user(
    user_id: str,
    updates: Dict[str, Any] = Body(...),
    admin: AuthContext = Depends(require_admin),
):
    user = await admin_service.update_user(user_id, updates, admin.user_id)
    return success_response("User updated", user)


@router.delete("/users/{user_id}")
async def delete_user(user_id: str, admin: AuthContext = Depends(require_admin)):
    result = await admin_service.delete_user(user_id, admin.user_id)
    return success_response("User deleted", result)


@router.put("/users/{user_id}/make-admin")
async def make_admin(user_id: str, admin: AuthContext = Depends(require_admin)):
    user = await admin_service.set_admin(user_id, True, admin.user_id)
    return success_response("User promoted to admin", user)


@router.put("/users/{user_id}/remove-admin")
async def remove_admin(user_id: str, admin: AuthContext = Depends(require_admin)):
    user = await admin_service.set_admin(user_id, False, admin.user_id)
    return success_response("Admin rights removed", user)


@router.post("/users/{user_id}/subscription", status_code=201)
async def manual_subscription(
    user_id: str,
    data: ManualSubscriptionRequest,
    admin: AuthContext = Depends(require_admin),
):
    """Grant a subscription window without payment. Stacks onto an active plan."""
    subscription = await subscription_service.activate_manual(
        user_id,
        data.start_date,
        data.end_date,
        status=data.status,
        plan_type=data.plan_type,
        amount=data.amount,
        plan_id=data.plan_id,
        created_by=admin.user_id,
    )
    return success_response("Subscription activated", subscription, status_code=201)


@router.post("/subscriptions/{subscription_id}/reject")
async def reject_subscription(
    subscription_id: str,
    data: Optional[RejectRequest] = None,
    admin: AuthContext = Depends(require_admin),
):
    reason = data.reason if data else None
    subscription = await subscription_service.reject(subscription_id, reason, rejected_by=admin.user_id)
    return success_response("Subscription rejected", subscription)


# ============================================
# Payments
# ============================================

@router.get("/payments")
async def list_payments(
    status: Optional[str] = Query(None, pattern="^(verified|rejected|unverified)$"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    admin: AuthContext = Depends(require_admin),
):
    result = await payment_service.list_payments(status=status, limit=limit, skip=skip)
    return success_response("Payments fetched", result)


@router.put("/payments/{payment_id}/status")
async def update_payment_status(
    payment_id: str,
    data: PaymentStatusRequest,
    admin: AuthContext = Depends(require_admin),
):
    payment = await payment_service.update_status(
        payment_id,
        data.status,
        admin.user_id,
        notes=data.notes,
        rejection_reason=data.rejection_reason,
    )
    return success_response(f"Payment marked {data.status}", payment)


# ============================================
# Trials
# ============================================

@router.post("/trials/trigger-check")
async def trigger_trial_check(admin: AuthContext = Depends(require_admin)):
    logger.info(f"Expiry check triggered by {admin.user_id}")
    result = await run_subscription_expiry()
    return success_response(result["message"], result)


@router.get("/trials/statistics")
async def trial_statistics(admin: AuthContext = Depends(require_admin)):
    stats = await trial_service.get_statistics()
    return success_response("Trial statistics fetched", stats)


@router.get("/trials/users")
async def trial_users(admin: AuthContext = Depends(require_admin)):
    users = await trial_service.get_trial_users()
    return success_response("Trial users fetched", users)


@router.post("/trials/extend/{user_id}")
async def extend_trial(
    user_id: str,
    days: int = Query(DEFAULT_EXTENSION_DAYS, ge=1, le=365),
    admin: AuthContext = Depends(require_admin),
):
    result = await trial_service.extend_trial(user_id, days)
    return success_response(f"Trial extended by {days} days", result)
