from fastapi import Request, HTTPException, Depends, status
from typing import Optional
from datetime import datetime, timezone
import logging
from auth import decode_access_token
from database import database
from patentsbrowser.models.user import AuthContext
from patentsbrowser.models.subscriptions import SubscriptionStatus

logger = logging.getLogger(__name__)

def _auth_error(message: str, code: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"message": message, "code": code}
    )

def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None

async def require_auth(request: Request) -> AuthContext:
    """Require a valid token that is still the user's active session."""
    token = _bearer_token(request)
    if not token:
        raise _auth_error("Please authenticate", "AUTH_REQUIRED")

    payload = decode_access_token(token)
    if not payload or not payload.get("user_id"):
        raise _auth_error("Invalid token", "INVALID_TOKEN")

    db = database.get_db()
    user = await db.users.find_one(
        {"user_id": payload["user_id"]},
        {"_id": 0, "password_hash": 0}
    )
    if not user:
        raise _auth_error("User not found", "USER_NOT_FOUND")

    # Single session per user: a newer login replaces active_token
    if user.get("active_token") != token:
        raise _auth_error("Session expired. Please login again", "SESSION_EXPIRED")

    return AuthContext.from_user(user, token=token)

async def require_admin(auth: AuthContext = Depends(require_auth)) -> AuthContext:
    """Require platform admin."""
    if not auth.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return auth

def _as_utc(value) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

def _subscription_denied(message: str, subscription_status: Optional[str], **extra) -> HTTPException:
    data = {"is_subscription_active": False, "subscription_status": subscription_status}
    data.update(extra)
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"message": message, "code": "SUBSCRIPTION_REQUIRED", "data": data}
    )

async def require_active_subscription(auth: AuthContext = Depends(require_auth)) -> AuthContext:
    """Gate premium endpoints on the caller's subscription state."""
    db = database.get_db()
    user = await db.users.find_one({"user_id": auth.user_id}, {"_id": 0, "password_hash": 0})
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    current = user.get("subscription_status")

    if current == SubscriptionStatus.TRIAL.value:
        trial_end = _as_utc(user.get("trial_end_date"))
        today = datetime.now(timezone.utc).date()
        if not trial_end or trial_end.date() < today:
            raise _subscription_denied(
                "Trial period has expired. Please subscribe to continue using premium features.",
                SubscriptionStatus.INACTIVE.value,
                end_date=user.get("trial_end_date"),
            )
        return auth

    if current == SubscriptionStatus.PAYMENT_PENDING.value:
        return auth

    if current in (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAID.value):
        if user.get("organization_role") == "member":
            org = await db.organizations.find_one(
                {"org_id": user.get("organization_id")},
                {"_id": 0, "subscription": 1}
            )
            org_end = _as_utc(((org or {}).get("subscription") or {}).get("end_date"))
            if not org_end or org_end <= datetime.now(timezone.utc):
                raise _subscription_denied(
                    "Your subscription has expired. Please renew to continue using premium features.",
                    SubscriptionStatus.INACTIVE.value,
                )
            return auth

        live = await db.subscriptions.find_one(
            {
                "user_id": auth.user_id,
                "status": {"$in": [SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAID.value]},
                "end_date": {"$gt": datetime.now(timezone.utc)},
            },
            {"_id": 0}
        )
        if not live:
            raise _subscription_denied(
                "Your subscription has expired. Please renew to continue using premium features.",
                SubscriptionStatus.INACTIVE.value,
            )
        return auth

    messages = {
        SubscriptionStatus.INACTIVE.value: "Your subscription is inactive. Please contact support to reactivate.",
        SubscriptionStatus.CANCELLED.value: "Your subscription has been cancelled. Please subscribe again to continue using premium features.",
        SubscriptionStatus.REJECTED.value: "Your payment was rejected. Please try again or contact support.",
    }
    logger.info(f"Subscription gate denied user {auth.user_id} (status={current})")
    raise _subscription_denied(
        messages.get(current, "Invalid subscription status. Please contact support."),
        current,
    )
