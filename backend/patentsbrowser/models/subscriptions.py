"""PatentsBrowser Subscription Models

A user owns one "main" subscription (no parent) and any number of
stacked subscriptions that point at it through parent_subscription_id.
Each row keeps a snapshot of the plan it was sold under.
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, timezone
from enum import Enum
import uuid


class SubscriptionStatus(str, Enum):
    """Lifecycle states of a subscription row"""
    TRIAL = "trial"
    PAYMENT_PENDING = "payment_pending"
    ACTIVE = "active"
    UPGRADE_PENDING = "upgrade_pending"
    DOWNGRADE_PENDING = "downgrade_pending"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    INACTIVE = "inactive"
    PAID = "paid"


# Rows waiting on a payment decision
PENDING_STATUSES = [
    SubscriptionStatus.PAYMENT_PENDING.value,
    SubscriptionStatus.UPGRADE_PENDING.value,
    SubscriptionStatus.DOWNGRADE_PENDING.value,
]


class ChangeType(str, Enum):
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"


class Subscription(BaseModel):
    """Subscription row as stored in the subscriptions collection"""
    subscription_id: str = Field(default_factory=lambda: f"SUB-{uuid.uuid4().hex[:12].upper()}")
    user_id: str

    # Plan snapshot
    plan_id: Optional[str] = None
    plan_type: str
    plan_name: Optional[str] = None
    amount: int = 0  # paise

    status: SubscriptionStatus
    start_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    end_date: datetime

    # Stacking
    parent_subscription_id: Optional[str] = None

    trial_ends_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    # Payment references
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    signature: Optional[str] = None
    rejection_reason: Optional[str] = None

    # Plan change
    change_type: Optional[ChangeType] = None
    previous_subscription_id: Optional[str] = None

    created_by: Optional[str] = None  # admin user_id for manual grants
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore", "use_enum_values": True}
