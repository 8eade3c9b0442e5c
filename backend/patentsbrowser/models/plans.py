"""PatentsBrowser Plan Catalog Models

Individual and organization tiers for each billing period.
Prices are stored in paise (minor INR units).
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, timezone
from enum import Enum
import uuid


class PlanType(str, Enum):
    """Billing period of a plan"""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    HALF_YEARLY = "half_yearly"
    YEARLY = "yearly"


class AccountType(str, Enum):
    """Who a plan is sold to"""
    INDIVIDUAL = "individual"
    ORGANIZATION = "organization"


# Nominal plan length in calendar days
PLAN_PERIOD_DAYS = {
    PlanType.MONTHLY: 30,
    PlanType.QUARTERLY: 90,
    PlanType.HALF_YEARLY: 180,
    PlanType.YEARLY: 365,
}

TRIAL_PERIOD_DAYS = 14


def period_days(plan_type: str) -> int:
    """Days granted by a plan type. Unknown types fall back to monthly."""
    try:
        return PLAN_PERIOD_DAYS[PlanType(plan_type)]
    except ValueError:
        return PLAN_PERIOD_DAYS[PlanType.MONTHLY]


class PricingPlan(BaseModel):
    """Plan record as stored in pricing_plans"""
    plan_id: str = Field(default_factory=lambda: f"PLN-{uuid.uuid4().hex[:8].upper()}")
    name: str
    type: PlanType
    account_type: AccountType
    price: int  # paise
    discount_percentage: int = 0
    features: List[str] = Field(default_factory=list)
    popular: bool = False
    is_active: bool = True

    # Organization plans only
    organization_base_price: Optional[int] = None
    member_price: Optional[int] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore", "use_enum_values": True}


# ============================================================================
# Default catalog (seeded when pricing_plans is empty)
# ============================================================================

ORGANIZATION_BASE_PRICE = 400000  # ₹4,000
ORGANIZATION_MEMBER_PRICE = 100000  # ₹1,000 per member

_INDIVIDUAL_BASE = ["Full search access"]
_ORGANIZATION_BASE = ["Full search access", "Unlimited patent saves", "Team collaboration", "Admin dashboard"]

DEFAULT_PLANS = [
    PricingPlan(
        name="Individual Monthly",
        type=PlanType.MONTHLY,
        account_type=AccountType.INDIVIDUAL,
        price=99900,
        features=_INDIVIDUAL_BASE + ["Save up to 50 patents", "Basic support"],
    ),
    PricingPlan(
        name="Individual Quarterly",
        type=PlanType.QUARTERLY,
        account_type=AccountType.INDIVIDUAL,
        price=249900,
        discount_percentage=10,
        features=_INDIVIDUAL_BASE + ["Save up to 200 patents", "Priority support", "10% discount"],
        popular=True,
    ),
    PricingPlan(
        name="Individual Half-Yearly",
        type=PlanType.HALF_YEARLY,
        account_type=AccountType.INDIVIDUAL,
        price=449900,
        discount_percentage=15,
        features=_INDIVIDUAL_BASE + ["Unlimited patent saves", "Premium support", "15% discount"],
    ),
    PricingPlan(
        name="Individual Yearly",
        type=PlanType.YEARLY,
        account_type=AccountType.INDIVIDUAL,
        price=799900,
        discount_percentage=20,
        features=_INDIVIDUAL_BASE + ["Unlimited patent saves", "Premium support", "API access", "20% discount"],
    ),
    PricingPlan(
        name="Organization Monthly",
        type=PlanType.MONTHLY,
        account_type=AccountType.ORGANIZATION,
        price=299900,
        features=_ORGANIZATION_BASE + ["Basic support"],
        organization_base_price=ORGANIZATION_BASE_PRICE,
        member_price=ORGANIZATION_MEMBER_PRICE,
    ),
    PricingPlan(
        name="Organization Quarterly",
        type=PlanType.QUARTERLY,
        account_type=AccountType.ORGANIZATION,
        price=749900,
        discount_percentage=10,
        features=_ORGANIZATION_BASE + ["Priority support", "10% discount"],
        popular=True,
        organization_base_price=ORGANIZATION_BASE_PRICE,
        member_price=ORGANIZATION_MEMBER_PRICE,
    ),
    PricingPlan(
        name="Organization Half-Yearly",
        type=PlanType.HALF_YEARLY,
        account_type=AccountType.ORGANIZATION,
        price=1349900,
        discount_percentage=15,
        features=_ORGANIZATION_BASE + ["Premium support", "15% discount"],
        organization_base_price=ORGANIZATION_BASE_PRICE,
        member_price=ORGANIZATION_MEMBER_PRICE,
    ),
    PricingPlan(
        name="Organization Yearly",
        type=PlanType.YEARLY,
        account_type=AccountType.ORGANIZATION,
        price=2399900,
        discount_percentage=20,
        features=_ORGANIZATION_BASE + ["Premium support", "API access", "20% discount"],
        organization_base_price=ORGANIZATION_BASE_PRICE,
        member_price=ORGANIZATION_MEMBER_PRICE,
    ),
]
