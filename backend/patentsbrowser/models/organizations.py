"""PatentsBrowser Organization Models

An organization has exactly one admin (its creator). Members join through
single-use invite links and inherit the organization's plan.
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, timezone, timedelta
from enum import Enum
import uuid

from patentsbrowser.models.plans import (
    ORGANIZATION_BASE_PRICE,
    ORGANIZATION_MEMBER_PRICE,
    TRIAL_PERIOD_DAYS,
)

INVITE_TTL_DAYS = 7


class OrganizationSize(str, Enum):
    XS = "1-10"
    S = "11-50"
    M = "51-200"
    L = "201-500"
    XL = "501+"


class OrganizationType(str, Enum):
    STARTUP = "startup"
    ENTERPRISE = "enterprise"
    GOVERNMENT = "government"
    EDUCATIONAL = "educational"
    RESEARCH = "research"
    OTHER = "other"


class OrganizationRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


class OrgMember(BaseModel):
    user_id: str
    role: OrganizationRole = OrganizationRole.MEMBER
    joined_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"use_enum_values": True}


class InviteLink(BaseModel):
    """Single-use invite token"""
    token: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc) + timedelta(days=INVITE_TTL_DAYS)
    )
    used: bool = False


def _trial_end() -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=TRIAL_PERIOD_DAYS)


class OrganizationSubscription(BaseModel):
    """Subscription snapshot embedded in the organization document"""
    plan: str = "trial"
    start_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    end_date: datetime = Field(default_factory=_trial_end)
    status: str = "trial"
    base_price: int = ORGANIZATION_BASE_PRICE
    member_price: int = ORGANIZATION_MEMBER_PRICE


class Organization(BaseModel):
    org_id: str = Field(default_factory=lambda: f"ORG-{uuid.uuid4().hex[:8].upper()}")
    name: str
    size: OrganizationSize
    type: OrganizationType
    admin_id: str
    members: List[OrgMember] = Field(default_factory=list)
    invite_links: List[InviteLink] = Field(default_factory=list)
    subscription: OrganizationSubscription = Field(default_factory=OrganizationSubscription)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore", "use_enum_values": True}


class OrganizationSubscriptionUpdate(BaseModel):
    plan: str
    start_date: datetime
    end_date: datetime
    base_price: Optional[int] = None
    member_price: Optional[int] = None
