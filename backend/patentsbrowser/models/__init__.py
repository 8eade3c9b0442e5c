"""PatentsBrowser Data Models"""

from .plans import (
    PlanType,
    AccountType,
    PricingPlan,
    PLAN_PERIOD_DAYS,
    TRIAL_PERIOD_DAYS,
)
from .subscriptions import (
    Subscription,
    SubscriptionStatus,
    ChangeType,
)
from .organizations import (
    Organization,
    OrgMember,
    InviteLink,
    OrganizationRole,
)
from .folders import (
    CustomPatentList,
    WorkFile,
    FolderSource,
    SavedPatent,
    PatentReadStatus,
)
from .payments import (
    Payment,
    PaymentRecordStatus,
)
from .user import (
    User,
    UserType,
    AuthContext,
)

__all__ = [
    # Plans
    "PlanType",
    "AccountType",
    "PricingPlan",
    "PLAN_PERIOD_DAYS",
    "TRIAL_PERIOD_DAYS",
    # Subscriptions
    "Subscription",
    "SubscriptionStatus",
    "ChangeType",
    # Organizations
    "Organization",
    "OrgMember",
    "InviteLink",
    "OrganizationRole",
    # Folders
    "CustomPatentList",
    "WorkFile",
    "FolderSource",
    "SavedPatent",
    "PatentReadStatus",
    # Payments
    "Payment",
    "PaymentRecordStatus",
    # Users
    "User",
    "UserType",
    "AuthContext",
]
