"""PatentsBrowser User Model

The user document mirrors a few subscription and organization fields
(subscription_status, trial dates, organization_*) so hot paths can read
them without joining the subscriptions or organizations collections.
"""

from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime, timezone
from enum import Enum
import uuid


class UserType(str, Enum):
    INDIVIDUAL = "individual"
    ORGANIZATION_ADMIN = "organization_admin"
    ORGANIZATION_MEMBER = "organization_member"


class PaymentStatus(str, Enum):
    FREE = "free"
    PAID = "paid"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    PREFER_NOT_TO_SAY = "prefer_not_to_say"


class User(BaseModel):
    user_id: str = Field(default_factory=lambda: f"USR-{uuid.uuid4().hex[:12].upper()}")
    name: str
    email: EmailStr
    password_hash: str

    is_email_verified: bool = False
    active_token: Optional[str] = None
    last_login: Optional[datetime] = None
    is_admin: bool = False
    user_type: UserType = UserType.INDIVIDUAL

    # Subscription mirror
    subscription_status: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.FREE
    trial_start_date: Optional[datetime] = None
    trial_end_date: Optional[datetime] = None

    # Organization mirror
    is_organization: bool = False
    organization_id: Optional[str] = None
    organization_name: Optional[str] = None
    organization_size: Optional[str] = None
    organization_type: Optional[str] = None
    organization_role: Optional[str] = None

    # Profile
    address: str = ""
    number: str = ""
    phone_code: str = ""
    image_url: str = ""
    gender: Gender = Gender.PREFER_NOT_TO_SAY
    nationality: str = ""

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore", "use_enum_values": True}


# Fields reset when a user leaves an organization
ORGANIZATION_RESET_FIELDS = {
    "is_organization": False,
    "organization_id": None,
    "organization_name": None,
    "organization_size": None,
    "organization_type": None,
    "organization_role": None,
    "user_type": UserType.INDIVIDUAL.value,
}

# Never returned by any endpoint
PRIVATE_FIELDS = {"_id": 0, "password_hash": 0, "active_token": 0}


class SignupRequest(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=8)

    model_config = {"extra": "ignore"}


class SignupWithInviteRequest(SignupRequest):
    token: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str = Field(min_length=6, max_length=6)


class ResendOtpRequest(BaseModel):
    email: EmailStr


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    number: Optional[str] = None
    phone_code: Optional[str] = None
    image_url: Optional[str] = None
    gender: Optional[Gender] = None
    nationality: Optional[str] = None


class AuthContext(BaseModel):
    """Authenticated caller, built once per request by require_auth."""
    user_id: str
    email: str
    name: Optional[str] = None
    is_admin: bool = False
    user_type: UserType = UserType.INDIVIDUAL
    organization_id: Optional[str] = None
    organization_role: Optional[str] = None
    subscription_status: Optional[str] = None
    token: Optional[str] = None

    @classmethod
    def from_user(cls, user: dict, token: Optional[str] = None) -> "AuthContext":
        return cls(
            user_id=user["user_id"],
            email=user["email"],
            name=user.get("name"),
            is_admin=bool(user.get("is_admin")),
            user_type=user.get("user_type") or UserType.INDIVIDUAL,
            organization_id=user.get("organization_id"),
            organization_role=user.get("organization_role"),
            subscription_status=user.get("subscription_status"),
            token=token,
        )

    @property
    def is_organization_member(self) -> bool:
        return self.organization_role == "member"


def public_user(user: dict) -> dict:
    """Small user summary returned by the auth endpoints."""
    return {
        "user_id": user["user_id"],
        "name": user.get("name"),
        "email": user["email"],
        "is_admin": bool(user.get("is_admin")),
        "user_type": user.get("user_type", UserType.INDIVIDUAL.value),
        "subscription_status": user.get("subscription_status"),
    }
