"""PatentsBrowser Payment Models

A payment records a user-submitted UPI reference (UTR) against a pending
order. An admin, or a signed gateway webhook, later marks it verified or
rejected.
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, timezone
from enum import Enum
import uuid


class PaymentRecordStatus(str, Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    REJECTED = "rejected"


class Payment(BaseModel):
    payment_id: str = Field(default_factory=lambda: f"PAY-{uuid.uuid4().hex[:12].upper()}")
    user_id: str
    subscription_id: str
    order_id: str
    plan_id: Optional[str] = None
    plan_name: Optional[str] = None
    amount: int  # paise
    currency: str = "INR"
    reference_number: str
    status: PaymentRecordStatus = PaymentRecordStatus.UNVERIFIED
    payment_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    verification_date: Optional[datetime] = None
    verified_by: Optional[str] = None
    verification_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    rejected_by: Optional[str] = None
    rejection_date: Optional[datetime] = None

    model_config = {"extra": "ignore", "use_enum_values": True}
