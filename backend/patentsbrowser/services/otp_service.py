"""
Email OTP for signup and login verification.
- OTP stored as SHA-256 hash: sha256(code + ":" + email + ":" + OTP_PEPPER). Never store raw OTP.
- One live code per email (unique index); a new issue replaces the old one.
- Records expire through a TTL index on expires_at; attempts are capped.
- Delivery is a logged hand-off. The raw code is only logged in development.
"""
import hashlib
import logging
import os
import secrets
from datetime import datetime, timezone, timedelta
from typing import Optional

from database import database

logger = logging.getLogger(__name__)

OTP_PEPPER = (os.getenv("OTP_PEPPER") or "").strip()
OTP_TTL_SECONDS = int(os.getenv("OTP_TTL_SECONDS", "300"))
OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))

OTP_LENGTH = 6


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _code_hash(code: str, email: str) -> str:
    return hashlib.sha256(f"{code}:{_normalize_email(email)}:{OTP_PEPPER}".encode()).hexdigest()


def _generate_otp() -> str:
    return "".join(secrets.choice("0123456789") for _ in range(OTP_LENGTH))


def _parse_dt(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except (ValueError, TypeError):
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def deliver_otp(email: str, code: str, purpose: str) -> None:
    """Hand the code to the mail transport. Only logs here."""
    if os.getenv("ENVIRONMENT", "production") == "development":
        logger.info(f"OTP for {email} ({purpose}): {code}")
    else:
        logger.info(f"OTP issued for {email} ({purpose})")


async def issue_otp(email: str, purpose: str = "verify_email") -> str:
    """Create or replace the OTP for an email and deliver it."""
    email = _normalize_email(email)
    code = _generate_otp()
    now = datetime.now(timezone.utc)

    db = database.get_db()
    await db.email_otps.update_one(
        {"email": email},
        {"$set": {
            "email": email,
            "code_hash": _code_hash(code, email),
            "purpose": purpose,
            "attempts": 0,
            "created_at": now,
            "expires_at": now + timedelta(seconds=OTP_TTL_SECONDS),
        }},
        upsert=True,
    )
    deliver_otp(email, code, purpose)
    return code


async def verify_otp(email: str, code: str) -> bool:
    """True when the code matches a live record; the record is consumed on success."""
    email = _normalize_email(email)
    db = database.get_db()
    record = await db.email_otps.find_one({"email": email}, {"_id": 0})
    if not record:
        return False

    now = datetime.now(timezone.utc)
    expires_at = _parse_dt(record.get("expires_at"))
    if not expires_at or expires_at < now:
        await db.email_otps.delete_one({"email": email})
        return False

    if record.get("attempts", 0) >= OTP_MAX_ATTEMPTS:
        logger.warning(f"OTP attempts exhausted for {email}")
        await db.email_otps.delete_one({"email": email})
        return False

    if not secrets.compare_digest(record.get("code_hash", ""), _code_hash(code, email)):
        await db.email_otps.update_one({"email": email}, {"$inc": {"attempts": 1}})
        return False

    await db.email_otps.delete_one({"email": email})
    return True
