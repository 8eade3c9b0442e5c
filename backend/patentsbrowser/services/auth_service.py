"""Authentication Service - signup, OTP verification, single-session login.

Each successful login stores the issued JWT as the user's active_token;
require_auth rejects any other token, so a new login ends older sessions.
"""
from database import database
from patentsbrowser.services.errors import ServiceError
from auth import (
    hash_password,
    verify_password,
    create_access_token,
    validate_password_strength,
)
from patentsbrowser.models.user import (
    User,
    SignupRequest,
    SignupWithInviteRequest,
    LoginRequest,
    VerifyOtpRequest,
    ProfileUpdate,
    PRIVATE_FIELDS,
    public_user,
)
from patentsbrowser.services import otp_service
from patentsbrowser.services.organization_service import organization_service, OrganizationError
from datetime import datetime, timezone, timedelta
from typing import Dict, Any
import os
import logging

logger = logging.getLogger(__name__)

PENDING_SIGNUP_TTL_SECONDS = int(os.getenv("PENDING_SIGNUP_TTL_SECONDS", "86400"))


class AuthError(ServiceError):
    pass


class AuthService:
    def __init__(self):
        self.db = None

    async def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def _create_unverified_user(self, data: SignupRequest) -> Dict[str, Any]:
        email = data.email.lower()
        db = await self._get_db()
        if await db.users.find_one({"email": email}, {"_id": 0, "user_id": 1}):
            raise AuthError("User already exists")

        is_valid, message = validate_password_strength(data.password)
        if not is_valid:
            raise AuthError(message)

        user = User(
            name=data.name.strip(),
            email=email,
            password_hash=hash_password(data.password),
        )
        doc = user.model_dump()
        await db.users.insert_one({**doc})
        logger.info(f"User {user.user_id} registered ({email})")
        return doc

    async def signup(self, data: SignupRequest) -> Dict[str, Any]:
        user = await self._create_unverified_user(data)
        await otp_service.issue_otp(user["email"], purpose="signup")
        return {"user_id": user["user_id"], "email": user["email"]}

    async def signup_with_invite(self, data: SignupWithInviteRequest) -> Dict[str, Any]:
        """Signup that joins an organization once the email is verified."""
        try:
            invite = await organization_service.validate_invite(data.token)
        except OrganizationError as e:
            raise AuthError(e.message, status_code=e.status_code)

        user = await self._create_unverified_user(data)

        now = datetime.now(timezone.utc)
        db = await self._get_db()
        await db.pending_signups.update_one(
            {"email": user["email"]},
            {"$set": {
                "email": user["email"],
                "user_id": user["user_id"],
                "invite_token": data.token,
                "org_id": invite["organization"]["org_id"],
                "created_at": now,
                "expires_at": now + timedelta(seconds=PENDING_SIGNUP_TTL_SECONDS),
            }},
            upsert=True,
        )
        await otp_service.issue_otp(user["email"], purpose="signup")
        return {
            "user_id": user["user_id"],
            "email": user["email"],
            "organization": invite["organization"],
        }

    async def _issue_session(self, user: Dict[str, Any]) -> Dict[str, Any]:
        token = create_access_token({"user_id": user["user_id"], "email": user["email"]})
        db = await self._get_db()
        await db.users.update_one(
            {"user_id": user["user_id"]},
            {"$set": {"active_token": token, "last_login": datetime.now(timezone.utc)}}
        )
        return {"token": token, "user": public_user(user)}

    async def login(self, data: LoginRequest) -> Dict[str, Any]:
        email = data.email.lower()
        db = await self._get_db()
        user = await db.users.find_one({"email": email}, {"_id": 0})
        if not user or not verify_password(data.password, user.get("password_hash", "")):
            logger.warning(f"Failed login for {email}")
            raise AuthError("Invalid credentials", status_code=401)

        if not user.get("is_email_verified"):
            await otp_service.issue_otp(email, purpose="login")
            return {"requires_verification": True, "email": email}

        session = await self._issue_session(user)
        logger.info(f"User {user['user_id']} logged in")
        return session

    async def verify_otp(self, data: VerifyOtpRequest) -> Dict[str, Any]:
        email = data.email.lower()
        if not await otp_service.verify_otp(email, data.otp):
            raise AuthError("Invalid or expired OTP")

        db = await self._get_db()
        user = await db.users.find_one({"email": email}, {"_id": 0})
        if not user:
            raise AuthError("User not found", status_code=404)

        if not user.get("is_email_verified"):
            await db.users.update_one(
                {"user_id": user["user_id"]},
                {"$set": {"is_email_verified": True, "updated_at": datetime.now(timezone.utc)}}
            )

        result: Dict[str, Any] = {}
        pending = await db.pending_signups.find_one_and_delete({"email": email}, {"_id": 0})
        if pending:
            try:
                result["organization"] = await organization_service.join_organization(
                    pending["invite_token"], user["user_id"]
                )
                user = await db.users.find_one({"email": email}, {"_id": 0})
            except OrganizationError as e:
                logger.warning(f"Invite join failed for {email}: {e.message}")
                result["organization_error"] = e.message

        result.update(await self._issue_session(user))
        return result

    async def resend_otp(self, email: str) -> None:
        email = email.lower()
        db = await self._get_db()
        if not await db.users.find_one({"email": email}, {"_id": 0, "user_id": 1}):
            raise AuthError("User not found", status_code=404)
        await otp_service.issue_otp(email, purpose="resend")

    async def logout(self, user_id: str) -> None:
        db = await self._get_db()
        await db.users.update_one({"user_id": user_id}, {"$set": {"active_token": None}})
        logger.info(f"User {user_id} logged out")

    async def get_profile(self, user_id: str) -> Dict[str, Any]:
        db = await self._get_db()
        user = await db.users.find_one({"user_id": user_id}, PRIVATE_FIELDS)
        if not user:
            raise AuthError("User not found", status_code=404)
        return user

    async def update_profile(self, user_id: str, data: ProfileUpdate) -> Dict[str, Any]:
        updates = data.model_dump(exclude_none=True, mode="json")
        if not updates:
            raise AuthError("No profile fields to update")

        db = await self._get_db()
        updates["updated_at"] = datetime.now(timezone.utc)
        await db.users.update_one({"user_id": user_id}, {"$set": updates})
        return await self.get_profile(user_id)


auth_service = AuthService()
