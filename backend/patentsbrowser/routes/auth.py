"""Auth API: signup, OTP verification, login/logout and profile."""
from fastapi import APIRouter, Depends
from middleware import require_auth
from patentsbrowser.models.user import (
    AuthContext,
    SignupRequest,
    SignupWithInviteRequest,
    LoginRequest,
    VerifyOtpRequest,
    ResendOtpRequest,
    ProfileUpdate,
)
from patentsbrowser.services.auth_service import auth_service
from utils.responses import success_response
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/signup", status_code=201)
async def signup(data: SignupRequest):
    result = await auth_service.signup(data)
    return success_response("OTP sent to your email. Please verify to continue.", result, status_code=201)


@router.post("/signup-with-invite", status_code=201)
async def signup_with_invite(data: SignupWithInviteRequest):
    """Register and join an organization after email verification."""
    result = await auth_service.signup_with_invite(data)
    return success_response("OTP sent to your email. Verify to join the organization.", result, status_code=201)


@router.post("/login")
async def login(data: LoginRequest):
    result = await auth_service.login(data)
    if result.get("requires_verification"):
        return success_response("Please verify your email with OTP", result)
    return success_response("Login successful", result)


@router.post("/verify-otp")
async def verify_otp(data: VerifyOtpRequest):
    result = await auth_service.verify_otp(data)
    return success_response("Email verified successfully", result)


@router.post("/resend-otp")
async def resend_otp(data: ResendOtpRequest):
    await auth_service.resend_otp(data.email)
    return success_response("OTP resent successfully")


@router.post("/logout")
async def logout(auth: AuthContext = Depends(require_auth)):
    await auth_service.logout(auth.user_id)
    return success_response("Logged out successfully")


@router.get("/profile")
async def get_profile(auth: AuthContext = Depends(require_auth)):
    profile = await auth_service.get_profile(auth.user_id)
    return success_response("Profile fetched successfully", profile)


@router.put("/profile")
async def update_profile(data: ProfileUpdate, auth: AuthContext = Depends(require_auth)):
    profile = await auth_service.update_profile(auth.user_id, data)
    return success_response("Profile updated successfully", profile)
