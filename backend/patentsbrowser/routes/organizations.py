"""Organization API: creation, invites, roster and subscription."""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from middleware import require_auth
from patentsbrowser.models.user import AuthContext
from patentsbrowser.models.organizations import (
    OrganizationSize,
    OrganizationType,
    OrganizationSubscriptionUpdate,
)
from patentsbrowser.services.organization_service import organization_service
from utils.responses import success_response
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/organization", tags=["organization"])


class CreateOrganizationRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=120)
    size: OrganizationSize
    type: OrganizationType


@router.post("", status_code=201)
async def create_organization(data: CreateOrganizationRequest, auth: AuthContext = Depends(require_auth)):
    org = await organization_service.create_organization(auth, data.name, data.size.value, data.type.value)
    return success_response("Organization created successfully", org, status_code=201)


@router.post("/invite")
async def generate_invite(auth: AuthContext = Depends(require_auth)):
    invite = await organization_service.generate_invite(auth)
    return success_response("Invite link generated", invite)


@router.get("/validate-invite/{token}")
async def validate_invite(token: str):
    """Public: lets the signup page show which organization the link is for."""
    result = await organization_service.validate_invite(token)
    return success_response("Invite link is valid", result)


@router.post("/join/{token}")
async def join_organization(token: str, auth: AuthContext = Depends(require_auth)):
    result = await organization_service.join_organization(token, auth.user_id)
    return success_response("Joined organization successfully", result)


@router.get("/details")
async def organization_details(auth: AuthContext = Depends(require_auth)):
    details = await organization_service.get_details(auth)
    return success_response("Organization details fetched", details)


@router.get("/members")
async def list_members(auth: AuthContext = Depends(require_auth)):
    members = await organization_service.get_members(auth)
    return success_response("Members fetched", members)


@router.delete("/members/{member_id}")
async def remove_member(member_id: str, auth: AuthContext = Depends(require_auth)):
    result = await organization_service.remove_member(auth, member_id)
    return success_response("Member removed successfully", result)


@router.put("/subscription")
async def update_subscription(data: OrganizationSubscriptionUpdate, auth: AuthContext = Depends(require_auth)):
    subscription = await organization_service.update_subscription(auth, data)
    return success_response("Organization subscription updated", subscription)
