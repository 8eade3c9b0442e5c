"""Organization Service - teams, single-use invite links and member roster.

The organization document is the source of truth for membership; the user
document mirrors organization_* fields and user_type for fast role checks.
"""
from database import database
from patentsbrowser.services.errors import ServiceError
from auth import generate_secure_token
from patentsbrowser.models.organizations import (
    Organization,
    OrgMember,
    InviteLink,
    OrganizationRole,
    OrganizationSize,
    OrganizationType,
    OrganizationSubscriptionUpdate,
)
from patentsbrowser.models.user import (
    AuthContext,
    UserType,
    ORGANIZATION_RESET_FIELDS,
    PRIVATE_FIELDS,
)
from patentsbrowser.models.subscriptions import SubscriptionStatus
from datetime import datetime, timezone
from typing import Dict, Any, List
import os
import logging

logger = logging.getLogger(__name__)

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")


class OrganizationError(ServiceError):
    pass


def _require_org_admin(auth: AuthContext, action: str) -> None:
    if auth.user_type != UserType.ORGANIZATION_ADMIN:
        raise OrganizationError(f"Only organization admins can {action}", status_code=403)


class OrganizationService:
    def __init__(self):
        self.db = None

    async def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def _find_by_invite(self, token: str):
        db = await self._get_db()
        return await db.organizations.find_one(
            {"invite_links": {"$elemMatch": {
                "token": token,
                "used": False,
                "expires_at": {"$gt": datetime.now(timezone.utc)},
            }}},
            {"_id": 0}
        )

    async def _owned_org(self, admin_id: str) -> Dict[str, Any]:
        db = await self._get_db()
        org = await db.organizations.find_one({"admin_id": admin_id}, {"_id": 0})
        if not org:
            raise OrganizationError("Organization not found", status_code=404)
        return org

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def create_organization(self, auth: AuthContext, name: str, size: str, org_type: str) -> Dict[str, Any]:
        db = await self._get_db()
        user = await db.users.find_one({"user_id": auth.user_id}, {"_id": 0, "organization_id": 1})
        if not user:
            raise OrganizationError("User not found", status_code=404)
        if user.get("organization_id"):
            raise OrganizationError("You already belong to an organization")

        org = Organization(
            name=name.strip(),
            size=OrganizationSize(size),
            type=OrganizationType(org_type),
            admin_id=auth.user_id,
            members=[OrgMember(user_id=auth.user_id, role=OrganizationRole.ADMIN)],
        )
        doc = org.model_dump()
        await db.organizations.insert_one({**doc})

        await db.users.update_one(
            {"user_id": auth.user_id},
            {"$set": {
                "is_organization": True,
                "organization_id": org.org_id,
                "organization_name": org.name,
                "organization_size": doc["size"],
                "organization_type": doc["type"],
                "organization_role": OrganizationRole.ADMIN.value,
                "user_type": UserType.ORGANIZATION_ADMIN.value,
                "updated_at": datetime.now(timezone.utc),
            }}
        )
        logger.info(f"Organization {org.org_id} created by {auth.user_id}")
        return doc

    async def generate_invite(self, auth: AuthContext) -> Dict[str, Any]:
        _require_org_admin(auth, "generate invite links")
        org = await self._owned_org(auth.user_id)

        link = InviteLink(token=generate_secure_token())
        db = await self._get_db()
        await db.organizations.update_one(
            {"org_id": org["org_id"]},
            {"$push": {"invite_links": link.model_dump()},
             "$set": {"updated_at": datetime.now(timezone.utc)}}
        )
        logger.info(f"Invite link generated for organization {org['org_id']}")
        return {
            "token": link.token,
            "invite_link": f"{FRONTEND_URL}/join-organization/{link.token}",
            "expires_at": link.expires_at,
        }

    async def validate_invite(self, token: str) -> Dict[str, Any]:
        org = await self._find_by_invite(token)
        if not org:
            raise OrganizationError("Invalid or expired invite link", status_code=404)
        return {
            "valid": True,
            "organization": {
                "org_id": org["org_id"],
                "name": org["name"],
                "size": org.get("size"),
                "type": org.get("type"),
            },
        }

    async def join_organization(self, token: str, user_id: str) -> Dict[str, Any]:
        """Consume an invite token and add the user as a member."""
        org = await self._find_by_invite(token)
        if not org:
            raise OrganizationError("Invalid or expired invite link", status_code=404)
        if any(m["user_id"] == user_id for m in org.get("members", [])):
            raise OrganizationError("You are already a member of this organization")

        db = await self._get_db()
        user = await db.users.find_one({"user_id": user_id}, {"_id": 0, "organization_id": 1})
        if not user:
            raise OrganizationError("User not found", status_code=404)
        if user.get("organization_id"):
            raise OrganizationError("You already belong to an organization")

        now = datetime.now(timezone.utc)
        member = OrgMember(user_id=user_id, role=OrganizationRole.MEMBER)
        result = await db.organizations.update_one(
            {"org_id": org["org_id"], "invite_links": {"$elemMatch": {"token": token, "used": False}}},
            {"$set": {"invite_links.$.used": True, "updated_at": now},
             "$push": {"members": member.model_dump()}}
        )
        if result.modified_count == 0:
            raise OrganizationError("Invalid or expired invite link", status_code=404)

        org_subscription = org.get("subscription") or {}
        user_updates = {
            "is_organization": True,
            "organization_id": org["org_id"],
            "organization_name": org["name"],
            "organization_size": org.get("size"),
            "organization_type": org.get("type"),
            "organization_role": OrganizationRole.MEMBER.value,
            "user_type": UserType.ORGANIZATION_MEMBER.value,
            "subscription_status": org_subscription.get("status"),
            "updated_at": now,
        }
        if org_subscription.get("status") == SubscriptionStatus.TRIAL.value:
            user_updates["trial_start_date"] = org_subscription.get("start_date")
            user_updates["trial_end_date"] = org_subscription.get("end_date")
        await db.users.update_one({"user_id": user_id}, {"$set": user_updates})

        logger.info(f"User {user_id} joined organization {org['org_id']}")
        return {"org_id": org["org_id"], "name": org["name"], "role": OrganizationRole.MEMBER.value}

    async def remove_member(self, auth: AuthContext, member_id: str) -> Dict[str, Any]:
        org = await self._owned_org(auth.user_id)
        if member_id == org["admin_id"]:
            raise OrganizationError("Cannot remove the organization admin")
        if not any(m["user_id"] == member_id for m in org.get("members", [])):
            raise OrganizationError("Member not found", status_code=404)

        db = await self._get_db()
        now = datetime.now(timezone.utc)
        await db.organizations.update_one(
            {"org_id": org["org_id"]},
            {"$pull": {"members": {"user_id": member_id}}, "$set": {"updated_at": now}}
        )
        await db.users.update_one(
            {"user_id": member_id},
            {"$set": {
                **ORGANIZATION_RESET_FIELDS,
                "subscription_status": SubscriptionStatus.INACTIVE.value,
                "updated_at": now,
            }}
        )
        logger.info(f"User {member_id} removed from organization {org['org_id']}")
        return {"org_id": org["org_id"], "removed_user_id": member_id}

    # ========================================================================
    # Views
    # ========================================================================

    async def get_details(self, auth: AuthContext) -> Dict[str, Any]:
        db = await self._get_db()
        org = await db.organizations.find_one({"members.user_id": auth.user_id}, {"_id": 0})
        if not org:
            raise OrganizationError("Organization not found", status_code=404)

        is_admin = org["admin_id"] == auth.user_id
        details = {k: v for k, v in org.items() if k != "invite_links"}
        details["member_count"] = len(org.get("members", []))
        details["is_admin"] = is_admin
        if is_admin:
            details["active_invites"] = sum(1 for link in org.get("invite_links", []) if not link.get("used"))
        return details

    async def get_members(self, auth: AuthContext) -> List[Dict[str, Any]]:
        _require_org_admin(auth, "view members")
        org = await self._owned_org(auth.user_id)
        roster = {m["user_id"]: m for m in org.get("members", [])}

        db = await self._get_db()
        users = await db.users.find(
            {"user_id": {"$in": list(roster)}},
            PRIVATE_FIELDS
        ).to_list(1000)

        members = []
        for user in users:
            entry = roster[user["user_id"]]
            members.append({
                "user_id": user["user_id"],
                "name": user.get("name"),
                "email": user.get("email"),
                "role": entry.get("role"),
                "joined_at": entry.get("joined_at"),
                "last_login": user.get("last_login"),
            })
        members.sort(key=lambda m: (m["role"] != OrganizationRole.ADMIN.value, m.get("name") or ""))
        return members

    async def update_subscription(self, auth: AuthContext, update: OrganizationSubscriptionUpdate) -> Dict[str, Any]:
        _require_org_admin(auth, "update the organization subscription")
        org = await self._owned_org(auth.user_id)
        if update.end_date <= update.start_date:
            raise OrganizationError("end_date must be after start_date")

        current = org.get("subscription") or {}
        subscription = {
            "plan": update.plan,
            "start_date": update.start_date,
            "end_date": update.end_date,
            "status": SubscriptionStatus.ACTIVE.value,
            "base_price": update.base_price if update.base_price is not None else current.get("base_price"),
            "member_price": update.member_price if update.member_price is not None else current.get("member_price"),
        }

        db = await self._get_db()
        now = datetime.now(timezone.utc)
        await db.organizations.update_one(
            {"org_id": org["org_id"]},
            {"$set": {"subscription": subscription, "updated_at": now}}
        )
        await db.users.update_many(
            {"organization_id": org["org_id"]},
            {"$set": {"subscription_status": SubscriptionStatus.ACTIVE.value, "updated_at": now}}
        )
        logger.info(f"Organization {org['org_id']} subscription set to {update.plan} until {update.end_date}")
        return subscription


organization_service = OrganizationService()
