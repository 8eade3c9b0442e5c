"""
Subscription gate for premium endpoints (require_active_subscription).
"""
import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import AsyncMock, patch

from fastapi import HTTPException

from middleware import require_active_subscription, require_admin
from patentsbrowser.models.user import AuthContext

USER = AuthContext(user_id="USR-1", email="asha@example.com")


async def _gate(db, user):
    db.users.find_one = AsyncMock(return_value=user)
    with patch("middleware.database.get_db", return_value=db):
        return await require_active_subscription(USER)


@pytest.mark.asyncio
async def test_live_trial_passes(db):
    user = {"user_id": "USR-1", "subscription_status": "trial",
            "trial_end_date": datetime.now(timezone.utc) + timedelta(days=3)}
    assert await _gate(db, user) is USER


@pytest.mark.asyncio
async def test_trial_ending_today_still_passes(db):
    user = {"user_id": "USR-1", "subscription_status": "trial",
            "trial_end_date": datetime.now(timezone.utc) - timedelta(seconds=1)}
    if user["trial_end_date"].date() != datetime.now(timezone.utc).date():
        pytest.skip("ran across midnight UTC")
    assert await _gate(db, user) is USER


@pytest.mark.asyncio
async def test_expired_trial_is_blocked(db):
    user = {"user_id": "USR-1", "subscription_status": "trial",
            "trial_end_date": datetime.now(timezone.utc) - timedelta(days=2)}
    with pytest.raises(HTTPException) as exc:
        await _gate(db, user)
    assert exc.value.status_code == 403
    assert exc.value.detail["code"] == "SUBSCRIPTION_REQUIRED"
    assert exc.value.detail["data"]["subscription_status"] == "inactive"
    assert "Trial period has expired" in exc.value.detail["message"]


@pytest.mark.asyncio
async def test_payment_pending_passes(db):
    assert await _gate(db, {"user_id": "USR-1", "subscription_status": "payment_pending"}) is USER


@pytest.mark.asyncio
async def test_active_with_live_row_passes(db):
    db.subscriptions.find_one = AsyncMock(return_value={"subscription_id": "SUB-1"})
    assert await _gate(db, {"user_id": "USR-1", "subscription_status": "active"}) is USER
    query = db.subscriptions.find_one.call_args.args[0]
    assert query["status"] == {"$in": ["active", "paid"]}
    assert "$gt" in query["end_date"]


@pytest.mark.asyncio
async def test_active_without_live_row_is_blocked(db):
    with pytest.raises(HTTPException) as exc:
        await _gate(db, {"user_id": "USR-1", "subscription_status": "paid"})
    assert "expired" in exc.value.detail["message"]


@pytest.mark.asyncio
async def test_org_member_uses_organization_end_date(db):
    db.organizations.find_one = AsyncMock(return_value={
        "subscription": {"end_date": datetime.now(timezone.utc) + timedelta(days=10)}
    })
    user = {"user_id": "USR-1", "subscription_status": "active",
            "organization_role": "member", "organization_id": "ORG-1"}
    assert await _gate(db, user) is USER
    db.subscriptions.find_one.assert_not_called()


@pytest.mark.asyncio
async def test_org_member_with_lapsed_organization(db):
    db.organizations.find_one = AsyncMock(return_value={
        "subscription": {"end_date": datetime.now(timezone.utc) - timedelta(days=1)}
    })
    user = {"user_id": "USR-1", "subscription_status": "active",
            "organization_role": "member", "organization_id": "ORG-1"}
    with pytest.raises(HTTPException):
        await _gate(db, user)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, fragment",
    [
        ("inactive", "inactive"),
        ("cancelled", "cancelled"),
        ("rejected", "rejected"),
        (None, "Invalid subscription status"),
    ],
)
async def test_other_statuses_are_blocked(db, status, fragment):
    with pytest.raises(HTTPException) as exc:
        await _gate(db, {"user_id": "USR-1", "subscription_status": status})
    assert fragment in exc.value.detail["message"]
    assert exc.value.detail["data"]["subscription_status"] == status


@pytest.mark.asyncio
async def test_require_admin():
    with pytest.raises(HTTPException) as exc:
        await require_admin(USER)
    assert exc.value.status_code == 403

    admin = AuthContext(user_id="USR-A", email="admin@example.com", is_admin=True)
    assert await require_admin(admin) is admin
