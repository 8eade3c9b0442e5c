"""
Subscription lifecycle: trial, order, signature verification, activation
(stacking / upgrade / downgrade), manual grants, cancel, reject, plan change.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from datetime import datetime, timezone, timedelta

from pymongo.errors import DuplicateKeyError

from patentsbrowser.models.plans import PlanType, period_days
from patentsbrowser.models.user import AuthContext, UserType
from patentsbrowser.services.subscription_service import (
    SubscriptionService,
    AlreadySubscribedError,
    BillingError,
    BillingNotAllowedError,
    ConcurrentChangeError,
    InvalidSignatureError,
    PlanNotFoundError,
    SubscriptionNotFoundError,
    build_upi_link,
    generate_order_id,
    sign_order,
    verify_order_signature,
)

MONTHLY = {
    "plan_id": "PLN-MONTHLY",
    "name": "Individual Monthly",
    "type": "monthly",
    "account_type": "individual",
    "price": 99900,
    "features": ["Full search access"],
}
QUARTERLY = {
    "plan_id": "PLN-QUARTER",
    "name": "Individual Quarterly",
    "type": "quarterly",
    "account_type": "individual",
    "price": 249900,
    "features": [],
}


def _service(db):
    svc = SubscriptionService()
    svc.db = db
    return svc


def _auth(**kwargs):
    values = {"user_id": "USR-1", "email": "user@example.com"}
    values.update(kwargs)
    return AuthContext(**values)


def _pending(**kwargs):
    row = {
        "subscription_id": "SUB-NEW",
        "user_id": "USR-1",
        "plan_id": "PLN-MONTHLY",
        "plan_type": "monthly",
        "amount": 99900,
        "status": "payment_pending",
        "order_id": "order_1_abc",
        "parent_subscription_id": None,
        "change_type": None,
    }
    row.update(kwargs)
    return row


def _plan_mock(*plans):
    mock = MagicMock()
    if len(plans) == 1:
        mock.get_plan = AsyncMock(return_value=plans[0])
    else:
        mock.get_plan = AsyncMock(side_effect=list(plans))
    return mock


def _set_of(call):
    return call.args[1]["$set"]


# ============================================================================
# Helpers
# ============================================================================

def test_order_id_format():
    order_id = generate_order_id()
    prefix, millis, token = order_id.split("_")
    assert prefix == "order"
    assert millis.isdigit()
    assert len(token) == 12


def test_signature_roundtrip(monkeypatch):
    monkeypatch.setenv("RAZORPAY_KEY_SECRET", "s3cret")
    signature = sign_order("order_1", "pay_1", "s3cret")
    assert verify_order_signature("order_1", "pay_1", signature) is True
    assert verify_order_signature("order_1", "pay_2", signature) is False
    assert verify_order_signature("order_1", "pay_1", "") is False


def test_signature_never_matches_without_secret(monkeypatch):
    monkeypatch.delenv("RAZORPAY_KEY_SECRET", raising=False)
    signature = sign_order("order_1", "pay_1", "")
    assert verify_order_signature("order_1", "pay_1", signature) is False


def test_upi_link_amount_in_rupees():
    link = build_upi_link(249900, "order_1_ab", "Individual Quarterly")
    assert link.startswith("upi://pay?")
    assert "am=2499.00" in link
    assert "cu=INR" in link
    assert "tr=order_1_ab" in link


# ============================================================================
# Trial
# ============================================================================

@pytest.mark.asyncio
async def test_start_trial_grants_fourteen_days(db):
    db.users.find_one = AsyncMock(return_value={"user_id": "USR-1", "email": "user@example.com"})
    svc = _service(db)

    before = datetime.now(timezone.utc)
    doc = await svc.start_trial("USR-1")

    assert doc["status"] == "trial"
    assert doc["amount"] == 0
    assert timedelta(days=13, hours=23) < doc["end_date"] - before <= timedelta(days=14, seconds=5)
    db.subscriptions.insert_one.assert_awaited_once()
    user_set = _set_of(db.users.update_one.call_args)
    assert user_set["subscription_status"] == "trial"
    assert user_set["trial_end_date"] == doc["end_date"]


@pytest.mark.asyncio
async def test_start_trial_rejects_existing_subscription(db, cursor):
    db.users.find_one = AsyncMock(return_value={"user_id": "USR-1"})
    db.subscriptions.find = MagicMock(return_value=cursor([{"status": "trial"}]))

    with pytest.raises(AlreadySubscribedError):
        await _service(db).start_trial("USR-1")
    db.subscriptions.insert_one.assert_not_called()


# ============================================================================
# Orders
# ============================================================================

@pytest.mark.asyncio
async def test_create_order_inserts_pending_row(db):
    svc = _service(db)
    with patch("patentsbrowser.services.subscription_service.plan_service", _plan_mock(MONTHLY)):
        result = await svc.create_order(_auth(), "PLN-MONTHLY")

    assert result["amount"] == 99900
    assert result["currency"] == "INR"
    assert result["order_id"].startswith("order_")
    assert "am=999.00" in result["upi_link"]
    inserted = db.subscriptions.insert_one.call_args.args[0]
    assert inserted["status"] == "payment_pending"
    assert inserted["order_id"] == result["order_id"]
    assert inserted["plan_type"] == "monthly"


@pytest.mark.asyncio
async def test_create_order_refreshes_existing_pending_row(db):
    db.subscriptions.find_one = AsyncMock(return_value=_pending(subscription_id="SUB-OLD"))
    svc = _service(db)
    with patch("patentsbrowser.services.subscription_service.plan_service", _plan_mock(MONTHLY)):
        result = await svc.create_order(_auth(), "PLN-MONTHLY")

    assert result["subscription_id"] == "SUB-OLD"
    db.subscriptions.insert_one.assert_not_called()
    assert _set_of(db.subscriptions.update_one.call_args)["order_id"] == result["order_id"]


@pytest.mark.asyncio
async def test_create_order_blocked_for_organization_members(db):
    auth = _auth(organization_role="member", user_type=UserType.ORGANIZATION_MEMBER)
    with pytest.raises(BillingNotAllowedError) as exc:
        await _service(db).create_order(auth, "PLN-MONTHLY")
    assert exc.value.status_code == 403


@pytest.mark.asyncio
async def test_create_order_unknown_plan(db):
    with patch("patentsbrowser.services.subscription_service.plan_service", _plan_mock(None)):
        with pytest.raises(PlanNotFoundError):
            await _service(db).create_order(_auth(), "PLN-NOPE")


@pytest.mark.asyncio
async def test_create_order_account_type_mismatch(db):
    auth = _auth(user_type=UserType.ORGANIZATION_ADMIN, organization_role="admin")
    with patch("patentsbrowser.services.subscription_service.plan_service", _plan_mock(MONTHLY)):
        with pytest.raises(BillingError):
            await _service(db).create_order(auth, "PLN-MONTHLY")


# ============================================================================
# Verification / activation
# ============================================================================

@pytest.mark.asyncio
async def test_verify_payment_bad_signature_writes_nothing(db, monkeypatch):
    monkeypatch.setenv("RAZORPAY_KEY_SECRET", "s3cret")
    with pytest.raises(InvalidSignatureError):
        await _service(db).verify_payment("USR-1", "order_1_abc", "pay_1", "deadbeef")
    db.subscriptions.update_one.assert_not_called()
    db.users.update_one.assert_not_called()


@pytest.mark.asyncio
async def test_conflicting_upgrade_restores_previous_main(db):
    main = {"subscription_id": "SUB-MAIN", "user_id": "USR-1", "status": "active",
            "end_date": datetime.now(timezone.utc) + timedelta(days=20)}
    db.subscriptions.find_one = AsyncMock(return_value=main)
    # retire main, conflicting activation, then restore
    db.subscriptions.update_one = AsyncMock(side_effect=[
        MagicMock(modified_count=1),
        DuplicateKeyError("one_active_main_per_user"),
        MagicMock(modified_count=1),
    ])
    row = _pending(status="upgrade_pending", change_type="upgrade", plan_type="quarterly")

    with pytest.raises(ConcurrentChangeError):
        await _service(db).activate_verified(row)

    retire, _, restore = db.subscriptions.update_one.call_args_list
    assert _set_of(retire)["status"] == "inactive"
    assert restore.args[0] == {"subscription_id": "SUB-MAIN"}
    assert _set_of(restore)["status"] == "active"
    db.users.update_one.assert_not_called()


@pytest.mark.asyncio
async def test_verify_payment_unknown_order(db, monkeypatch):
    monkeypatch.setenv("RAZORPAY_KEY_SECRET", "s3cret")
    signature = sign_order("order_1_abc", "pay_1", "s3cret")
    with pytest.raises(SubscriptionNotFoundError):
        await _service(db).verify_payment("USR-1", "order_1_abc", "pay_1", signature)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "plan_type, days",
    [
        ("monthly", 30),
        ("quarterly", 90),
        ("half_yearly", 180),
        ("yearly", 365),
        ("custom", 30),
        (None, 30),
    ],
)
async def test_verify_payment_activates_first_plan_as_main(db, monkeypatch, plan_type, days):
    monkeypatch.setenv("RAZORPAY_KEY_SECRET", "s3cret")
    signature = sign_order("order_1_abc", "pay_1", "s3cret")
    # pending lookup, then no active main
    db.subscriptions.find_one = AsyncMock(side_effect=[_pending(plan_type=plan_type), None])

    before = datetime.now(timezone.utc)
    result = await _service(db).verify_payment("USR-1", "order_1_abc", "pay_1", signature)

    assert result["status"] == "active"
    assert result["parent_subscription_id"] is None
    assert result["payment_id"] == "pay_1"
    assert result["start_date"] >= before
    assert result["end_date"] - result["start_date"] == timedelta(days=days)

    trial_filter = db.subscriptions.update_many.call_args.args[0]
    assert trial_filter == {"user_id": "USR-1", "status": "trial"}
    user_set = _set_of(db.users.update_one.call_args)
    assert user_set["subscription_status"] == "active"
    assert user_set["payment_status"] == "paid"


def test_every_plan_type_has_a_period():
    assert {plan_type.value: period_days(plan_type.value) for plan_type in PlanType} == {
        "monthly": 30,
        "quarterly": 90,
        "half_yearly": 180,
        "yearly": 365,
    }


@pytest.mark.asyncio
async def test_activation_stacks_under_existing_main(db):
    main = {"subscription_id": "SUB-MAIN", "user_id": "USR-1", "status": "active",
            "end_date": datetime.now(timezone.utc) + timedelta(days=20)}
    db.subscriptions.find_one = AsyncMock(return_value=main)

    result = await _service(db).activate_verified(_pending(plan_type="quarterly"))

    assert result["parent_subscription_id"] == "SUB-MAIN"
    assert result["end_date"] - result["start_date"] == timedelta(days=90)
    # only the new row is touched
    assert db.subscriptions.update_one.await_count == 1
    assert db.subscriptions.update_one.call_args.args[0] == {"subscription_id": "SUB-NEW"}


@pytest.mark.asyncio
async def test_upgrade_replaces_main(db):
    main = {"subscription_id": "SUB-MAIN", "user_id": "USR-1", "status": "active",
            "end_date": datetime.now(timezone.utc) + timedelta(days=20)}
    db.subscriptions.find_one = AsyncMock(return_value=main)
    row = _pending(status="upgrade_pending", change_type="upgrade", plan_type="quarterly")

    result = await _service(db).activate_verified(row)

    first, second = db.subscriptions.update_one.call_args_list
    assert first.args[0] == {"subscription_id": "SUB-MAIN"}
    assert _set_of(first)["status"] == "inactive"
    assert second.args[0] == {"subscription_id": "SUB-NEW"}
    assert result["parent_subscription_id"] is None
    assert result["status"] == "active"


@pytest.mark.asyncio
async def test_downgrade_starts_when_main_ends(db):
    main_end = datetime.now(timezone.utc) + timedelta(days=12)
    main = {"subscription_id": "SUB-MAIN", "user_id": "USR-1", "status": "active", "end_date": main_end}
    db.subscriptions.find_one = AsyncMock(return_value=main)
    row = _pending(status="downgrade_pending", change_type="downgrade", plan_type="monthly")

    result = await _service(db).activate_verified(row)

    assert result["start_date"] == main_end
    assert result["end_date"] == main_end + timedelta(days=30)
    assert result["parent_subscription_id"] == "SUB-MAIN"
    assert db.subscriptions.update_one.await_count == 1


@pytest.mark.asyncio
async def test_concurrent_activation_maps_to_conflict(db):
    db.subscriptions.update_one = AsyncMock(side_effect=DuplicateKeyError("one_active_main_per_user"))

    with pytest.raises(ConcurrentChangeError) as exc:
        await _service(db).activate_verified(_pending())
    assert exc.value.status_code == 409
    db.users.update_one.assert_not_called()


# ============================================================================
# Manual grants
# ============================================================================

@pytest.mark.asyncio
async def test_manual_activation_stacks_and_leaves_main_alone(db):
    main = {"subscription_id": "SUB-MAIN", "user_id": "USR-1", "status": "active"}
    db.users.find_one = AsyncMock(return_value={"user_id": "USR-1"})
    db.subscriptions.find_one = AsyncMock(return_value=main)

    doc = await _service(db).activate_manual(
        "USR-1",
        start_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        end_date=datetime(2024, 1, 31, tzinfo=timezone.utc),
        created_by="USR-ADMIN",
    )

    assert doc["parent_subscription_id"] == "SUB-MAIN"
    assert doc["status"] == "active"
    assert doc["created_by"] == "USR-ADMIN"
    db.subscriptions.update_one.assert_not_called()
    assert _set_of(db.users.update_one.call_args)["subscription_status"] == "active"


@pytest.mark.asyncio
async def test_manual_activation_without_main_becomes_main(db):
    db.users.find_one = AsyncMock(return_value={"user_id": "USR-1"})

    doc = await _service(db).activate_manual(
        "USR-1",
        start_date=datetime(2024, 1, 1),
        end_date=datetime(2024, 2, 1),
    )
    assert doc["parent_subscription_id"] is None
    assert doc["start_date"].tzinfo is not None


@pytest.mark.asyncio
async def test_manual_activation_rejects_inverted_window(db):
    with pytest.raises(BillingError):
        await _service(db).activate_manual(
            "USR-1",
            start_date=datetime(2024, 2, 1, tzinfo=timezone.utc),
            end_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
    db.subscriptions.insert_one.assert_not_called()


@pytest.mark.asyncio
async def test_manual_activation_rejects_pending_status(db):
    with pytest.raises(BillingError):
        await _service(db).activate_manual(
            "USR-1",
            start_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
            end_date=datetime(2024, 2, 1, tzinfo=timezone.utc),
            status="payment_pending",
        )


# ============================================================================
# Cancel / reject
# ============================================================================

@pytest.mark.asyncio
async def test_cancel_keeps_access_until_end_date(db):
    row = {"subscription_id": "SUB-MAIN", "user_id": "USR-1", "status": "active"}
    db.subscriptions.find_one = AsyncMock(return_value=row)

    result = await _service(db).cancel("USR-1")

    updates = _set_of(db.subscriptions.update_one.call_args)
    assert set(updates) == {"cancelled_at", "updated_at"}
    assert result["status"] == "active"
    assert result["cancelled_at"] is not None
    db.users.update_one.assert_not_called()


@pytest.mark.asyncio
async def test_cancel_without_subscription(db):
    with pytest.raises(SubscriptionNotFoundError) as exc:
        await _service(db).cancel("USR-1")
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_reject_pending_mirrors_user(db):
    db.subscriptions.find_one = AsyncMock(return_value=_pending())
    db.users.find_one = AsyncMock(return_value={"subscription_status": "payment_pending"})

    result = await _service(db).reject("SUB-NEW", "UTR not found", rejected_by="USR-ADMIN")

    assert result["status"] == "rejected"
    assert result["rejection_reason"] == "UTR not found"
    assert _set_of(db.users.update_one.call_args)["subscription_status"] == "rejected"


@pytest.mark.asyncio
async def test_reject_does_not_downgrade_active_user(db):
    db.subscriptions.find_one = AsyncMock(return_value=_pending())
    db.users.find_one = AsyncMock(return_value={"subscription_status": "active"})

    await _service(db).reject("SUB-NEW")
    db.users.update_one.assert_not_called()


@pytest.mark.asyncio
async def test_reject_active_row_is_refused(db):
    db.subscriptions.find_one = AsyncMock(return_value=_pending(status="active"))
    with pytest.raises(BillingError):
        await _service(db).reject("SUB-NEW")
    db.subscriptions.update_one.assert_not_called()


# ============================================================================
# Plan change
# ============================================================================

@pytest.mark.asyncio
async def test_plan_change_upgrade_is_prorated(db):
    main = {
        "subscription_id": "SUB-MAIN",
        "user_id": "USR-1",
        "plan_id": "PLN-MONTHLY",
        "plan_type": "monthly",
        "amount": 99900,
        "status": "active",
        "end_date": datetime.now(timezone.utc) + timedelta(days=15),
    }
    db.subscriptions.find_one = AsyncMock(return_value=main)

    with patch("patentsbrowser.services.subscription_service.plan_service", _plan_mock(QUARTERLY, MONTHLY)):
        result = await _service(db).request_plan_change(_auth(), "PLN-QUARTER")

    assert result["change_type"] == "upgrade"
    assert result["remaining_days"] == 15
    assert result["credit"] == 49950
    assert result["amount"] == 249900 - 49950

    inserted = db.subscriptions.insert_one.call_args.args[0]
    assert inserted["status"] == "upgrade_pending"
    assert inserted["previous_subscription_id"] == "SUB-MAIN"
    assert inserted["amount"] == result["amount"]
    # earlier open change requests are closed
    closed = db.subscriptions.update_many.call_args.args[0]
    assert closed["status"] == {"$in": ["upgrade_pending", "downgrade_pending"]}


@pytest.mark.asyncio
async def test_plan_change_to_cheaper_plan_is_downgrade(db):
    main = {
        "subscription_id": "SUB-MAIN",
        "user_id": "USR-1",
        "plan_id": "PLN-QUARTER",
        "plan_type": "quarterly",
        "amount": 249900,
        "status": "active",
        "end_date": datetime.now(timezone.utc) + timedelta(days=90),
    }
    db.subscriptions.find_one = AsyncMock(return_value=main)

    with patch("patentsbrowser.services.subscription_service.plan_service", _plan_mock(MONTHLY, QUARTERLY)):
        result = await _service(db).request_plan_change(_auth(), "PLN-MONTHLY")

    assert result["change_type"] == "downgrade"
    # full credit exceeds the new price
    assert result["amount"] == 0


@pytest.mark.asyncio
async def test_plan_change_same_plan(db):
    main = {"subscription_id": "SUB-MAIN", "plan_id": "PLN-MONTHLY", "plan_type": "monthly",
            "end_date": datetime.now(timezone.utc) + timedelta(days=5)}
    db.subscriptions.find_one = AsyncMock(return_value=main)
    with patch("patentsbrowser.services.subscription_service.plan_service", _plan_mock(MONTHLY)):
        with pytest.raises(BillingError):
            await _service(db).request_plan_change(_auth(), "PLN-MONTHLY")


@pytest.mark.asyncio
async def test_plan_change_requires_active_main(db):
    with pytest.raises(SubscriptionNotFoundError):
        await _service(db).request_plan_change(_auth(), "PLN-QUARTER")


# ============================================================================
# Views
# ============================================================================

@pytest.mark.asyncio
async def test_user_subscription_view(db, cursor):
    now = datetime.now(timezone.utc)
    db.users.find_one = AsyncMock(return_value={
        "user_id": "USR-1",
        "subscription_status": "active",
        "payment_status": "paid",
    })
    rows = [
        {"subscription_id": "SUB-P", "status": "payment_pending", "start_date": now, "end_date": now},
        {"subscription_id": "SUB-A", "status": "active", "parent_subscription_id": None,
         "start_date": now, "end_date": now + timedelta(days=30), "amount": 99900},
    ]
    db.subscriptions.find = MagicMock(return_value=cursor(rows))

    view = await _service(db).get_user_subscription("USR-1")

    assert view["main_subscription"]["subscription_id"] == "SUB-A"
    assert view["pending_subscription"]["subscription_id"] == "SUB-P"
    assert view["total_days"] == 30
    assert view["trial_days_remaining"] == 0
