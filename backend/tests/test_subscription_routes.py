"""
Subscription, payment, organization and saved-patent endpoints with the
auth dependency overridden and services mocked.
"""
import io

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from middleware import require_auth, require_active_subscription
from patentsbrowser.models.user import AuthContext, UserType
from patentsbrowser.services.subscription_service import (
    BillingNotAllowedError,
    ConcurrentChangeError,
    InvalidSignatureError,
)
from patentsbrowser.services.organization_service import OrganizationError
from server import app

USER = AuthContext(user_id="USR-1", email="asha@example.com")


@pytest.fixture
def authed(client):
    app.dependency_overrides[require_auth] = lambda: USER
    app.dependency_overrides[require_active_subscription] = lambda: USER
    return client


def _mock(**methods):
    mock = MagicMock()
    for name, value in methods.items():
        if isinstance(value, Exception):
            setattr(mock, name, AsyncMock(side_effect=value))
        else:
            setattr(mock, name, AsyncMock(return_value=value))
    return mock


# ============================================================================
# Subscriptions
# ============================================================================

def test_plans_are_public(client):
    plans = _mock(list_plans=[{"plan_id": "PLN-1", "price": 99900}])
    with patch("patentsbrowser.routes.subscriptions.plan_service", plans):
        response = client.get("/api/subscriptions/plans?account_type=individual")

    assert response.status_code == 200
    assert response.json()["data"][0]["plan_id"] == "PLN-1"
    plans.list_plans.assert_awaited_once_with("individual")


def test_plans_reject_unknown_account_type(client):
    response = client.get("/api/subscriptions/plans?account_type=enterprise")
    assert response.status_code == 400


def test_create_order(authed):
    service = _mock(create_order={"order_id": "order_1_abc", "amount": 99900})
    with patch("patentsbrowser.routes.subscriptions.subscription_service", service):
        response = authed.post("/api/subscriptions/order", json={"plan_id": "PLN-1"})

    assert response.status_code == 201
    assert response.json()["data"]["order_id"] == "order_1_abc"
    assert service.create_order.call_args.args[0].user_id == "USR-1"


def test_create_order_forbidden_for_members(authed):
    service = _mock(create_order=BillingNotAllowedError("Organization members cannot purchase plans"))
    with patch("patentsbrowser.routes.subscriptions.subscription_service", service):
        response = authed.post("/api/subscriptions/order", json={"plan_id": "PLN-1"})

    assert response.status_code == 403
    assert response.json()["code"] == "BILLING_NOT_ALLOWED"


def test_activate_bad_signature(authed):
    service = _mock(verify_payment=InvalidSignatureError("Invalid payment signature"))
    with patch("patentsbrowser.routes.subscriptions.subscription_service", service):
        response = authed.post("/api/subscriptions/activate", json={
            "order_id": "order_1_abc", "payment_id": "pay_1", "signature": "bad",
        })

    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_SIGNATURE"


def test_activate_conflict(authed):
    service = _mock(verify_payment=ConcurrentChangeError())
    with patch("patentsbrowser.routes.subscriptions.subscription_service", service):
        response = authed.post("/api/subscriptions/activate", json={
            "order_id": "order_1_abc", "payment_id": "pay_1", "signature": "sig",
        })

    assert response.status_code == 409


def test_activate_requires_all_fields(authed):
    response = authed.post("/api/subscriptions/activate", json={"order_id": "order_1_abc"})
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_change_plan_message(authed):
    service = _mock(request_plan_change={"change_type": "upgrade", "amount": 199950})
    with patch("patentsbrowser.routes.subscriptions.subscription_service", service):
        response = authed.post("/api/subscriptions/change-plan", json={"new_plan_id": "PLN-2"})

    assert response.status_code == 201
    assert response.json()["message"] == "Plan upgrade requested"


def test_webhook_passes_raw_body_and_signature(client):
    payments = _mock(handle_webhook={"event": "payment.captured", "handled": True})
    with patch("patentsbrowser.routes.subscriptions.payment_service", payments):
        response = client.post(
            "/api/subscriptions/webhook",
            content=b'{"event":"payment.captured"}',
            headers={"X-Razorpay-Signature": "abc", "Content-Type": "application/json"},
        )

    assert response.status_code == 200
    payments.handle_webhook.assert_awaited_once_with(b'{"event":"payment.captured"}', "abc")


def test_cancel_requires_auth(client):
    response = client.post("/api/subscriptions/cancel")
    assert response.status_code == 401


# ============================================================================
# Payments
# ============================================================================

def test_submit_upi_reference(authed):
    payments = _mock(submit_reference={"payment_id": "PAY-1", "status": "unverified"})
    with patch("patentsbrowser.routes.payments.payment_service", payments):
        response = authed.post("/api/payments/upi-reference", json={
            "order_id": "order_1_abc", "reference_number": "123456789012",
        })

    assert response.status_code == 201
    payments.submit_reference.assert_awaited_once_with("USR-1", "order_1_abc", "123456789012")


# ============================================================================
# Organizations
# ============================================================================

def test_create_organization(authed):
    orgs = _mock(create_organization={"org_id": "ORG-1"})
    with patch("patentsbrowser.routes.organizations.organization_service", orgs):
        response = authed.post("/api/organization", json={"name": "Acme IP", "size": "11-50", "type": "startup"})

    assert response.status_code == 201
    assert orgs.create_organization.call_args.args[1:] == ("Acme IP", "11-50", "startup")


def test_create_organization_bad_size(authed):
    response = authed.post("/api/organization", json={"name": "Acme IP", "size": "huge", "type": "startup"})
    assert response.status_code == 400


def test_validate_invite_is_public(client):
    orgs = _mock(validate_invite=OrganizationError("Invalid or expired invite link", status_code=404))
    with patch("patentsbrowser.routes.organizations.organization_service", orgs):
        response = client.get("/api/organization/validate-invite/tok")

    assert response.status_code == 404
    assert response.json()["message"] == "Invalid or expired invite link"


def test_member_cannot_generate_invite(client):
    member = AuthContext(user_id="USR-2", email="m@example.com",
                         user_type=UserType.ORGANIZATION_MEMBER, organization_role="member")
    app.dependency_overrides[require_auth] = lambda: member
    orgs = _mock(generate_invite=OrganizationError("Only organization admins can generate invite links", status_code=403))
    with patch("patentsbrowser.routes.organizations.organization_service", orgs):
        response = client.post("/api/organization/invite")

    assert response.status_code == 403


# ============================================================================
# Saved patents
# ============================================================================

def test_save_patents(authed):
    folders = _mock(save_patents={"patent_ids": ["US-1-A"], "saved_count": 1, "new_count": 1, "folder": None})
    with patch("patentsbrowser.routes.saved_patents.folder_service", folders):
        response = authed.post("/api/saved-patents/save", json={"patent_ids": ["US1A"]})

    assert response.status_code == 200
    folders.save_patents.assert_awaited_once_with("USR-1", ["US1A"], None)


def test_save_patents_needs_ids(authed):
    response = authed.post("/api/saved-patents/save", json={"patent_ids": []})
    assert response.status_code == 400


def test_mark_patent_read(authed):
    folders = _mock(mark_read={"user_id": "USR-1", "patent_id": "US-10123456-B2",
                               "read_at": "2024-03-01T00:00:00Z"})
    with patch("patentsbrowser.routes.saved_patents.folder_service", folders):
        response = authed.post("/api/saved-patents/read-status/mark-read", json={"patent_id": "US10123456B2"})

    assert response.status_code == 200
    assert response.json()["message"] == "Patent marked as read"
    folders.mark_read.assert_awaited_once_with("USR-1", "US10123456B2")


def test_list_read_patents(authed):
    folders = _mock(list_read=["US-10123456-B2"])
    with patch("patentsbrowser.routes.saved_patents.folder_service", folders):
        response = authed.get("/api/saved-patents/read-status/list")

    assert response.json()["data"] == ["US-10123456-B2"]


def test_check_read_status_requires_list(authed):
    response = authed.post("/api/saved-patents/read-status/check-status", json={"patent_ids": "US1A"})
    assert response.status_code == 400


def test_extract_from_file_saves_folder(authed):
    folders = _mock(create_folder={"folder_id": "FLD-1", "name": "Imported", "patent_ids": ["US-10123456-B2"]})
    with patch("patentsbrowser.routes.saved_patents.folder_service", folders):
        response = authed.post(
            "/api/saved-patents/extract-from-file",
            files={"file": ("ids.txt", io.BytesIO(b"US10123456B2"), "text/plain")},
            data={"folder_name": "Imported"},
        )

    assert response.status_code == 200
    body = response.json()
    assert body["data"]["patent_ids"] == ["US-10123456-B2"]
    assert body["data"]["saved_folder"] == {"folder_id": "FLD-1", "name": "Imported", "patent_count": 1}
    assert folders.create_folder.call_args.kwargs["source"] == "folderName"


def test_extract_from_file_unsupported_type(authed):
    response = authed.post(
        "/api/saved-patents/extract-from-file",
        files={"file": ("scan.pdf", io.BytesIO(b"%PDF"), "application/pdf")},
    )
    assert response.status_code == 400
    assert "Unsupported file type" in response.json()["message"]


def test_extract_from_file_requires_subscription(client):
    app.dependency_overrides[require_auth] = lambda: USER
    user_db = MagicMock()
    user_db.users.find_one = AsyncMock(return_value={"user_id": "USR-1", "subscription_status": "cancelled"})

    with patch("middleware.database.get_db", return_value=user_db):
        response = client.post(
            "/api/saved-patents/extract-from-file",
            files={"file": ("ids.txt", io.BytesIO(b"US10123456B2"), "text/plain")},
        )

    assert response.status_code == 403
    assert response.json()["code"] == "SUBSCRIPTION_REQUIRED"
