"""Subscriptions API: plan catalog, orders, activation, trial and plan change."""
from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, Field
from typing import Optional
from middleware import require_auth
from patentsbrowser.models.user import AuthContext
from patentsbrowser.services.plan_service import plan_service
from patentsbrowser.services.subscription_service import subscription_service
from patentsbrowser.services.payment_service import payment_service
from utils.responses import success_response
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


class CreateOrderRequest(BaseModel):
    plan_id: str = Field(..., min_length=1)


class ActivateRequest(BaseModel):
    """Gateway checkout callback fields."""
    order_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class ChangePlanRequest(BaseModel):
    new_plan_id: str = Field(..., min_length=1)


@router.get("/plans")
async def list_plans(account_type: Optional[str] = Query(None, pattern="^(individual|organization)$")):
    plans = await plan_service.list_plans(account_type)
    return success_response("Plans fetched successfully", plans)


@router.post("/order", status_code=201)
async def create_order(data: CreateOrderRequest, auth: AuthContext = Depends(require_auth)):
    order = await subscription_service.create_order(auth, data.plan_id)
    return success_response("Order created successfully", order, status_code=201)


@router.post("/activate")
async def activate(data: ActivateRequest, auth: AuthContext = Depends(require_auth)):
    subscription = await subscription_service.verify_payment(
        auth.user_id, data.order_id, data.payment_id, data.signature
    )
    return success_response("Subscription activated successfully", subscription)


@router.post("/trial", status_code=201)
async def start_trial(auth: AuthContext = Depends(require_auth)):
    subscription = await subscription_service.start_trial(auth.user_id)
    return success_response("Trial started successfully", subscription, status_code=201)


@router.get("/user")
async def get_user_subscription(auth: AuthContext = Depends(require_auth)):
    view = await subscription_service.get_user_subscription(auth.user_id)
    return success_response("Subscription fetched successfully", view)


@router.post("/cancel")
async def cancel(auth: AuthContext = Depends(require_auth)):
    subscription = await subscription_service.cancel(auth.user_id)
    return success_response("Subscription cancelled. Access continues until the end date.", subscription)


@router.post("/change-plan", status_code=201)
async def change_plan(data: ChangePlanRequest, auth: AuthContext = Depends(require_auth)):
    change = await subscription_service.request_plan_change(auth, data.new_plan_id)
    return success_response(f"Plan {change['change_type']} requested", change, status_code=201)


@router.post("/webhook")
async def gateway_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
):
    """Signed payment events from the gateway. Authenticated by signature only."""
    body = await request.body()
    result = await payment_service.handle_webhook(body, x_razorpay_signature)
    return success_response("Webhook processed", result)
