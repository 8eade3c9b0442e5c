"""Payments API: UPI reference submission and status polling."""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from middleware import require_auth
from patentsbrowser.models.user import AuthContext
from patentsbrowser.services.payment_service import payment_service
from utils.responses import success_response
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/payments", tags=["payments"])


class UpiReferenceRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    reference_number: str = Field(..., min_length=6, max_length=40)


@router.post("/upi-reference", status_code=201)
async def submit_upi_reference(data: UpiReferenceRequest, auth: AuthContext = Depends(require_auth)):
    payment = await payment_service.submit_reference(auth.user_id, data.order_id, data.reference_number)
    return success_response(
        "Payment reference submitted. Verification usually takes a few minutes.",
        payment,
        status_code=201,
    )


@router.get("/status/{reference_number}")
async def payment_status(reference_number: str, auth: AuthContext = Depends(require_auth)):
    status = await payment_service.get_status(auth.user_id, reference_number)
    return success_response("Payment status fetched", status)
