"""
Checkout preference proxy.

Always answers HTTP 200: callers inspect `success` in the body, as they did
with the provider function this endpoint replaces.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header

from backend.app.api.deps import get_payment_service
from backend.app.core.auth import Principal, require_write_access
from backend.app.schemas import PaymentPreferenceRequest
from backend.app.services.payment import PaymentService, PaymentServiceError, failure_body

router = APIRouter()


@router.post("/preference")
async def create_payment_preference(
    data: PaymentPreferenceRequest,
    origin: Optional[str] = Header(None),
    _principal: Principal = Depends(require_write_access),
    payments: PaymentService = Depends(get_payment_service),
):
    try:
        return await payments.create_preference(
            order_id=data.orderId,
            items=[item.model_dump() for item in data.items],
            payer=data.payer.model_dump(),
            origin=origin,
        )
    except PaymentServiceError as e:
        return failure_body(e)
