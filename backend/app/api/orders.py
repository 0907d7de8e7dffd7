import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import (
    get_cache,
    get_payment_service,
    get_session,
    handle_service_error,
    invalidate_dashboard,
)
from backend.app.core.auth import Principal, get_current_principal, require_write_access
from backend.app.core.exceptions import ServiceError
from backend.app.core.limiter import limiter
from backend.app.core.logging import get_logger
from backend.app.models.product import Product
from backend.app.models.profile import Profile
from backend.app.schemas import OrderCreate
from backend.app.services.cache import CacheService
from backend.app.services.orders import OrderService, order_to_dict
from backend.app.services.payment import PaymentService, PaymentServiceError, failure_body

router = APIRouter()
logger = get_logger(__name__)


# --- 1. CREATE ORDER ---
@router.post("")
@limiter.limit("30/minute")
async def create_order(
    request: Request,
    data: OrderCreate,
    origin: Optional[str] = Header(None),
    principal: Principal = Depends(require_write_access),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
    payments: PaymentService = Depends(get_payment_service),
):
    """
    Create an order. Pay-now orders also get a checkout preference; when the
    provider fails the order is kept (pending) and the error is returned in
    the `payment` field.
    """
    logger.info(
        "Creating order",
        user_id=str(principal.user_id),
        product_id=str(data.product_id),
        quantity=data.quantity,
        payment_method=data.payment_method,
    )
    service = OrderService(session)
    try:
        order = await service.create_order(
            user_id=principal.user_id,
            product_id=data.product_id,
            quantity=data.quantity,
            payment_method=data.payment_method,
        )
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        logger.warning(
            "Order creation failed",
            user_id=str(principal.user_id),
            product_id=str(data.product_id),
            error=e.message,
            error_code=e.status_code,
        )
        handle_service_error(e)
    await invalidate_dashboard(cache)

    product = await session.get(Product, order.product_id)
    payment = None
    if order.payment_method == "now":
        buyer = await session.get(Profile, principal.user_id)
        try:
            payment = await payments.create_preference(
                order_id=str(order.id),
                items=[{
                    "title": product.name,
                    "quantity": order.quantity,
                    "unit_price": product.final_price,
                }],
                payer={"email": buyer.email, "name": buyer.full_name},
                origin=origin,
            )
            order.payment_preference_id = payment.get("id")
            await session.commit()
        except PaymentServiceError as e:
            logger.warning("Order created but payment preference failed", order_id=str(order.id), error=e.message)
            payment = failure_body(e)

    return {"order": order_to_dict(order, product.name), "payment": payment}


# --- 2. MY ORDERS ---
@router.get("/mine")
async def list_my_orders(
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
):
    return await OrderService(session).list_user_orders(principal.user_id)


# --- 3. PAY AN INVOICE ---
@router.post("/{order_id}/pay-invoice")
async def pay_invoice(
    order_id: uuid.UUID,
    principal: Principal = Depends(require_write_access),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    service = OrderService(session)
    try:
        result = await service.pay_invoice(order_id, principal.user_id)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        logger.warning("Invoice payment failed", order_id=str(order_id), error=e.message)
        handle_service_error(e)
    await invalidate_dashboard(cache)
    return result
