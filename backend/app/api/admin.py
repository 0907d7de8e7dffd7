"""
Admin API. Mounted with Depends(require_admin): impersonation tokens and
affiliates are refused on every route.
"""
import uuid
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_cache, get_session, handle_service_error, invalidate_dashboard
from backend.app.core.auth import Principal, create_impersonation_token, require_admin
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.settings import get_settings
from backend.app.schemas import (
    CommissionRateUpdate,
    InvoiceDueDayUpdate,
    InvoiceLimitUpdate,
    OrderStatusUpdate,
    ProductApprove,
    ProductResponse,
    ProfileResponse,
)
from backend.app.services.cache import CacheService
from backend.app.services.dashboard import commissions_report, get_dashboard_stats
from backend.app.services.ledger import LedgerService
from backend.app.services.notifications import NotificationService
from backend.app.services.orders import OrderService
from backend.app.services.products import (
    approve_product_service,
    list_products_service,
    reject_product_service,
    set_commission_rate_service,
)
from backend.app.services.profiles import ProfileService
from backend.app.services.withdrawals import WithdrawalService, withdrawal_to_dict

router = APIRouter()
logger = get_logger(__name__)


# --- ORDERS ---
@router.get("/orders")
async def list_orders(
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
):
    """Orders with the legal next statuses of each one."""
    return await OrderService(session).list_orders(status=status, search=search, page=page, per_page=per_page)


@router.post("/orders/{order_id}/status")
async def update_order_status(
    order_id: uuid.UUID,
    data: OrderStatusUpdate,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    service = OrderService(session)
    try:
        result = await service.transition(order_id, data.status, data.rejection_reason)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        logger.warning(
            "Order status change failed",
            order_id=str(order_id),
            target_status=data.status,
            error=e.message,
            error_code=e.status_code,
        )
        handle_service_error(e)
    await invalidate_dashboard(cache)
    return result


@router.delete("/orders/{order_id}")
async def delete_order(
    order_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    try:
        result = await OrderService(session).delete_order(order_id)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        handle_service_error(e)
    await invalidate_dashboard(cache)
    return result


# --- PRODUCTS ---
@router.get("/products", response_model=List[ProductResponse])
async def list_products(
    status: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
):
    try:
        return await list_products_service(session, status)
    except ServiceError as e:
        handle_service_error(e)


@router.post("/products/{product_id}/approve", response_model=ProductResponse)
async def approve_product(
    product_id: uuid.UUID,
    data: ProductApprove,
    session: AsyncSession = Depends(get_session),
):
    try:
        product = await approve_product_service(session, product_id, data.commission_rate)
        await session.commit()
        return product
    except ServiceError as e:
        await session.rollback()
        handle_service_error(e)


@router.post("/products/{product_id}/reject", response_model=ProductResponse)
async def reject_product(
    product_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    try:
        product = await reject_product_service(session, product_id)
        await session.commit()
        return product
    except ServiceError as e:
        await session.rollback()
        handle_service_error(e)


@router.put("/products/{product_id}/commission", response_model=ProductResponse)
async def update_commission_rate(
    product_id: uuid.UUID,
    data: CommissionRateUpdate,
    session: AsyncSession = Depends(get_session),
):
    try:
        product = await set_commission_rate_service(session, product_id, data.commission_rate)
        await session.commit()
        return product
    except ServiceError as e:
        await session.rollback()
        handle_service_error(e)


# --- USERS ---
@router.get("/users")
async def list_users(
    search: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
):
    return await ProfileService(session).list_users(search)


@router.put("/users/{user_id}/invoice-limit", response_model=ProfileResponse)
async def update_invoice_limit(
    user_id: uuid.UUID,
    data: InvoiceLimitUpdate,
    session: AsyncSession = Depends(get_session),
):
    try:
        profile = await ProfileService(session).set_invoice_limit(user_id, data.invoice_limit)
        await session.commit()
        return profile
    except ServiceError as e:
        await session.rollback()
        handle_service_error(e)


@router.put("/users/{user_id}/invoice-due-day", response_model=ProfileResponse)
async def update_invoice_due_day(
    user_id: uuid.UUID,
    data: InvoiceDueDayUpdate,
    session: AsyncSession = Depends(get_session),
):
    try:
        profile = await ProfileService(session).set_invoice_due_day(user_id, data.invoice_due_day)
        await session.commit()
        return profile
    except ServiceError as e:
        await session.rollback()
        handle_service_error(e)


@router.post("/users/{user_id}/toggle-role", response_model=ProfileResponse)
async def toggle_role(
    user_id: uuid.UUID,
    admin: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    try:
        profile = await ProfileService(session).toggle_role(user_id, admin.user_id)
        await session.commit()
        return profile
    except ServiceError as e:
        await session.rollback()
        handle_service_error(e)


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    """Remove a user with their orders, products, withdrawals and notifications."""
    try:
        await ProfileService(session).delete_user_completely(user_id)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        handle_service_error(e)
    await invalidate_dashboard(cache)
    return {"status": "ok", "user_id": str(user_id)}


@router.get("/users/{user_id}/orders")
async def list_user_orders(
    user_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    try:
        await ProfileService(session).get_profile(user_id)
    except ServiceError as e:
        handle_service_error(e)
    return await OrderService(session).list_user_orders(user_id)


@router.get("/users/{user_id}/notifications")
async def list_user_notifications(
    user_id: uuid.UUID,
    limit: int = Query(200, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
):
    try:
        await ProfileService(session).get_profile(user_id)
    except ServiceError as e:
        handle_service_error(e)
    return await NotificationService(session).list_for_user(user_id, limit=limit)


@router.delete("/users/{user_id}/notifications")
async def delete_user_notifications(
    user_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    deleted = await NotificationService(session).delete_for_user(user_id)
    await session.commit()
    logger.info("User notifications cleared", user_id=str(user_id), deleted=deleted)
    return {"status": "ok", "deleted": deleted}


@router.delete("/users/{user_id}/notifications/{notification_id}")
async def delete_user_notification(
    user_id: uuid.UUID,
    notification_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    try:
        await NotificationService(session).delete_one(user_id, notification_id)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        handle_service_error(e)
    return {"status": "ok", "notification_id": str(notification_id)}


# --- WITHDRAWALS ---
@router.get("/withdrawals")
async def list_withdrawals(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await WithdrawalService(session).list_all(status=status, page=page, per_page=per_page)
    except ServiceError as e:
        handle_service_error(e)


@router.post("/withdrawals/{withdrawal_id}/approve")
async def approve_withdrawal(
    withdrawal_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    try:
        withdrawal = await WithdrawalService(session).approve(withdrawal_id)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        handle_service_error(e)
    return withdrawal_to_dict(withdrawal)


@router.post("/withdrawals/{withdrawal_id}/reject")
async def reject_withdrawal(
    withdrawal_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    """Reject and refund onto the affiliate's current balance."""
    try:
        withdrawal = await WithdrawalService(session).reject(withdrawal_id)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        handle_service_error(e)
    await invalidate_dashboard(cache)
    return withdrawal_to_dict(withdrawal)


# --- DASHBOARD / REPORTS ---
@router.get("/dashboard")
async def dashboard(
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    return await get_dashboard_stats(session, cache)


@router.get("/commissions")
async def list_commissions(session: AsyncSession = Depends(get_session)):
    return await commissions_report(session)


@router.get("/ledger/drift")
async def ledger_drift(session: AsyncSession = Depends(get_session)):
    """Profiles whose stored figures no longer match their ledger."""
    return await LedgerService(session).find_drift()


@router.get("/ledger/{profile_id}")
async def ledger_audit(
    profile_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    """Ledger entries of a profile and whether they add up to its stored balance."""
    ledger = LedgerService(session)
    try:
        reconciliation = await ledger.reconcile(profile_id)
    except ServiceError as e:
        handle_service_error(e)
    entries = await ledger.get_entries(profile_id)
    return {
        "reconciliation": reconciliation,
        "entries": [
            {
                "id": str(entry.id),
                "kind": entry.kind,
                "amount": entry.amount,
                "earnings_delta": entry.earnings_delta,
                "order_id": str(entry.order_id) if entry.order_id else None,
                "withdrawal_id": str(entry.withdrawal_id) if entry.withdrawal_id else None,
                "created_at": entry.created_at.isoformat() if entry.created_at else None,
            }
            for entry in entries
        ],
    }


# --- IMPERSONATION ---
@router.post("/impersonate/{user_id}")
async def impersonate(
    user_id: uuid.UUID,
    admin: Principal = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    """Issue a short-lived read-only token to view the app as another user."""
    try:
        target = await ProfileService(session).get_profile(user_id)
    except ServiceError as e:
        handle_service_error(e)
    token = create_impersonation_token(admin.user_id, target.id)
    logger.info("Impersonation started", admin_id=str(admin.user_id), target_id=str(target.id))
    return {
        "token": token,
        "user_id": str(target.id),
        "expires_in": get_settings().IMPERSONATION_TTL_MINUTES * 60,
        "read_only": True,
    }
