# backend/app/services/orders.py
"""
Order service - order creation, the status state machine and its commission
side effects, invoice settlement.

Every public method runs inside the caller's transaction and never commits:
a failure anywhere (status update, commission insert, balance change,
notification) rolls the whole operation back.
"""
import uuid
from decimal import Decimal
from typing import Optional, Dict, Any, List

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import PAYMENT_METHODS, SETTLED_INVOICE_STATUSES
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.metrics import (
    commissions_granted_total,
    commissions_reversed_total,
    order_transitions_total,
    orders_created_total,
)
from backend.app.models.commission import Commission
from backend.app.models.ledger import ENTRY_COMMISSION_GRANT, ENTRY_COMMISSION_REVERSAL
from backend.app.models.order import Order
from backend.app.models.product import Product
from backend.app.models.profile import Profile
from backend.app.services import commissions
from backend.app.services.invoices import check_invoice_credit
from backend.app.services.ledger import LedgerService
from backend.app.services.notifications import add_notification, order_status_message
from backend.app.services.order_transitions import (
    LedgerEffect,
    allowed_transitions,
    can_transition,
    is_valid_status,
    ledger_effect,
)

logger = get_logger(__name__)


class OrderServiceError(ServiceError):
    """Base exception for order service errors."""


class OrderNotFoundError(OrderServiceError):
    def __init__(self, order_id: uuid.UUID):
        super().__init__(f"Order {order_id} not found", 404)


class OrderAccessDeniedError(OrderServiceError):
    def __init__(self, order_id: uuid.UUID):
        super().__init__(f"Access denied to order {order_id}", 403)


class ProductUnavailableError(OrderServiceError):
    def __init__(self, product_id: uuid.UUID):
        super().__init__(f"Product {product_id} is not available for ordering", 404)


class InvalidOrderDataError(OrderServiceError):
    def __init__(self, message: str):
        super().__init__(message, 400)


class RejectionReasonRequiredError(OrderServiceError):
    def __init__(self):
        super().__init__("A rejection reason is required to reject an order", 400)


class InvalidOrderTransitionError(OrderServiceError):
    def __init__(self, order_id: uuid.UUID, current_status: str, target_status: str):
        super().__init__(
            f"Order {order_id} cannot move from '{current_status}' to '{target_status}'",
            409,
        )


class InvoiceNotPayableError(OrderServiceError):
    def __init__(self, order_id: uuid.UUID, reason: str):
        super().__init__(f"Order {order_id} cannot be paid as an invoice: {reason}", 409)


def order_to_dict(
    order: Order,
    product_name: Optional[str] = None,
    buyer: Optional[Profile] = None,
) -> Dict[str, Any]:
    data = {
        "id": str(order.id),
        "user_id": str(order.user_id),
        "product_id": str(order.product_id),
        "product_name": product_name,
        "amount": commissions.to_money(order.amount),
        "quantity": order.quantity,
        "payment_method": order.payment_method,
        "status": order.status,
        "rejection_reason": order.rejection_reason,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "allowed_transitions": sorted(allowed_transitions(order.status)),
    }
    if buyer is not None:
        data["buyer_email"] = buyer.email
        data["buyer_name"] = buyer.full_name
    return data


class OrderService:
    """Service class for order operations."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.ledger = LedgerService(session)

    async def _get_order_for_update(self, order_id: uuid.UUID) -> Order:
        """Get order with row-level lock; concurrent transitions of one order serialize here."""
        result = await self.session.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    # -- creation -------------------------------------------------------------

    async def create_order(
        self,
        user_id: uuid.UUID,
        product_id: uuid.UUID,
        quantity: int = 1,
        payment_method: str = "now",
    ) -> Order:
        """
        Create a pending order for an approved product.

        Raises:
            InvalidOrderDataError: bad quantity or payment method
            ProductUnavailableError: product missing or not approved
            CreditLimitExceededError: invoice order over the buyer's limit
        """
        if payment_method not in PAYMENT_METHODS:
            raise InvalidOrderDataError(f"Invalid payment method. Must be one of: {list(PAYMENT_METHODS)}")
        if quantity < 1:
            raise InvalidOrderDataError("Quantity must be at least 1")

        product = await self.session.get(Product, product_id)
        if product is None or product.status != "approved":
            raise ProductUnavailableError(product_id)

        amount = commissions.to_money(Decimal(str(product.final_price)) * quantity)

        if payment_method == "invoice":
            # Lock the buyer so two concurrent invoice orders cannot both fit the same limit
            await self.ledger.lock_profile(user_id)
            await check_invoice_credit(self.session, user_id, amount)

        order = Order(
            user_id=user_id,
            product_id=product_id,
            amount=amount,
            quantity=quantity,
            payment_method=payment_method,
            status="pending",
        )
        self.session.add(order)
        await self.session.flush()

        orders_created_total.labels(payment_method=payment_method).inc()
        logger.info(
            "Order created",
            order_id=str(order.id),
            user_id=str(user_id),
            product_id=str(product_id),
            amount=str(amount),
            payment_method=payment_method,
        )
        return order

    # -- state machine --------------------------------------------------------

    async def transition(
        self,
        order_id: uuid.UUID,
        new_status: str,
        rejection_reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Move an order to new_status and apply the commission side effects.

        Returns:
            Dict with old/new status and the granted or reversed commission
        """
        if not is_valid_status(new_status):
            raise InvalidOrderDataError(f"Unknown order status '{new_status}'")
        reason = (rejection_reason or "").strip()
        if new_status == "rejected" and not reason:
            raise RejectionReasonRequiredError()

        order = await self._get_order_for_update(order_id)
        old_status = order.status
        if not can_transition(old_status, new_status):
            raise InvalidOrderTransitionError(order_id, old_status, new_status)

        product = await self.session.get(Product, order.product_id)

        granted = None
        reversed_ = None
        effect = ledger_effect(old_status, new_status)
        if effect is LedgerEffect.GRANT_COMMISSION:
            granted = await self._grant_commission(order, product)
        elif effect is LedgerEffect.REVERSE_COMMISSION:
            reversed_ = await self._reverse_commission(order)

        order.status = new_status
        if new_status == "rejected":
            order.rejection_reason = reason

        message = order_status_message(new_status, product.name if product else None, reason)
        if message:
            title, text, kind = message
            add_notification(self.session, order.user_id, title, text, kind)

        await self.session.flush()
        order_transitions_total.labels(from_status=old_status, to_status=new_status).inc()
        logger.info(
            "Order status changed",
            order_id=str(order.id),
            old_status=old_status,
            new_status=new_status,
            ledger_effect=effect.value,
        )
        return {
            "order_id": str(order.id),
            "user_id": str(order.user_id),
            "old_status": old_status,
            "new_status": new_status,
            "commission_granted": granted,
            "commission_reversed": reversed_,
        }

    async def pay_invoice(self, order_id: uuid.UUID, payer_id: uuid.UUID) -> Dict[str, Any]:
        """
        Settle an open invoice order: mark it paid and grant its commission.

        Allowed from any status that still counts as open debt, including
        shipped/delivered invoice orders that were never paid.
        """
        order = await self._get_order_for_update(order_id)
        if order.user_id != payer_id:
            raise OrderAccessDeniedError(order_id)
        if order.payment_method != "invoice":
            raise InvoiceNotPayableError(order_id, "not an invoice order")
        if order.status in SETTLED_INVOICE_STATUSES:
            raise InvoiceNotPayableError(order_id, f"order is already {order.status}")

        old_status = order.status
        product = await self.session.get(Product, order.product_id)
        granted = await self._grant_commission(order, product)

        order.status = "paid"
        title, text, kind = order_status_message("paid", product.name if product else None)
        add_notification(self.session, order.user_id, title, text, kind)

        await self.session.flush()
        order_transitions_total.labels(from_status=old_status, to_status="paid").inc()
        logger.info("Invoice paid", order_id=str(order.id), old_status=old_status)
        return {
            "order_id": str(order.id),
            "user_id": str(order.user_id),
            "old_status": old_status,
            "new_status": "paid",
            "commission_granted": granted,
            "commission_reversed": None,
        }

    async def _grant_commission(self, order: Order, product: Optional[Product]) -> Optional[Dict[str, Any]]:
        """Credit the buyer's referrer. No referrer or an existing commission means no grant."""
        existing = await self.session.execute(
            select(Commission.id).where(Commission.order_id == order.id)
        )
        if existing.scalar_one_or_none() is not None:
            logger.warning("Commission already exists for order, not granting again", order_id=str(order.id))
            return None

        buyer = await self.session.get(Profile, order.user_id)
        referrer_id = buyer.referred_by if buyer else None
        if referrer_id is None:
            logger.warning("Buyer has no referrer, no commission generated", order_id=str(order.id))
            return None

        grant = commissions.grant(
            order_id=order.id,
            order_amount=order.amount,
            product_rate=product.commission_rate if product else None,
            referrer_id=referrer_id,
        )
        self.session.add(Commission(
            affiliate_id=grant.affiliate_id,
            order_id=grant.order_id,
            amount=grant.amount,
            rate=grant.rate,
        ))
        await self.session.flush()
        await self.ledger.apply(
            referrer_id,
            ENTRY_COMMISSION_GRANT,
            amount=grant.amount,
            earnings_delta=grant.amount,
            order_id=order.id,
        )
        commissions_granted_total.inc()
        return {
            "affiliate_id": str(grant.affiliate_id),
            "amount": grant.amount,
            "rate": grant.rate,
        }

    async def _reverse_commission(self, order: Order) -> Optional[Dict[str, Any]]:
        """Take the order's commission back from its referrer and delete it."""
        result = await self.session.execute(
            select(Commission).where(Commission.order_id == order.id).with_for_update()
        )
        commission = result.scalar_one_or_none()
        if commission is None:
            logger.info("No commission to reverse for order", order_id=str(order.id))
            return None

        referrer = await self.ledger.lock_profile(commission.affiliate_id)
        delta = commissions.reverse(commission.amount, referrer.balance, referrer.total_earnings)
        await self.ledger.apply(
            commission.affiliate_id,
            ENTRY_COMMISSION_REVERSAL,
            amount=delta.balance,
            earnings_delta=delta.total_earnings,
            order_id=order.id,
        )
        reversed_info = {
            "affiliate_id": str(commission.affiliate_id),
            "amount": commissions.to_money(commission.amount),
            "balance_delta": delta.balance,
            "earnings_delta": delta.total_earnings,
        }
        await self.session.delete(commission)
        await self.session.flush()
        commissions_reversed_total.inc()
        return reversed_info

    # -- admin operations -----------------------------------------------------

    async def delete_order(self, order_id: uuid.UUID) -> Dict[str, Any]:
        """Delete an order; a commission it produced is reversed first."""
        order = await self._get_order_for_update(order_id)
        reversed_ = await self._reverse_commission(order)
        await self.session.delete(order)
        await self.session.flush()
        logger.info("Order deleted", order_id=str(order_id), commission_reversed=reversed_ is not None)
        return {"order_id": str(order_id), "commission_reversed": reversed_}

    # -- queries --------------------------------------------------------------

    async def get_order(self, order_id: uuid.UUID) -> Order:
        order = await self.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def list_user_orders(self, user_id: uuid.UUID) -> List[Dict[str, Any]]:
        result = await self.session.execute(
            select(Order, Product.name)
            .join(Product, Product.id == Order.product_id, isouter=True)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
        )
        return [order_to_dict(order, product_name) for order, product_name in result.all()]

    async def list_orders(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Dict[str, Any]:
        """Admin listing with status filter, free-text search and pagination."""
        query = (
            select(Order, Product.name, Profile)
            .join(Product, Product.id == Order.product_id, isouter=True)
            .join(Profile, Profile.id == Order.user_id, isouter=True)
        )
        if status:
            query = query.where(Order.status == status)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(or_(
                func.lower(Product.name).like(pattern),
                func.lower(Profile.email).like(pattern),
                func.lower(Profile.full_name).like(pattern),
            ))

        total_result = await self.session.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = total_result.scalar_one()

        page = max(page, 1)
        result = await self.session.execute(
            query.order_by(Order.created_at.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return {
            "total": total,
            "page": page,
            "per_page": per_page,
            "items": [order_to_dict(order, name, buyer) for order, name, buyer in result.all()],
        }
