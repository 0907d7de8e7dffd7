# backend/app/services/invoices.py
"""
Invoice credit: open debt, available credit, due dates and invoice settlement.
"""
import calendar
import uuid
from datetime import date
from decimal import Decimal
from typing import Dict, Any, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import SETTLED_INVOICE_STATUSES, ZERO
from backend.app.core.exceptions import ServiceError
from backend.app.models.order import Order
from backend.app.models.product import Product
from backend.app.models.profile import Profile
from backend.app.services.commissions import to_money


class InvoiceServiceError(ServiceError):
    """Base exception for invoice errors."""


class CreditLimitExceededError(InvoiceServiceError):
    def __init__(self, limit: Decimal, debt: Decimal, requested: Decimal):
        super().__init__(
            f"Credit limit exceeded: limit {limit}, already used {debt}, requested {requested}",
            400,
        )


class InvoiceProfileNotFoundError(InvoiceServiceError):
    def __init__(self, user_id: uuid.UUID):
        super().__init__(f"Profile {user_id} not found", 404)


def compute_due_date(created_on: date, due_day: int) -> date:
    """
    Due date of an invoice order.

    The due day of the creation month, or of the following month when the
    order was created after it. Months shorter than due_day clamp to their
    last day (due_day 31 in February -> Feb 28/29).
    """
    year, month = created_on.year, created_on.month
    if created_on.day > due_day:
        month += 1
        if month > 12:
            month = 1
            year += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(due_day, last_day))


def _open_invoice_filter(user_id: uuid.UUID):
    return (
        Order.user_id == user_id,
        Order.payment_method == "invoice",
        Order.status.notin_(SETTLED_INVOICE_STATUSES),
    )


async def open_debt(session: AsyncSession, user_id: uuid.UUID) -> Decimal:
    """Sum of the user's invoice orders that are neither paid nor rejected."""
    result = await session.execute(
        select(func.coalesce(func.sum(Order.amount), 0)).where(*_open_invoice_filter(user_id))
    )
    return to_money(result.scalar_one())


async def check_invoice_credit(session: AsyncSession, user_id: uuid.UUID, new_amount: Decimal) -> None:
    """Raise CreditLimitExceededError when new_amount does not fit in the user's limit."""
    profile = await session.get(Profile, user_id)
    if profile is None:
        raise InvoiceProfileNotFoundError(user_id)
    limit = to_money(profile.invoice_limit or ZERO)
    debt = await open_debt(session, user_id)
    requested = to_money(new_amount)
    if debt + requested > limit:
        raise CreditLimitExceededError(limit, debt, requested)


async def finance_summary(session: AsyncSession, user_id: uuid.UUID) -> Dict[str, Any]:
    """Wallet view: debt, limit, available limit and open invoices with due dates."""
    profile = await session.get(Profile, user_id)
    if profile is None:
        raise InvoiceProfileNotFoundError(user_id)

    result = await session.execute(
        select(Order, Product.name)
        .join(Product, Product.id == Order.product_id, isouter=True)
        .where(*_open_invoice_filter(user_id))
        .order_by(Order.created_at.desc())
    )
    rows = result.all()

    invoice_limit = to_money(profile.invoice_limit or ZERO)
    total_debt = sum((to_money(order.amount) for order, _ in rows), ZERO)
    open_orders: List[Dict[str, Any]] = [
        {
            "id": str(order.id),
            "created_at": order.created_at.isoformat() if order.created_at else None,
            "amount": to_money(order.amount),
            "status": order.status,
            "product_name": product_name,
            "due_date": compute_due_date(order.created_at.date(), profile.invoice_due_day).isoformat()
            if order.created_at else None,
        }
        for order, product_name in rows
    ]

    return {
        "total_debt": total_debt,
        "invoice_limit": invoice_limit,
        "available_limit": max(ZERO, invoice_limit - total_debt),
        "invoice_due_day": profile.invoice_due_day,
        "open_orders": open_orders,
    }
