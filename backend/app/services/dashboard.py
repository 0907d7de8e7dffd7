# backend/app/services/dashboard.py
"""Admin dashboard aggregates and the commissions report."""
from typing import Optional, Dict, Any

from redis.exceptions import RedisError
from sqlalchemy import select, func, or_, and_, distinct
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import ZERO
from backend.app.core.logging import get_logger
from backend.app.models.commission import Commission
from backend.app.models.order import Order
from backend.app.models.product import Product
from backend.app.models.profile import Profile
from backend.app.services.cache import CacheService
from backend.app.services.commissions import to_money

logger = get_logger(__name__)

TOP_PRODUCTS_LIMIT = 5

# Paid orders, plus pay-now orders already past payment
_revenue_condition = or_(
    Order.status == "paid",
    and_(Order.payment_method == "now", Order.status.in_(("shipped", "delivered"))),
)


async def compute_dashboard_stats(session: AsyncSession) -> Dict[str, Any]:
    revenue_result = await session.execute(
        select(func.coalesce(func.sum(Order.amount), 0)).where(_revenue_condition)
    )
    revenue = to_money(revenue_result.scalar_one())

    orders_result = await session.execute(
        select(func.count(Order.id)).where(Order.status != "rejected")
    )
    total_orders = orders_result.scalar_one()

    affiliates_result = await session.execute(select(func.count(Profile.id)))
    active_affiliates = affiliates_result.scalar_one()

    product_revenue = func.sum(Order.amount).label("revenue")
    top_result = await session.execute(
        select(Product.id, Product.name, product_revenue, func.count(Order.id))
        .join(Order, Order.product_id == Product.id)
        .where(_revenue_condition)
        .group_by(Product.id, Product.name)
        .order_by(product_revenue.desc())
        .limit(TOP_PRODUCTS_LIMIT)
    )

    return {
        "revenue": revenue,
        "total_orders": total_orders,
        "active_affiliates": active_affiliates,
        "average_ticket": to_money(revenue / total_orders) if total_orders else ZERO,
        "top_products": [
            {
                "product_id": str(product_id),
                "name": name,
                "revenue": to_money(amount),
                "orders": count,
            }
            for product_id, name, amount, count in top_result.all()
        ],
    }


async def get_dashboard_stats(session: AsyncSession, cache: Optional[CacheService] = None) -> Dict[str, Any]:
    """Dashboard stats, served from Redis for up to a minute. A Redis outage falls back to the database."""
    if cache is not None:
        try:
            cached = await cache.get_dashboard_stats()
        except RedisError as e:
            logger.warning("Dashboard cache read failed", error=str(e))
            cached = None
        if cached is not None:
            return cached
    stats = await compute_dashboard_stats(session)
    if cache is not None:
        try:
            await cache.set_dashboard_stats(stats)
        except RedisError as e:
            logger.warning("Dashboard cache write failed", error=str(e))
    return stats


async def commissions_report(session: AsyncSession) -> Dict[str, Any]:
    """All commissions with their order, plus network totals."""
    result = await session.execute(
        select(Commission, Order.amount, Order.status, Profile.full_name, Profile.email)
        .join(Order, Order.id == Commission.order_id, isouter=True)
        .join(Profile, Profile.id == Commission.affiliate_id, isouter=True)
        .order_by(Commission.created_at.desc())
    )
    rows = result.all()

    referred_result = await session.execute(
        select(func.count(distinct(Profile.id))).where(Profile.referred_by.is_not(None))
    )

    items = [
        {
            "id": str(c.id),
            "affiliate_id": str(c.affiliate_id),
            "affiliate_name": full_name,
            "affiliate_email": email,
            "order_id": str(c.order_id),
            "order_amount": to_money(order_amount) if order_amount is not None else None,
            "order_status": order_status,
            "amount": to_money(c.amount),
            "rate": c.rate,
            "created_at": c.created_at.isoformat() if c.created_at else None,
        }
        for c, order_amount, order_status, full_name, email in rows
    ]
    return {
        "total_amount": sum((item["amount"] for item in items), ZERO),
        "orders_count": len(items),
        "referred_profiles": referred_result.scalar_one(),
        "items": items,
    }
