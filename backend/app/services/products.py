# backend/app/services/products.py
import uuid
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import PRICE_TYPES, PRODUCT_STATUSES, ZERO, PERCENT_BASE
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.models.order import Order
from backend.app.models.product import Product

logger = get_logger(__name__)


class ProductServiceError(ServiceError):
    """Base exception for product errors."""


class ProductNotFoundError(ProductServiceError):
    def __init__(self, product_id: uuid.UUID):
        super().__init__(f"Product {product_id} not found", 404)


class ProductNotOwnedError(ProductServiceError):
    def __init__(self, product_id: uuid.UUID):
        super().__init__(f"Product {product_id} belongs to another user", 403)


class ProductHasOrdersError(ProductServiceError):
    def __init__(self, product_id: uuid.UUID):
        super().__init__(f"Product {product_id} has orders and cannot be deleted", 409)


class InvalidCommissionRateError(ProductServiceError):
    def __init__(self, rate):
        super().__init__(f"Commission rate must be between 0 and 100, got {rate}", 400)


def validate_commission_rate(rate) -> Decimal:
    value = Decimal(str(rate))
    if value < ZERO or value > PERCENT_BASE:
        raise InvalidCommissionRateError(rate)
    return value


async def create_product_service(
    session: AsyncSession,
    owner_id: uuid.UUID,
    name: str,
    final_price: Decimal,
    description: Optional[str] = None,
    price_type: str = "fixed",
) -> Product:
    """New products always wait for admin approval."""
    if price_type not in PRICE_TYPES:
        raise ProductServiceError(f"Invalid price type. Must be one of: {list(PRICE_TYPES)}")
    if Decimal(str(final_price)) <= ZERO:
        raise ProductServiceError("Price must be greater than zero")
    product = Product(
        owner_id=owner_id,
        name=name.strip(),
        description=description,
        final_price=final_price,
        price_type=price_type,
        status="pending",
    )
    session.add(product)
    await session.flush()
    logger.info("Product registered", product_id=str(product.id), owner_id=str(owner_id))
    return product


async def list_marketplace_service(session: AsyncSession) -> List[Product]:
    """Approved products only."""
    result = await session.execute(
        select(Product).where(Product.status == "approved").order_by(Product.created_at.desc())
    )
    return list(result.scalars().all())


async def list_owned_service(session: AsyncSession, owner_id: uuid.UUID) -> List[Product]:
    result = await session.execute(
        select(Product).where(Product.owner_id == owner_id).order_by(Product.created_at.desc())
    )
    return list(result.scalars().all())


async def list_products_service(session: AsyncSession, status: Optional[str] = None) -> List[Product]:
    """Admin listing, optionally filtered by moderation status."""
    query = select(Product)
    if status:
        if status not in PRODUCT_STATUSES:
            raise ProductServiceError(f"Invalid status. Must be one of: {list(PRODUCT_STATUSES)}")
        query = query.where(Product.status == status)
    result = await session.execute(query.order_by(Product.created_at.desc()))
    return list(result.scalars().all())


async def get_product_by_id_service(session: AsyncSession, product_id: uuid.UUID) -> Product:
    product = await session.get(Product, product_id)
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


async def approve_product_service(session: AsyncSession, product_id: uuid.UUID, commission_rate) -> Product:
    """Approve a product and set the commission its referrers earn."""
    rate = validate_commission_rate(commission_rate)
    product = await get_product_by_id_service(session, product_id)
    product.status = "approved"
    product.commission_rate = rate
    await session.flush()
    logger.info("Product approved", product_id=str(product_id), commission_rate=str(rate))
    return product


async def reject_product_service(session: AsyncSession, product_id: uuid.UUID) -> Product:
    product = await get_product_by_id_service(session, product_id)
    product.status = "rejected"
    await session.flush()
    logger.info("Product rejected", product_id=str(product_id))
    return product


async def set_commission_rate_service(session: AsyncSession, product_id: uuid.UUID, commission_rate) -> Product:
    """Change the rate for future grants; existing commissions keep their rate."""
    rate = validate_commission_rate(commission_rate)
    product = await get_product_by_id_service(session, product_id)
    product.commission_rate = rate
    await session.flush()
    logger.info("Product commission rate changed", product_id=str(product_id), commission_rate=str(rate))
    return product


async def _get_owned_product(session: AsyncSession, product_id: uuid.UUID, owner_id: uuid.UUID) -> Product:
    product = await get_product_by_id_service(session, product_id)
    if product.owner_id != owner_id:
        raise ProductNotOwnedError(product_id)
    return product


async def update_product_service(
    session: AsyncSession,
    product_id: uuid.UUID,
    owner_id: uuid.UUID,
    name: Optional[str] = None,
    description: Optional[str] = None,
    final_price: Optional[Decimal] = None,
    price_type: Optional[str] = None,
) -> Product:
    """
    Owner edit of the catalogue fields. Moderation status and commission rate
    stay with the admin; commissions already granted keep their amounts.
    """
    product = await _get_owned_product(session, product_id, owner_id)
    if price_type is not None:
        if price_type not in PRICE_TYPES:
            raise ProductServiceError(f"Invalid price type. Must be one of: {list(PRICE_TYPES)}")
        product.price_type = price_type
    if final_price is not None:
        if Decimal(str(final_price)) <= ZERO:
            raise ProductServiceError("Price must be greater than zero")
        product.final_price = final_price
    if name is not None:
        product.name = name.strip()
    if description is not None:
        product.description = description
    await session.flush()
    logger.info("Product updated", product_id=str(product_id), owner_id=str(owner_id))
    return product


async def delete_product_service(session: AsyncSession, product_id: uuid.UUID, owner_id: uuid.UUID) -> None:
    """Owner removal; refused once any order points at the product."""
    product = await _get_owned_product(session, product_id, owner_id)
    result = await session.execute(select(func.count(Order.id)).where(Order.product_id == product_id))
    if result.scalar_one() > 0:
        raise ProductHasOrdersError(product_id)
    await session.delete(product)
    await session.flush()
    logger.info("Product deleted", product_id=str(product_id), owner_id=str(owner_id))
