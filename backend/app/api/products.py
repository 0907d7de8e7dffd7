import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, handle_service_error
from backend.app.core.auth import Principal, get_current_principal, require_write_access
from backend.app.schemas import ProductCreate, ProductResponse, ProductUpdate
from backend.app.services.products import (
    ProductServiceError,
    create_product_service,
    delete_product_service,
    list_marketplace_service,
    list_owned_service,
    update_product_service,
)

router = APIRouter()


@router.get("", response_model=List[ProductResponse])
async def list_marketplace(
    _principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
):
    """Approved products available for ordering."""
    return await list_marketplace_service(session)


@router.get("/mine", response_model=List[ProductResponse])
async def list_my_products(
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
):
    return await list_owned_service(session, principal.user_id)


@router.post("", response_model=ProductResponse)
async def create_product(
    data: ProductCreate,
    principal: Principal = Depends(require_write_access),
    session: AsyncSession = Depends(get_session),
):
    try:
        product = await create_product_service(
            session,
            owner_id=principal.user_id,
            name=data.name,
            final_price=data.final_price,
            description=data.description,
            price_type=data.price_type,
        )
        await session.commit()
        return product
    except ProductServiceError as e:
        await session.rollback()
        handle_service_error(e)


@router.put("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: uuid.UUID,
    data: ProductUpdate,
    principal: Principal = Depends(require_write_access),
    session: AsyncSession = Depends(get_session),
):
    """Owner edit; fields left out of the body are unchanged."""
    try:
        product = await update_product_service(
            session,
            product_id,
            owner_id=principal.user_id,
            **data.model_dump(exclude_unset=True),
        )
        await session.commit()
        return product
    except ProductServiceError as e:
        await session.rollback()
        handle_service_error(e)


@router.delete("/{product_id}")
async def delete_product(
    product_id: uuid.UUID,
    principal: Principal = Depends(require_write_access),
    session: AsyncSession = Depends(get_session),
):
    try:
        await delete_product_service(session, product_id, owner_id=principal.user_id)
        await session.commit()
    except ProductServiceError as e:
        await session.rollback()
        handle_service_error(e)
    return {"status": "ok", "product_id": str(product_id)}
