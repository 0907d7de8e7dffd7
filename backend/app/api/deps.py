from typing import AsyncGenerator

from fastapi import HTTPException
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database import async_session
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.services.cache import CacheService
from backend.app.services.payment import PaymentService

logger = get_logger(__name__)


# One database session per request; routers commit or roll back
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


async def get_cache() -> AsyncGenerator[CacheService, None]:
    redis = await CacheService.get_redis()
    yield CacheService(redis)


def get_payment_service() -> PaymentService:
    return PaymentService()


def handle_service_error(e: ServiceError):
    """Convert service exceptions to HTTP exceptions."""
    raise HTTPException(status_code=e.status_code, detail=e.message)


async def invalidate_dashboard(cache: CacheService) -> None:
    """Drop cached dashboard stats after a committed ledger change. Cache outages are not fatal."""
    try:
        await cache.invalidate_dashboard()
    except RedisError as e:
        logger.warning("Dashboard cache invalidation failed", error=str(e))
