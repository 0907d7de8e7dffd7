from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_cache, get_session, handle_service_error, invalidate_dashboard
from backend.app.core.auth import Principal, get_current_principal, require_write_access
from backend.app.core.exceptions import ServiceError
from backend.app.core.limiter import limiter
from backend.app.core.logging import get_logger
from backend.app.schemas import WithdrawalRequest
from backend.app.services.cache import CacheService
from backend.app.services.withdrawals import WithdrawalService, withdrawal_to_dict

router = APIRouter()
logger = get_logger(__name__)


@router.post("")
@limiter.limit("5/minute")
async def request_withdrawal(
    request: Request,
    data: WithdrawalRequest,
    principal: Principal = Depends(require_write_access),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    """Withdraw the whole available balance to a PIX key."""
    service = WithdrawalService(session)
    try:
        withdrawal = await service.request(principal.user_id, data.pix_key)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        logger.warning("Withdrawal request refused", user_id=str(principal.user_id), error=e.message)
        handle_service_error(e)
    await invalidate_dashboard(cache)
    return withdrawal_to_dict(withdrawal)


@router.get("/mine")
async def list_my_withdrawals(
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
):
    return await WithdrawalService(session).list_for_user(principal.user_id)
