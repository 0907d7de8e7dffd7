"""
Profile endpoints for the signed-in user.

Tokens are issued by the identity provider; /auth/register turns a valid
token for an unknown subject into a profile, attaching the referrer from
the invite link once.
"""
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, handle_service_error
from backend.app.core.auth import (
    Principal,
    get_current_principal,
    get_token_subject,
    require_write_access,
)
from backend.app.core.logging import get_logger
from backend.app.schemas import NicknameUpdate, ProfileRegister, ProfileResponse
from backend.app.services.profiles import ProfileService, ProfileServiceError

router = APIRouter()
logger = get_logger(__name__)


@router.post("/register", response_model=ProfileResponse)
async def register(
    data: ProfileRegister,
    user_id: uuid.UUID = Depends(get_token_subject),
    session: AsyncSession = Depends(get_session),
):
    service = ProfileService(session)
    profile, created = await service.register_profile(
        user_id,
        email=data.email,
        full_name=data.full_name,
        referral_code=data.referral_code,
    )
    await session.commit()
    if created:
        logger.info(
            "Profile registered",
            user_id=str(user_id),
            referred_by=str(profile.referred_by) if profile.referred_by else None,
        )
    return profile


@router.get("/me", response_model=ProfileResponse)
async def get_me(
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
):
    try:
        return await ProfileService(session).get_profile(principal.user_id)
    except ProfileServiceError as e:
        handle_service_error(e)


@router.get("/me/network")
async def get_network(
    principal: Principal = Depends(get_current_principal),
    session: AsyncSession = Depends(get_session),
):
    """Referral code, balances and level-1 referrals."""
    try:
        return await ProfileService(session).network_summary(principal.user_id)
    except ProfileServiceError as e:
        handle_service_error(e)


@router.put("/me/nickname", response_model=ProfileResponse)
async def set_nickname(
    data: NicknameUpdate,
    principal: Principal = Depends(require_write_access),
    session: AsyncSession = Depends(get_session),
):
    try:
        profile = await ProfileService(session).set_nickname(principal.user_id, data.nickname)
        await session.commit()
        return profile
    except ProfileServiceError as e:
        await session.rollback()
        handle_service_error(e)
