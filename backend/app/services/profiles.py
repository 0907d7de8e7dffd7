# backend/app/services/profiles.py
"""
Profile service - registration with referral codes, the affiliate network
view, and the admin user-management operations.
"""
import uuid
from decimal import Decimal
from typing import Optional, Dict, Any, List, Tuple

from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import ROLE_ADMIN, ROLE_AFFILIATE, ZERO
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.models.commission import Commission
from backend.app.models.ledger import LedgerEntry
from backend.app.models.notification import Notification
from backend.app.models.order import Order
from backend.app.models.product import Product
from backend.app.models.profile import Profile
from backend.app.models.withdrawal import Withdrawal
from backend.app.services.commissions import to_money
from backend.app.services.invoices import open_debt
from backend.app.services.withdrawals import available_for_withdrawal

logger = get_logger(__name__)

# Bulk statements below; the identity map is cleared afterwards
_NO_SYNC = {"synchronize_session": False}


class ProfileServiceError(ServiceError):
    """Base exception for profile errors."""


class UserNotFoundError(ProfileServiceError):
    def __init__(self, user_id: uuid.UUID):
        super().__init__(f"User {user_id} not found", 404)


class NicknameTakenError(ProfileServiceError):
    def __init__(self, nickname: str):
        super().__init__(f"Nickname '{nickname}' is already taken", 409)


class UserHasForeignOrdersError(ProfileServiceError):
    def __init__(self, user_id: uuid.UUID):
        super().__init__(
            f"User {user_id} owns products that other users have ordered; delete those orders first",
            409,
        )


def profile_to_dict(profile: Profile) -> Dict[str, Any]:
    return {
        "id": str(profile.id),
        "email": profile.email,
        "full_name": profile.full_name,
        "role": profile.role,
        "balance": to_money(profile.balance or ZERO),
        "total_earnings": to_money(profile.total_earnings or ZERO),
        "invoice_limit": to_money(profile.invoice_limit or ZERO),
        "invoice_due_day": profile.invoice_due_day,
        "referred_by": str(profile.referred_by) if profile.referred_by else None,
        "referral_code": profile.referral_code,
        "nickname": profile.nickname,
        "created_at": profile.created_at.isoformat() if profile.created_at else None,
    }


class ProfileService:
    """Caller must commit the session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_profile(self, user_id: uuid.UUID) -> Profile:
        profile = await self.session.get(Profile, user_id)
        if profile is None:
            raise UserNotFoundError(user_id)
        return profile

    async def _find_by_referral_code(self, code: str) -> Optional[Profile]:
        """Referral code first, then nickname; a code always wins over a nickname."""
        for column in (Profile.referral_code, Profile.nickname):
            result = await self.session.execute(select(Profile).where(column == code).limit(1))
            profile = result.scalars().first()
            if profile is not None:
                return profile
        return None

    async def register_profile(
        self,
        user_id: uuid.UUID,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
        referral_code: Optional[str] = None,
    ) -> Tuple[Profile, bool]:
        """
        Create the profile for an authenticated identity, or return the existing one.

        The referrer is resolved from referral_code (a referral code or a
        nickname) and is set only once: an existing referrer is never replaced.

        Returns:
            (profile, created)
        """
        profile = await self.session.get(Profile, user_id)
        created = profile is None
        if created:
            profile = Profile(id=user_id, email=email, full_name=full_name, role=ROLE_AFFILIATE)
            self.session.add(profile)

        if referral_code and profile.referred_by is None:
            referrer = await self._find_by_referral_code(referral_code.strip())
            if referrer is None:
                logger.warning("Unknown referral code", user_id=str(user_id), code=referral_code)
            elif referrer.id == user_id:
                logger.warning("Self-referral ignored", user_id=str(user_id))
            else:
                profile.referred_by = referrer.id
                logger.info("Referral registered", user_id=str(user_id), referrer_id=str(referrer.id))

        await self.session.flush()
        return profile, created

    async def set_nickname(self, user_id: uuid.UUID, nickname: str) -> Profile:
        nickname = nickname.strip()
        profile = await self.get_profile(user_id)
        result = await self.session.execute(
            select(Profile.id).where(
                Profile.id != user_id,
                or_(Profile.nickname == nickname, Profile.referral_code == nickname),
            ).limit(1)
        )
        if result.scalars().first() is not None:
            raise NicknameTakenError(nickname)
        profile.nickname = nickname
        await self.session.flush()
        return profile

    async def network_summary(self, user_id: uuid.UUID) -> Dict[str, Any]:
        """Balance figures and level-1 referrals of an affiliate."""
        profile = await self.get_profile(user_id)
        debt = await open_debt(self.session, user_id)
        balance = to_money(profile.balance or ZERO)

        result = await self.session.execute(
            select(Profile).where(Profile.referred_by == user_id).order_by(Profile.created_at.desc())
        )
        referrals = result.scalars().all()

        return {
            "referral_code": profile.referral_code,
            "nickname": profile.nickname,
            "balance": balance,
            "total_earnings": to_money(profile.total_earnings or ZERO),
            "debt": debt,
            "available_balance": available_for_withdrawal(balance, debt),
            "referrals": [
                {
                    "id": str(r.id),
                    "full_name": r.full_name,
                    "email": r.email,
                    "created_at": r.created_at.isoformat() if r.created_at else None,
                }
                for r in referrals
            ],
        }

    # -- admin ----------------------------------------------------------------

    async def list_users(self, search: Optional[str] = None) -> List[Dict[str, Any]]:
        query = select(Profile)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(or_(
                func.lower(Profile.email).like(pattern),
                func.lower(Profile.full_name).like(pattern),
            ))
        result = await self.session.execute(query.order_by(Profile.created_at.desc()))
        return [profile_to_dict(p) for p in result.scalars().all()]

    async def set_invoice_limit(self, user_id: uuid.UUID, limit: Decimal) -> Profile:
        limit = to_money(limit)
        if limit < ZERO:
            raise ProfileServiceError("Invoice limit cannot be negative")
        profile = await self.get_profile(user_id)
        profile.invoice_limit = limit
        await self.session.flush()
        logger.info("Invoice limit changed", user_id=str(user_id), invoice_limit=str(limit))
        return profile

    async def set_invoice_due_day(self, user_id: uuid.UUID, due_day: int) -> Profile:
        if not 1 <= due_day <= 31:
            raise ProfileServiceError("Invoice due day must be between 1 and 31")
        profile = await self.get_profile(user_id)
        profile.invoice_due_day = due_day
        await self.session.flush()
        logger.info("Invoice due day changed", user_id=str(user_id), invoice_due_day=due_day)
        return profile

    async def toggle_role(self, user_id: uuid.UUID, acting_admin_id: uuid.UUID) -> Profile:
        """Switch affiliate <-> admin. Admins cannot demote themselves."""
        if user_id == acting_admin_id:
            raise ProfileServiceError("You cannot change your own role")
        profile = await self.get_profile(user_id)
        profile.role = ROLE_AFFILIATE if profile.role == ROLE_ADMIN else ROLE_ADMIN
        await self.session.flush()
        logger.info("Role changed", user_id=str(user_id), role=profile.role, changed_by=str(acting_admin_id))
        return profile

    async def delete_user_completely(self, user_id: uuid.UUID) -> None:
        """
        Remove a user and everything they own.

        Commissions earned on the user's orders are deleted without touching the
        referrers' balances; their ledger entries stay as history.
        """
        await self.get_profile(user_id)

        owned_products = select(Product.id).where(Product.owner_id == user_id)
        foreign = await self.session.execute(
            select(func.count(Order.id)).where(
                Order.product_id.in_(owned_products),
                Order.user_id != user_id,
            )
        )
        if foreign.scalar_one() > 0:
            raise UserHasForeignOrdersError(user_id)

        user_orders = select(Order.id).where(
            or_(Order.user_id == user_id, Order.product_id.in_(owned_products))
        )
        statements = [
            delete(Notification).where(Notification.user_id == user_id),
            delete(Withdrawal).where(Withdrawal.user_id == user_id),
            delete(LedgerEntry).where(LedgerEntry.profile_id == user_id),
            delete(Commission).where(or_(
                Commission.affiliate_id == user_id,
                Commission.order_id.in_(user_orders),
            )),
            delete(Order).where(or_(Order.user_id == user_id, Order.product_id.in_(owned_products))),
            delete(Product).where(Product.owner_id == user_id),
            update(Profile).where(Profile.referred_by == user_id).values(referred_by=None),
            delete(Profile).where(Profile.id == user_id),
        ]
        for statement in statements:
            await self.session.execute(statement, execution_options=_NO_SYNC)
        self.session.expunge_all()
        logger.info("User deleted completely", user_id=str(user_id))
