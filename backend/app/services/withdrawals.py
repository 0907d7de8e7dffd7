# backend/app/services/withdrawals.py
"""
Withdrawal service.

A request holds the affiliate's whole available balance at once; rejecting
the request refunds it onto whatever the balance is at that moment, approving
it leaves the balance untouched.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import WITHDRAWAL_MINIMUM, WITHDRAWAL_STATUSES, ZERO
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.metrics import withdrawals_total
from backend.app.models.ledger import ENTRY_WITHDRAWAL_HOLD, ENTRY_WITHDRAWAL_REFUND
from backend.app.models.profile import Profile
from backend.app.models.withdrawal import Withdrawal
from backend.app.services.commissions import to_money
from backend.app.services.invoices import open_debt
from backend.app.services.ledger import LedgerService

logger = get_logger(__name__)


class WithdrawalServiceError(ServiceError):
    """Base exception for withdrawal errors."""


class PixKeyRequiredError(WithdrawalServiceError):
    def __init__(self):
        super().__init__("A PIX key is required to request a withdrawal", 400)


class InsufficientBalanceError(WithdrawalServiceError):
    def __init__(self, available: Decimal):
        super().__init__(
            f"Minimum withdrawal is {WITHDRAWAL_MINIMUM}; available balance is {available}",
            400,
        )


class WithdrawalNotFoundError(WithdrawalServiceError):
    def __init__(self, withdrawal_id: uuid.UUID):
        super().__init__(f"Withdrawal {withdrawal_id} not found", 404)


class InvalidWithdrawalStatusError(WithdrawalServiceError):
    def __init__(self, withdrawal_id: uuid.UUID, status: str):
        super().__init__(f"Withdrawal {withdrawal_id} is already {status}", 409)


def available_for_withdrawal(balance: Decimal, debt: Decimal) -> Decimal:
    """Balance net of open invoice debt, never negative."""
    return max(ZERO, to_money(balance) - to_money(debt))


def withdrawal_to_dict(withdrawal: Withdrawal, profile: Optional[Profile] = None) -> Dict[str, Any]:
    data = {
        "id": str(withdrawal.id),
        "user_id": str(withdrawal.user_id),
        "amount": to_money(withdrawal.amount),
        "pix_key": withdrawal.pix_key,
        "status": withdrawal.status,
        "created_at": withdrawal.created_at.isoformat() if withdrawal.created_at else None,
        "resolved_at": withdrawal.resolved_at.isoformat() if withdrawal.resolved_at else None,
    }
    if profile is not None:
        data["user_email"] = profile.email
        data["user_name"] = profile.full_name
    return data


class WithdrawalService:
    """Caller must commit the session."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.ledger = LedgerService(session)

    async def request(self, user_id: uuid.UUID, pix_key: str) -> Withdrawal:
        """
        Request a payout of the entire available balance and hold it.

        Raises:
            PixKeyRequiredError: empty PIX key
            InsufficientBalanceError: available balance under the minimum
        """
        pix_key = (pix_key or "").strip()
        if not pix_key:
            raise PixKeyRequiredError()

        profile = await self.ledger.lock_profile(user_id)
        debt = await open_debt(self.session, user_id)
        available = available_for_withdrawal(profile.balance or ZERO, debt)
        if available < WITHDRAWAL_MINIMUM:
            raise InsufficientBalanceError(available)

        withdrawal = Withdrawal(user_id=user_id, amount=available, pix_key=pix_key, status="pending")
        self.session.add(withdrawal)
        await self.session.flush()

        await self.ledger.apply(
            user_id,
            ENTRY_WITHDRAWAL_HOLD,
            amount=-available,
            withdrawal_id=withdrawal.id,
        )
        withdrawals_total.labels(status="requested").inc()
        logger.info(
            "Withdrawal requested",
            withdrawal_id=str(withdrawal.id),
            user_id=str(user_id),
            amount=str(available),
            open_debt=str(debt),
            pix_key=pix_key,
        )
        return withdrawal

    async def _get_pending_for_update(self, withdrawal_id: uuid.UUID) -> Withdrawal:
        result = await self.session.execute(
            select(Withdrawal)
            .where(Withdrawal.id == withdrawal_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        withdrawal = result.scalar_one_or_none()
        if withdrawal is None:
            raise WithdrawalNotFoundError(withdrawal_id)
        if withdrawal.status != "pending":
            raise InvalidWithdrawalStatusError(withdrawal_id, withdrawal.status)
        return withdrawal

    async def approve(self, withdrawal_id: uuid.UUID) -> Withdrawal:
        """Mark a pending withdrawal paid out; the hold becomes final."""
        withdrawal = await self._get_pending_for_update(withdrawal_id)
        withdrawal.status = "approved"
        withdrawal.resolved_at = datetime.now()
        await self.session.flush()
        withdrawals_total.labels(status="approved").inc()
        logger.info("Withdrawal approved", withdrawal_id=str(withdrawal_id), amount=str(withdrawal.amount))
        return withdrawal

    async def reject(self, withdrawal_id: uuid.UUID) -> Withdrawal:
        """Reject a pending withdrawal and refund its amount onto the current balance."""
        withdrawal = await self._get_pending_for_update(withdrawal_id)
        withdrawal.status = "rejected"
        withdrawal.resolved_at = datetime.now()
        await self.ledger.apply(
            withdrawal.user_id,
            ENTRY_WITHDRAWAL_REFUND,
            amount=withdrawal.amount,
            withdrawal_id=withdrawal.id,
        )
        withdrawals_total.labels(status="rejected").inc()
        logger.info(
            "Withdrawal rejected and refunded",
            withdrawal_id=str(withdrawal_id),
            user_id=str(withdrawal.user_id),
            amount=str(withdrawal.amount),
        )
        return withdrawal

    async def list_for_user(self, user_id: uuid.UUID) -> List[Dict[str, Any]]:
        result = await self.session.execute(
            select(Withdrawal)
            .where(Withdrawal.user_id == user_id)
            .order_by(Withdrawal.created_at.desc())
        )
        return [withdrawal_to_dict(w) for w in result.scalars().all()]

    async def list_all(
        self,
        status: Optional[str] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Dict[str, Any]:
        """Admin listing, newest first."""
        if status and status not in WITHDRAWAL_STATUSES:
            raise WithdrawalServiceError(f"Invalid status. Must be one of: {list(WITHDRAWAL_STATUSES)}")

        query = select(Withdrawal, Profile).join(Profile, Profile.id == Withdrawal.user_id, isouter=True)
        count_query = select(func.count(Withdrawal.id))
        if status:
            query = query.where(Withdrawal.status == status)
            count_query = count_query.where(Withdrawal.status == status)

        total = (await self.session.execute(count_query)).scalar_one()
        page = max(page, 1)
        result = await self.session.execute(
            query.order_by(Withdrawal.created_at.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return {
            "total": total,
            "page": page,
            "per_page": per_page,
            "items": [withdrawal_to_dict(w, p) for w, p in result.all()],
        }
