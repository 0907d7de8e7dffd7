# backend/app/services/ledger.py
"""
Ledger service - the only code path that changes Profile.balance or
Profile.total_earnings.

Every change is an atomic `UPDATE ... SET balance = balance + :delta` issued
in the caller's transaction together with an append-only LedgerEntry, so the
stored figures always equal the fold of the profile's entries.
"""
import uuid
from decimal import Decimal
from typing import Optional, Dict, Any, List

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import ZERO
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.models.ledger import LedgerEntry
from backend.app.models.profile import Profile
from backend.app.services.commissions import to_money

logger = get_logger(__name__)


class LedgerServiceError(ServiceError):
    """Base exception for ledger errors."""


class ProfileNotFoundError(LedgerServiceError):
    def __init__(self, profile_id: uuid.UUID):
        super().__init__(f"Profile {profile_id} not found", 404)


class LedgerService:
    """Balance bookkeeping. Caller must commit the session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def lock_profile(self, profile_id: uuid.UUID) -> Profile:
        """Load a profile with a row lock and fresh column values."""
        result = await self.session.execute(
            select(Profile)
            .where(Profile.id == profile_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        profile = result.scalar_one_or_none()
        if profile is None:
            raise ProfileNotFoundError(profile_id)
        return profile

    async def apply(
        self,
        profile_id: uuid.UUID,
        kind: str,
        amount: Decimal,
        earnings_delta: Decimal = ZERO,
        order_id: Optional[uuid.UUID] = None,
        withdrawal_id: Optional[uuid.UUID] = None,
    ) -> Profile:
        """
        Apply a signed balance/earnings change and record it.

        Returns the profile with its post-update values loaded.
        """
        amount = to_money(amount)
        earnings_delta = to_money(earnings_delta)

        result = await self.session.execute(
            update(Profile)
            .where(Profile.id == profile_id)
            .values(
                balance=Profile.balance + amount,
                total_earnings=Profile.total_earnings + earnings_delta,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ProfileNotFoundError(profile_id)

        self.session.add(LedgerEntry(
            profile_id=profile_id,
            kind=kind,
            amount=amount,
            earnings_delta=earnings_delta,
            order_id=order_id,
            withdrawal_id=withdrawal_id,
        ))
        await self.session.flush()

        refreshed = await self.session.execute(
            select(Profile)
            .where(Profile.id == profile_id)
            .execution_options(populate_existing=True)
        )
        profile = refreshed.scalar_one()

        logger.info(
            "Ledger entry applied",
            profile_id=str(profile_id),
            kind=kind,
            amount=str(amount),
            earnings_delta=str(earnings_delta),
            order_id=str(order_id) if order_id else None,
            withdrawal_id=str(withdrawal_id) if withdrawal_id else None,
        )
        return profile

    async def get_entries(self, profile_id: uuid.UUID) -> List[LedgerEntry]:
        result = await self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.profile_id == profile_id)
            .order_by(LedgerEntry.created_at.desc())
        )
        return list(result.scalars().all())

    async def reconcile(self, profile_id: uuid.UUID) -> Dict[str, Any]:
        """
        Compare stored balance/earnings with the fold of the ledger.

        Profiles whose balance was seeded outside the ledger (imports, manual
        fixes) show up here as a non-zero drift.
        """
        profile = await self.session.get(Profile, profile_id)
        if profile is None:
            raise ProfileNotFoundError(profile_id)

        result = await self.session.execute(
            select(
                func.coalesce(func.sum(LedgerEntry.amount), 0),
                func.coalesce(func.sum(LedgerEntry.earnings_delta), 0),
            ).where(LedgerEntry.profile_id == profile_id)
        )
        folded_balance, folded_earnings = result.one()
        folded_balance = to_money(folded_balance)
        folded_earnings = to_money(folded_earnings)
        stored_balance = to_money(profile.balance or ZERO)
        stored_earnings = to_money(profile.total_earnings or ZERO)

        return {
            "profile_id": str(profile_id),
            "stored_balance": stored_balance,
            "ledger_balance": folded_balance,
            "balance_drift": stored_balance - folded_balance,
            "stored_total_earnings": stored_earnings,
            "ledger_total_earnings": folded_earnings,
            "earnings_drift": stored_earnings - folded_earnings,
            "consistent": stored_balance == folded_balance and stored_earnings == folded_earnings,
        }

    async def find_drift(self) -> List[Dict[str, Any]]:
        """Profiles whose stored balance or earnings differ from their folded ledger."""
        folded = (
            select(
                LedgerEntry.profile_id.label("profile_id"),
                func.sum(LedgerEntry.amount).label("balance"),
                func.sum(LedgerEntry.earnings_delta).label("earnings"),
            )
            .group_by(LedgerEntry.profile_id)
            .subquery()
        )
        result = await self.session.execute(
            select(
                Profile.id,
                Profile.balance,
                Profile.total_earnings,
                func.coalesce(folded.c.balance, 0),
                func.coalesce(folded.c.earnings, 0),
            ).outerjoin(folded, folded.c.profile_id == Profile.id)
        )

        drift = []
        for profile_id, balance, earnings, ledger_balance, ledger_earnings in result.all():
            balance_drift = to_money(balance or ZERO) - to_money(ledger_balance)
            earnings_drift = to_money(earnings or ZERO) - to_money(ledger_earnings)
            if balance_drift or earnings_drift:
                drift.append({
                    "profile_id": str(profile_id),
                    "balance_drift": balance_drift,
                    "earnings_drift": earnings_drift,
                })
        return drift
