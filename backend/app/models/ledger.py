import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, DECIMAL, Index, Uuid, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.base import Base

ENTRY_COMMISSION_GRANT = "commission_grant"
ENTRY_COMMISSION_REVERSAL = "commission_reversal"
ENTRY_WITHDRAWAL_HOLD = "withdrawal_hold"
ENTRY_WITHDRAWAL_REFUND = "withdrawal_refund"


class LedgerEntry(Base):
    """
    Append-only record of every change to a profile's balance or earnings.

    `amount` is the signed effect on Profile.balance and `earnings_delta` the
    signed effect on Profile.total_earnings, so both stored figures equal the
    sum of the profile's entries.
    """
    __tablename__ = 'ledger_entries'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    profile_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey('profiles.id'))
    kind: Mapped[str] = mapped_column(String(32))
    amount: Mapped[Decimal] = mapped_column(DECIMAL(12, 2))
    earnings_delta: Mapped[Decimal] = mapped_column(DECIMAL(12, 2), default=Decimal("0"))
    # Not foreign keys: entries outlive deleted orders/withdrawals
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    withdrawal_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    __table_args__ = (
        Index('ix_ledger_entries_profile_id', 'profile_id'),
        Index('ix_ledger_entries_order_id', 'order_id'),
    )
