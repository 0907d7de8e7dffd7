import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, DECIMAL, Integer, Index, Uuid, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.base import Base
from backend.app.core.constants import DEFAULT_INVOICE_DUE_DAY, DEFAULT_INVOICE_LIMIT, ROLE_AFFILIATE


def generate_referral_code() -> str:
    return uuid.uuid4().hex[:8]


class Profile(Base):
    __tablename__ = 'profiles'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), default=ROLE_AFFILIATE)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    # Balance and lifetime earnings only change together with a LedgerEntry
    balance: Mapped[Decimal] = mapped_column(DECIMAL(12, 2), default=Decimal("0"))
    total_earnings: Mapped[Decimal] = mapped_column(DECIMAL(12, 2), default=Decimal("0"))

    # Invoice credit
    invoice_limit: Mapped[Decimal] = mapped_column(DECIMAL(12, 2), default=DEFAULT_INVOICE_LIMIT)
    invoice_due_day: Mapped[int] = mapped_column(Integer, default=DEFAULT_INVOICE_DUE_DAY)

    # Referral tree (one level is used for commissions)
    referred_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True
    )
    referral_code: Mapped[str] = mapped_column(String(32), unique=True, default=generate_referral_code)
    nickname: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)

    __table_args__ = (
        Index('ix_profiles_referred_by', 'referred_by'),
        Index('ix_profiles_role', 'role'),
        CheckConstraint('invoice_due_day BETWEEN 1 AND 31', name='ck_profiles_invoice_due_day'),
    )
