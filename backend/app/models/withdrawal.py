import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, ForeignKey, DateTime, DECIMAL, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.base import Base


class Withdrawal(Base):
    __tablename__ = 'withdrawals'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey('profiles.id'))
    amount: Mapped[Decimal] = mapped_column(DECIMAL(12, 2))
    pix_key: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default='pending')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index('ix_withdrawals_user_id', 'user_id'),
        Index('ix_withdrawals_status', 'status'),
    )
