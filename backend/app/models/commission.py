import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, DateTime, DECIMAL, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.base import Base


class Commission(Base):
    __tablename__ = 'commissions'

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # The referrer who earns the commission
    affiliate_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey('profiles.id'))
    # At most one commission per order
    order_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey('orders.id'), unique=True)
    amount: Mapped[Decimal] = mapped_column(DECIMAL(12, 2))
    rate: Mapped[Decimal] = mapped_column(DECIMAL(5, 2))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    __table_args__ = (
        Index('ix_commissions_affiliate_id', 'affiliate_id'),
    )
