import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, ForeignKey, DECIMAL, Text, Index, DateTime, Uuid, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.base import Base


class Product(Base):
    __tablename__ = 'products'
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey('profiles.id'))
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    final_price: Mapped[Decimal] = mapped_column(DECIMAL(12, 2))
    # None means "not configured"; see services.commissions.commission_rate_for
    commission_rate: Mapped[Optional[Decimal]] = mapped_column(DECIMAL(5, 2), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default='pending')
    price_type: Mapped[str] = mapped_column(String(20), default='fixed')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    __table_args__ = (
        Index('ix_products_owner_id', 'owner_id'),
        Index('ix_products_status', 'status'),
        CheckConstraint(
            'commission_rate IS NULL OR (commission_rate >= 0 AND commission_rate <= 100)',
            name='ck_products_commission_rate',
        ),
    )
