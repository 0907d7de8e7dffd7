import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, ForeignKey, DateTime, DECIMAL, Text, Index, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.base import Base


class Order(Base):
    __tablename__ = 'orders'
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey('profiles.id'))
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey('products.id'))
    amount: Mapped[Decimal] = mapped_column(DECIMAL(12, 2))
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    payment_method: Mapped[str] = mapped_column(String(20), default='now')
    status: Mapped[str] = mapped_column(String(20), default='pending')
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Mercado Pago preference id for "now" orders
    payment_preference_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, onupdate=datetime.now)

    __table_args__ = (
        Index('ix_orders_user_id', 'user_id'),
        Index('ix_orders_product_id', 'product_id'),
        Index('ix_orders_status', 'status'),
        Index('ix_orders_created_at', 'created_at'),
        # Open invoice debt lookup
        Index('ix_orders_user_method_status', 'user_id', 'payment_method', 'status'),
    )
