from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, ForeignKey, DateTime, DECIMAL, Text, Index, Float
from sqlalchemy.orm import Mapped, mapped_column

from courier.app.core.base import Base, utcnow


class DeliveryOrder(Base):
    """The part of a store order the dispatcher reads and mirrors status into."""
    __tablename__ = 'delivery_orders'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(64))
    order_number: Mapped[str] = mapped_column(String(50))
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    delivery_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivery_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    delivery_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    order_total: Mapped[Decimal] = mapped_column(DECIMAL(12, 2), default=Decimal("0"))
    country: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    pickup_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tracking_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True, unique=True)
    delivery_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    rider_id: Mapped[Optional[int]] = mapped_column(ForeignKey('riders.id'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index('ix_delivery_orders_store_id', 'store_id'),
    )
