from datetime import datetime
from decimal import Decimal
from typing import Optional, Any

from sqlalchemy import String, Integer, DECIMAL, Boolean, Index, JSON, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from courier.app.core.base import Base, utcnow


class DeliveryZone(Base):
    __tablename__ = 'delivery_zones'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivery_fee: Mapped[Decimal] = mapped_column(DECIMAL(10, 2), default=Decimal("0"))
    min_order_amount: Mapped[Decimal] = mapped_column(DECIMAL(10, 2), default=Decimal("0"))
    free_delivery_threshold: Mapped[Optional[Decimal]] = mapped_column(DECIMAL(10, 2), nullable=True)
    estimated_time_minutes: Mapped[int] = mapped_column(Integer, default=45)
    # GeoJSON-style {"type": "Polygon", "coordinates": [[[lng, lat], ...]]}; NULL = manual selection only
    boundary: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON(), nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('ix_delivery_zones_store_id', 'store_id'),
        Index('ix_delivery_zones_store_active', 'store_id', 'is_active'),
    )
