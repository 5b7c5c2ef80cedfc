from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Integer, DECIMAL, Boolean, Index, DateTime, Float
from sqlalchemy.orm import Mapped, mapped_column

from courier.app.core.base import Base, utcnow
from courier.app.core.constants import DEFAULT_RIDER_RATING


class Rider(Base):
    __tablename__ = 'riders'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(255))
    phone: Mapped[str] = mapped_column(String(50))
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    vehicle_type: Mapped[str] = mapped_column(String(20), default='motorcycle')
    vehicle_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    # available | busy | offline; written only by RiderService claim/release/presence
    status: Mapped[str] = mapped_column(String(20), default='offline')
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_online: Mapped[bool] = mapped_column(Boolean, default=False)
    current_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    current_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rating: Mapped[Decimal] = mapped_column(DECIMAL(3, 2), default=DEFAULT_RIDER_RATING)
    total_ratings: Mapped[int] = mapped_column(Integer, default=0)
    total_deliveries: Mapped[int] = mapped_column(Integer, default=0)
    last_seen_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('ix_riders_store_id', 'store_id'),
        Index('ix_riders_store_status', 'store_id', 'status'),
    )
