from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String, ForeignKey, DateTime, DECIMAL, Text, Index, Integer, text,
)
from sqlalchemy.orm import Mapped, mapped_column

from courier.app.core.base import Base, utcnow

# Keep in sync with constants.TERMINAL_STATUSES
_NON_TERMINAL_PREDICATE = "status NOT IN ('delivered', 'failed', 'cancelled')"


class DeliveryAssignment(Base):
    __tablename__ = 'delivery_assignments'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(64))
    order_id: Mapped[int] = mapped_column(ForeignKey('delivery_orders.id', ondelete='CASCADE'))
    rider_id: Mapped[Optional[int]] = mapped_column(ForeignKey('riders.id'), nullable=True)
    zone_id: Mapped[Optional[int]] = mapped_column(ForeignKey('delivery_zones.id'), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default='pending')
    # Frozen when the assignment is created; later zone edits never touch them
    delivery_fee: Mapped[Decimal] = mapped_column(DECIMAL(10, 2), default=Decimal("0"))
    rider_earnings: Mapped[Decimal] = mapped_column(DECIMAL(10, 2), default=Decimal("0"))
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    picked_up_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    in_transit_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivery_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    recipient_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    delivery_photo_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    customer_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    customer_feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('ix_delivery_assignments_store_id', 'store_id'),
        Index('ix_delivery_assignments_store_status', 'store_id', 'status'),
        Index('ix_delivery_assignments_rider_id', 'rider_id'),
        # At most one non-terminal assignment per order
        Index(
            'uq_delivery_assignments_active_order',
            'order_id',
            unique=True,
            postgresql_where=text(_NON_TERMINAL_PREDICATE),
            sqlite_where=text(_NON_TERMINAL_PREDICATE),
        ),
    )
