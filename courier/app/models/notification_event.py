from datetime import datetime
from typing import Optional

from sqlalchemy import String, ForeignKey, DateTime, Index, Boolean, Integer
from sqlalchemy.orm import Mapped, mapped_column

from courier.app.core.base import Base, utcnow


class OrderEvent(Base):
    """Audit trail of delivery notifications; never read by re-delivery logic."""
    __tablename__ = 'order_events'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey('delivery_orders.id', ondelete='CASCADE'))
    event_type: Mapped[str] = mapped_column(String(50), default='notification')
    channel: Mapped[str] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(String(20))
    recipient: Mapped[str] = mapped_column(String(20), default='customer')
    message_preview: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    sent: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index('ix_order_events_order_id', 'order_id'),
    )
