"""Test data factories and test doubles shared by the courier tests."""
import time
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from courier.app.models.delivery_zone import DeliveryZone
from courier.app.models.rider import Rider
from courier.app.models.order import DeliveryOrder
from courier.app.services.geo import boundary_from_ring
from courier.app.services.messaging import MessageTransportError

STORE_ID = "store-accra"

# Central Accra, roughly 20 km across
ACCRA_RING = [(5.50, -0.30), (5.50, -0.10), (5.70, -0.10), (5.70, -0.30)]
ACCRA_POINT = (5.60, -0.20)
CUSTOMER_PHONE = "+233209990000"
RIDER_PHONE = "+233241110000"


class FakeMessageSender:
    """Records sends instead of calling a gateway. Flip fail_* to simulate an outage."""

    def __init__(self):
        self.sent = []
        self.fail_sms = False
        self.fail_whatsapp = False

    async def send_sms(self, phone: str, text: str, country: str) -> None:
        if self.fail_sms:
            raise MessageTransportError("sms", "gateway down")
        self._record("sms", phone, text, country)

    async def send_whatsapp(self, phone: str, text: str, country: str) -> None:
        if self.fail_whatsapp:
            raise MessageTransportError("whatsapp", "gateway down")
        self._record("whatsapp", phone, text, country)

    def _record(self, channel: str, phone: str, text: str, country: str) -> None:
        self.sent.append({
            "channel": channel,
            "phone": phone,
            "text": text,
            "country": country,
            "at": time.monotonic_ns(),
        })

    def to(self, phone: str) -> list:
        return [m for m in self.sent if m["phone"] == phone]


async def make_zone(
    session: AsyncSession,
    name: str = "Central",
    fee: str = "15.00",
    ring: Optional[list] = None,
    store_id: str = STORE_ID,
    **fields,
) -> DeliveryZone:
    zone = DeliveryZone(
        store_id=store_id,
        name=name,
        delivery_fee=Decimal(fee),
        min_order_amount=Decimal(fields.pop("min_order_amount", "0")),
        estimated_time_minutes=fields.pop("estimated_time_minutes", 30),
        boundary=boundary_from_ring(ring) if ring else None,
        is_active=fields.pop("is_active", True),
        **fields,
    )
    session.add(zone)
    await session.commit()
    await session.refresh(zone)
    return zone


async def make_rider(
    session: AsyncSession,
    name: str = "Kwame Mensah",
    phone: str = RIDER_PHONE,
    status: str = "available",
    store_id: str = STORE_ID,
    **fields,
) -> Rider:
    rider = Rider(
        store_id=store_id,
        name=name,
        phone=phone,
        status=status,
        is_online=fields.pop("is_online", status != "offline"),
        is_active=fields.pop("is_active", True),
        **fields,
    )
    session.add(rider)
    await session.commit()
    await session.refresh(rider)
    return rider


async def make_order(
    session: AsyncSession,
    order_number: str = "1001",
    point: Optional[tuple] = ACCRA_POINT,
    total: str = "120.00",
    store_id: str = STORE_ID,
    **fields,
) -> DeliveryOrder:
    order = DeliveryOrder(
        store_id=store_id,
        order_number=order_number,
        customer_name=fields.pop("customer_name", "Ama"),
        customer_phone=fields.pop("customer_phone", CUSTOMER_PHONE),
        delivery_address=fields.pop("delivery_address", "12 Oxford St, Osu"),
        delivery_latitude=point[0] if point else None,
        delivery_longitude=point[1] if point else None,
        order_total=Decimal(total),
        country=fields.pop("country", "GH"),
        **fields,
    )
    session.add(order)
    await session.commit()
    await session.refresh(order)
    return order
