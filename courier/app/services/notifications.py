# courier/app/services/notifications.py
"""
Customer and rider delivery notifications.

Each status has one SMS and one WhatsApp template. A send goes to WhatsApp
first when preferred and falls back to SMS. Every attempted channel leaves
one OrderEvent audit row, so a WhatsApp failure followed by an SMS send
writes two rows. Transport and audit failures are logged and absorbed:
callers only ever see (channel, sent).
"""
from decimal import Decimal
from typing import Callable, Dict, NamedTuple, Optional

from pydantic import BaseModel

from courier.app.core.constants import (
    CHANNEL_SMS,
    CHANNEL_WHATSAPP,
    DELIVERY_STATUSES,
    MESSAGE_PREVIEW_LENGTH,
)
from courier.app.core.base import utcnow
from courier.app.core.logging import get_logger
from courier.app.core.metrics import delivery_notifications_total
from courier.app.core.settings import get_settings
from courier.app.models.notification_event import OrderEvent
from courier.app.services.messaging import MessageSender, MessageTransportError

logger = get_logger(__name__)

CURRENCY_SYMBOLS = {"NG": "₦", "GH": "GH₵"}


class DeliveryNotificationPayload(BaseModel):
    order_id: int
    order_number: str
    status: str
    store_id: str
    country: str = "GH"
    tracking_code: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_name: Optional[str] = None
    delivery_address: Optional[str] = None
    rider_name: Optional[str] = None
    rider_phone: Optional[str] = None
    estimated_time: Optional[str] = None


class NotifyResult(NamedTuple):
    channel: Optional[str]
    sent: bool


Template = Callable[[DeliveryNotificationPayload, str], str]

SMS_TEMPLATES: Dict[str, Template] = {
    "pending": lambda p, url: (
        f"Hi {p.customer_name or 'Customer'}, your order #{p.order_number} is being prepared for delivery. "
        f"Track: {url}"
    ),
    "assigned": lambda p, url: (
        f"Good news! A rider ({p.rider_name}) has been assigned to deliver your order #{p.order_number}. "
        f"Track: {url}"
    ),
    "accepted": lambda p, url: (
        f"Your rider {p.rider_name} is on the way to pick up your order #{p.order_number}. "
        f"ETA: {p.estimated_time or 'Soon'}. Track: {url}"
    ),
    "picked_up": lambda p, url: (
        f"🎉 Your order #{p.order_number} has been picked up! Rider: {p.rider_name} ({p.rider_phone}). "
        f"Track: {url}"
    ),
    "in_transit": lambda p, url: (
        f"🚀 Your order #{p.order_number} is on its way! ETA: {p.estimated_time or 'Soon'}. "
        f"Contact rider: {p.rider_phone}. Track: {url}"
    ),
    "delivered": lambda p, url: (
        f"✅ Your order #{p.order_number} has been delivered! Thank you for your purchase. "
        f"Rate your experience: {url}"
    ),
    "failed": lambda p, url: (
        f"⚠️ Delivery attempt for order #{p.order_number} was unsuccessful. "
        f"Please contact support or call the store."
    ),
    "cancelled": lambda p, url: (
        f"Your delivery for order #{p.order_number} has been cancelled. "
        f"Please contact the store for more information."
    ),
}

WHATSAPP_TEMPLATES: Dict[str, Template] = {
    "pending": lambda p, url: (
        f"🛒 *Order Confirmed*\n\nHi {p.customer_name or 'Customer'},\n\n"
        f"Your order #{p.order_number} is being prepared for delivery.\n\n"
        f"📍 *Delivery to:*\n{p.delivery_address or 'Your address'}\n\n"
        f"🔗 Track your order:\n{url}"
    ),
    "assigned": lambda p, url: (
        f"🏍️ *Rider Assigned*\n\nGreat news {p.customer_name or ''}!\n\n"
        f"*{p.rider_name}* has been assigned to deliver your order #{p.order_number}.\n\n"
        f"⏱️ ETA: {p.estimated_time or 'Soon'}\n\n"
        f"🔗 Track live:\n{url}"
    ),
    "accepted": lambda p, url: (
        f"✨ *Order Accepted*\n\nYour rider *{p.rider_name}* is heading to pick up order #{p.order_number}.\n\n"
        f"📞 Contact rider: {p.rider_phone}\n\n"
        f"🔗 Track live:\n{url}"
    ),
    "picked_up": lambda p, url: (
        f"📦 *Order Picked Up*\n\nYour order #{p.order_number} is now with the rider!\n\n"
        f"🏍️ *Rider:* {p.rider_name}\n📞 *Contact:* {p.rider_phone}\n"
        f"⏱️ *ETA:* {p.estimated_time or 'Soon'}\n\n"
        f"🔗 Track live:\n{url}"
    ),
    "in_transit": lambda p, url: (
        f"🚀 *On the Way!*\n\nYour order #{p.order_number} is on its way to you!\n\n"
        f"📍 *Delivering to:*\n{p.delivery_address or 'Your address'}\n\n"
        f"🏍️ *Rider:* {p.rider_name}\n📞 *Call:* {p.rider_phone}\n"
        f"⏱️ *ETA:* {p.estimated_time or 'Any moment'}\n\n"
        f"🔗 Track live:\n{url}"
    ),
    "delivered": lambda p, url: (
        f"✅ *Delivered!*\n\nYour order #{p.order_number} has been delivered.\n\n"
        f"Thank you for choosing us! 🙏\n\n"
        f"⭐ Rate your delivery experience:\n{url}"
    ),
    "failed": lambda p, url: (
        f"❌ *Delivery Failed*\n\nWe were unable to complete delivery for order #{p.order_number}.\n\n"
        f"Please contact the store or reply to this message for assistance."
    ),
    "cancelled": lambda p, url: (
        f"🚫 *Delivery Cancelled*\n\nYour delivery for order #{p.order_number} has been cancelled.\n\n"
        f"For any questions, please contact the store."
    ),
}

TEMPLATES = {CHANNEL_SMS: SMS_TEMPLATES, CHANNEL_WHATSAPP: WHATSAPP_TEMPLATES}


def _check_template_coverage() -> None:
    for channel, templates in TEMPLATES.items():
        missing = set(DELIVERY_STATUSES) - set(templates)
        if missing:
            raise RuntimeError(f"{channel} templates missing for statuses: {sorted(missing)}")


_check_template_coverage()


def currency_symbol(country: Optional[str]) -> str:
    return CURRENCY_SYMBOLS.get((country or "").upper(), CURRENCY_SYMBOLS["GH"])


def format_eta(minutes: Optional[int]) -> Optional[str]:
    if not minutes:
        return None
    return f"{minutes} mins"


def render_rider_assignment(
    order_number: str,
    pickup_address: Optional[str],
    delivery_address: Optional[str],
    earnings: Decimal,
    country: Optional[str],
) -> str:
    return (
        f"🆕 *New Delivery Assignment*\n\n"
        f"Order #{order_number}\n\n"
        f"📍 *Pickup:*\n{pickup_address or 'Store'}\n\n"
        f"📍 *Deliver to:*\n{delivery_address or 'See app'}\n\n"
        f"💰 *Earnings:* {currency_symbol(country)}{Decimal(earnings):.2f}\n\n"
        f"Open your app to accept this delivery."
    )


def render_daily_summary(
    total: int,
    completed: int,
    failed: int,
    revenue: Decimal,
    country: Optional[str],
    top_rider: Optional[str] = None,
) -> str:
    success_rate = f"{completed / total * 100:.1f}" if total > 0 else "0"
    text = (
        f"📊 *Daily Delivery Summary*\n\n"
        f"📦 Total Deliveries: {total}\n"
        f"✅ Completed: {completed}\n"
        f"❌ Failed: {failed}\n"
        f"📈 Success Rate: {success_rate}%\n"
        f"💰 Revenue: {currency_symbol(country)}{Decimal(revenue):.2f}\n"
    )
    if top_rider:
        text += f"\n🏆 Top Rider: {top_rider}"
    return text


class NotificationDispatcher:
    def __init__(
        self,
        sender: MessageSender,
        session_factory,
        tracking_base_url: Optional[str] = None,
        prefer_whatsapp: Optional[bool] = None,
    ):
        settings = get_settings()
        self.sender = sender
        self.session_factory = session_factory
        self.tracking_base_url = (tracking_base_url or settings.TRACKING_BASE_URL).rstrip("/")
        self.prefer_whatsapp = settings.NOTIFY_PREFER_WHATSAPP if prefer_whatsapp is None else prefer_whatsapp

    def tracking_url(self, tracking_code: Optional[str]) -> str:
        return f"{self.tracking_base_url}/{tracking_code or ''}"

    def render(self, payload: DeliveryNotificationPayload, channel: str) -> str:
        template = TEMPLATES[channel][payload.status]
        return template(payload, self.tracking_url(payload.tracking_code))

    async def notify(
        self,
        payload: DeliveryNotificationPayload,
        prefer_whatsapp: Optional[bool] = None,
    ) -> NotifyResult:
        """Send the customer message for payload.status. Never raises for transport problems."""
        if prefer_whatsapp is None:
            prefer_whatsapp = self.prefer_whatsapp
        if not payload.customer_phone:
            logger.debug("No customer phone, skip delivery notification", order_id=payload.order_id)
            return NotifyResult(channel=None, sent=False)

        if prefer_whatsapp:
            text = self.render(payload, CHANNEL_WHATSAPP)
            if await self._attempt(payload.order_id, payload.status, "customer", CHANNEL_WHATSAPP,
                                   payload.customer_phone, text, payload.country):
                return NotifyResult(channel=CHANNEL_WHATSAPP, sent=True)

        text = self.render(payload, CHANNEL_SMS)
        sent = await self._attempt(payload.order_id, payload.status, "customer", CHANNEL_SMS,
                                   payload.customer_phone, text, payload.country)
        return NotifyResult(channel=CHANNEL_SMS, sent=sent)

    async def notify_rider_assignment(
        self,
        order_id: int,
        rider_phone: Optional[str],
        text: str,
        country: str,
    ) -> NotifyResult:
        """Tell the rider about a new assignment through the same fallback path."""
        if not rider_phone:
            return NotifyResult(channel=None, sent=False)
        if self.prefer_whatsapp and await self._attempt(
            order_id, "assigned", "rider", CHANNEL_WHATSAPP, rider_phone, text, country
        ):
            return NotifyResult(channel=CHANNEL_WHATSAPP, sent=True)
        sent = await self._attempt(order_id, "assigned", "rider", CHANNEL_SMS, rider_phone, text, country)
        return NotifyResult(channel=CHANNEL_SMS, sent=sent)

    async def send_text(self, phone: str, text: str, country: str) -> NotifyResult:
        """Unaudited store-facing message (daily summary)."""
        if self.prefer_whatsapp and await self._send(CHANNEL_WHATSAPP, phone, text, country):
            return NotifyResult(channel=CHANNEL_WHATSAPP, sent=True)
        sent = await self._send(CHANNEL_SMS, phone, text, country)
        return NotifyResult(channel=CHANNEL_SMS, sent=sent)

    async def _attempt(
        self,
        order_id: int,
        status: str,
        recipient: str,
        channel: str,
        phone: str,
        text: str,
        country: str,
    ) -> bool:
        sent = await self._send(channel, phone, text, country)
        await self._audit(order_id, status, recipient, channel, text, sent)
        return sent

    async def _send(self, channel: str, phone: str, text: str, country: str) -> bool:
        send = self.sender.send_whatsapp if channel == CHANNEL_WHATSAPP else self.sender.send_sms
        try:
            await send(phone, text, country)
        except MessageTransportError as e:
            delivery_notifications_total.labels(channel=channel, result="failed").inc()
            logger.warning("Notification send failed", channel=channel, error=e.message)
            return False
        except Exception as e:
            delivery_notifications_total.labels(channel=channel, result="failed").inc()
            logger.exception("Notification sender raised unexpectedly", channel=channel, error=str(e))
            return False
        delivery_notifications_total.labels(channel=channel, result="sent").inc()
        return True

    async def _audit(
        self,
        order_id: int,
        status: str,
        recipient: str,
        channel: str,
        text: str,
        sent: bool,
    ) -> None:
        try:
            async with self.session_factory() as session:
                session.add(OrderEvent(
                    order_id=order_id,
                    event_type="notification",
                    channel=channel,
                    status=status,
                    recipient=recipient,
                    message_preview=text[:MESSAGE_PREVIEW_LENGTH],
                    sent=sent,
                    created_at=utcnow(),
                ))
                await session.commit()
        except Exception as e:
            logger.exception("Failed to write notification audit", order_id=order_id, channel=channel, error=str(e))
