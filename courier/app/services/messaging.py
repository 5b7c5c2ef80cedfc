# courier/app/services/messaging.py
"""SMS and WhatsApp transport behind a small sender interface."""
from typing import Optional, Protocol

import httpx

from courier.app.core.logging import get_logger
from courier.app.core.settings import get_settings

logger = get_logger(__name__)


class MessageTransportError(Exception):
    """A gateway refused or failed a send. Never escapes NotificationDispatcher."""

    def __init__(self, channel: str, message: str):
        self.channel = channel
        self.message = message
        super().__init__(f"{channel}: {message}")


class MessageSender(Protocol):
    async def send_sms(self, phone: str, text: str, country: str) -> None:
        ...

    async def send_whatsapp(self, phone: str, text: str, country: str) -> None:
        ...


class HttpMessageSender:
    """
    Posts messages to HTTP gateways as ``{"to", "message", "country"}``.

    A channel without a configured gateway fails every send, so the
    dispatcher falls through to the next channel.
    """

    def __init__(
        self,
        sms_url: Optional[str] = None,
        whatsapp_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.sms_url = sms_url if sms_url is not None else settings.SMS_GATEWAY_URL
        self.whatsapp_url = whatsapp_url if whatsapp_url is not None else settings.WHATSAPP_GATEWAY_URL
        self.api_key = api_key if api_key is not None else settings.MESSAGING_API_KEY
        self.timeout = timeout if timeout is not None else settings.MESSAGING_TIMEOUT_SECONDS

    async def send_sms(self, phone: str, text: str, country: str) -> None:
        await self._post("sms", self.sms_url, phone, text, country)

    async def send_whatsapp(self, phone: str, text: str, country: str) -> None:
        await self._post("whatsapp", self.whatsapp_url, phone, text, country)

    async def _post(self, channel: str, url: Optional[str], phone: str, text: str, country: str) -> None:
        if not url:
            raise MessageTransportError(channel, "gateway not configured")
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(
                    url,
                    json={"to": phone, "message": text, "country": country},
                    headers=headers,
                )
        except httpx.HTTPError as e:
            raise MessageTransportError(channel, f"request failed: {e}") from e
        if not r.is_success:
            raise MessageTransportError(channel, f"status={r.status_code} body={r.text[:500]}")
