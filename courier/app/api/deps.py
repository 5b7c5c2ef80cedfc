from typing import AsyncGenerator, Optional

from fastapi import Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from courier.app.core.database import async_session
from courier.app.core.logging import get_logger
from courier.app.core.settings import get_settings
from courier.app.services.messaging import HttpMessageSender
from courier.app.services.notifications import NotificationDispatcher

logger = get_logger(__name__)

_notifier: Optional[NotificationDispatcher] = None


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Database session per request."""
    async with async_session() as session:
        yield session


def get_session_factory():
    """Factory for work that needs its own transaction (audit rows, compensating releases)."""
    return async_session


def get_notifier() -> NotificationDispatcher:
    global _notifier
    if _notifier is None:
        _notifier = NotificationDispatcher(HttpMessageSender(), async_session)
    return _notifier


async def require_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-Api-Key"),
):
    """Require the staff API key on dispatcher and zone management routes."""
    settings = get_settings()
    if not settings.ADMIN_API_KEY:
        # Not configured - allow all (dev mode); log warning
        logger.warning("ADMIN_API_KEY not set - staff endpoints are unprotected")
        return
    if not x_api_key or x_api_key != settings.ADMIN_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
