# courier/app/services/tracking.py
"""Public tracking codes: short, easy to read aloud, verified unique before use."""
import secrets
from typing import Optional, Callable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from courier.app.core.constants import TRACKING_ALPHABET, TRACKING_CODE_LENGTH
from courier.app.core.exceptions import ContentionError, NotFoundError
from courier.app.core.logging import get_logger
from courier.app.core.settings import get_settings
from courier.app.models.order import DeliveryOrder

logger = get_logger(__name__)


class TrackingCodeExhausted(ContentionError):
    def __init__(self, attempts: int):
        super().__init__(f"Could not allocate a unique tracking code in {attempts} attempts")


class OrderNotFound(NotFoundError):
    def __init__(self, order_id):
        super().__init__(f"Order {order_id} not found")


def generate_tracking_code() -> str:
    """8 characters without I, O, 0 or 1. Not unique by itself."""
    return "".join(secrets.choice(TRACKING_ALPHABET) for _ in range(TRACKING_CODE_LENGTH))


class TrackingService:
    def __init__(
        self,
        session: AsyncSession,
        generator: Callable[[], str] = generate_tracking_code,
        max_attempts: Optional[int] = None,
    ):
        self.session = session
        self.generator = generator
        self.max_attempts = max_attempts if max_attempts is not None else get_settings().TRACKING_CODE_MAX_ATTEMPTS

    async def code_exists(self, code: str) -> bool:
        result = await self.session.execute(
            select(DeliveryOrder.id).where(DeliveryOrder.tracking_code == code)
        )
        return result.first() is not None

    async def new_unique_code(self) -> str:
        """Generate, verify against stored codes, regenerate on collision."""
        for attempt in range(1, self.max_attempts + 1):
            code = self.generator()
            if not await self.code_exists(code):
                return code
            logger.info("Tracking code collision, regenerating", attempt=attempt)
        raise TrackingCodeExhausted(self.max_attempts)

    async def assign_tracking_code(self, order_id: int, store_id: str) -> str:
        """
        Give an order its tracking code, keeping an existing one. A race that
        slips past the existence check is caught by the unique index and
        retried with a fresh code. Commits on success.
        """
        order = await self.get_order(order_id, store_id)
        if order.tracking_code:
            return order.tracking_code

        for attempt in range(1, self.max_attempts + 1):
            code = await self.new_unique_code()
            try:
                result = await self.session.execute(
                    update(DeliveryOrder)
                    .where(DeliveryOrder.id == order_id, DeliveryOrder.tracking_code.is_(None))
                    .values(tracking_code=code)
                    .execution_options(synchronize_session=False)
                )
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                logger.warning("Tracking code taken concurrently, retrying", order_id=order_id, attempt=attempt)
                continue
            if result.rowcount == 1:
                logger.info("Tracking code assigned", order_id=order_id, store_id=store_id)
                return code
            # Another caller set a code first
            await self.session.refresh(order)
            return order.tracking_code
        raise TrackingCodeExhausted(self.max_attempts)

    async def get_order(self, order_id: int, store_id: str) -> DeliveryOrder:
        result = await self.session.execute(
            select(DeliveryOrder).where(DeliveryOrder.id == order_id, DeliveryOrder.store_id == store_id)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def get_by_tracking_code(self, code: str) -> DeliveryOrder:
        result = await self.session.execute(
            select(DeliveryOrder).where(DeliveryOrder.tracking_code == code.strip().upper())
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFound(code)
        return order
