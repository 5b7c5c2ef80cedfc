# courier/app/services/riders.py
"""
Rider registry.

Rider.status is written only here. Every change is a single conditional
UPDATE whose rowcount decides the outcome, so two dispatchers can never
both win the same rider.
"""
import asyncio
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Dict, Any, Optional, Callable

from sqlalchemy import select, update, case, text, func
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from courier.app.core.base import utcnow
from courier.app.core.constants import (
    NON_TERMINAL_STATUSES,
    RIDER_AVAILABLE,
    RIDER_BUSY,
    RIDER_OFFLINE,
    RIDER_STATUSES,
    VEHICLE_TYPES,
)
from courier.app.core.exceptions import (
    CompensationFailed,
    ContentionError,
    NotFoundError,
    ValidationFailed,
)
from courier.app.core.logging import get_logger
from courier.app.core.metrics import rider_claims_total, rider_release_failures_total
from courier.app.core.settings import get_settings
from courier.app.models.delivery_assignment import DeliveryAssignment
from courier.app.models.rider import Rider

logger = get_logger(__name__)

# PostgreSQL lock_not_available
_LOCK_NOT_AVAILABLE = "55P03"


class RiderUnavailable(ContentionError):
    def __init__(self, rider_id: int):
        self.rider_id = rider_id
        super().__init__(f"Rider {rider_id} is not available")


class RiderNotFound(NotFoundError):
    def __init__(self, rider_id: int):
        super().__init__(f"Rider {rider_id} not found")


class InvalidRiderField(ValidationFailed):
    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


def _is_lock_contention(exc: OperationalError) -> bool:
    """True when the claim lost a row/database lock instead of hitting a real fault."""
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) == _LOCK_NOT_AVAILABLE or getattr(orig, "sqlstate", None) == _LOCK_NOT_AVAILABLE:
        return True
    message = str(exc).lower()
    return "database is locked" in message or "lock not available" in message or "lock timeout" in message


def _released_status():
    """Status a released rider lands in: available when online, offline otherwise."""
    return case((Rider.is_online == True, RIDER_AVAILABLE), else_=RIDER_OFFLINE)  # noqa: E712


class RiderService:
    def __init__(self, session: AsyncSession, claim_lock_timeout_ms: Optional[int] = None):
        self.session = session
        if claim_lock_timeout_ms is None:
            claim_lock_timeout_ms = get_settings().CLAIM_LOCK_TIMEOUT_MS
        self.claim_lock_timeout_ms = claim_lock_timeout_ms

    async def create_rider(self, store_id: str, data: Dict[str, Any]) -> Rider:
        name = (data.get("name") or "").strip()
        if not name:
            raise InvalidRiderField("name", "Rider name is required")
        phone = (data.get("phone") or "").strip()
        if not phone:
            raise InvalidRiderField("phone", "Phone number is required")
        vehicle_type = data.get("vehicle_type") or "motorcycle"
        if vehicle_type not in VEHICLE_TYPES:
            raise InvalidRiderField("vehicle_type", f"Must be one of {', '.join(VEHICLE_TYPES)}")

        rider = Rider(
            store_id=store_id,
            name=name,
            phone=phone,
            email=data.get("email"),
            vehicle_type=vehicle_type,
            vehicle_number=data.get("vehicle_number"),
            status=RIDER_OFFLINE,
            is_active=data.get("is_active", True),
            is_online=False,
        )
        self.session.add(rider)
        await self.session.flush()
        logger.info("Rider created", store_id=store_id, rider_id=rider.id)
        return rider

    async def get_rider(self, rider_id: int, store_id: str) -> Rider:
        result = await self.session.execute(
            select(Rider).where(Rider.id == rider_id, Rider.store_id == store_id)
        )
        rider = result.scalar_one_or_none()
        if rider is None:
            raise RiderNotFound(rider_id)
        return rider

    async def list_riders(self, store_id: str, status: Optional[str] = None) -> List[Rider]:
        query = select(Rider).where(Rider.store_id == store_id)
        if status:
            if status not in RIDER_STATUSES:
                raise InvalidRiderField("status", f"must be one of {', '.join(RIDER_STATUSES)}")
            query = query.where(Rider.status == status)
        result = await self.session.execute(query.order_by(Rider.name, Rider.id))
        return list(result.scalars().all())

    async def list_available(self, store_id: str) -> List[Rider]:
        """Riders a dispatcher may pick from. Nothing is reserved."""
        result = await self.session.execute(
            select(Rider)
            .where(
                Rider.store_id == store_id,
                Rider.is_active == True,  # noqa: E712
                Rider.status == RIDER_AVAILABLE,
            )
            .order_by(Rider.name, Rider.id)
        )
        return list(result.scalars().all())

    async def claim(self, store_id: str, rider_id: int) -> bool:
        """
        Move a rider from available to busy in one compare-and-swap UPDATE.

        Raises RiderUnavailable when the rider is not exactly available and
        active, or when another claim holds the row lock. A contended claim
        never waits beyond claim_lock_timeout_ms. Caller must commit.
        """
        if self.session.get_bind().dialect.name == "postgresql":
            await self.session.execute(
                text(f"SET LOCAL lock_timeout = '{int(self.claim_lock_timeout_ms)}ms'")
            )
        try:
            result = await self.session.execute(
                update(Rider)
                .where(
                    Rider.id == rider_id,
                    Rider.store_id == store_id,
                    Rider.status == RIDER_AVAILABLE,
                    Rider.is_active == True,  # noqa: E712
                )
                .values(status=RIDER_BUSY, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
        except OperationalError as e:
            if not _is_lock_contention(e):
                raise
            await self.session.rollback()
            rider_claims_total.labels(result="contended").inc()
            logger.info("Rider claim lost lock race", store_id=store_id, rider_id=rider_id)
            raise RiderUnavailable(rider_id) from e

        if result.rowcount != 1:
            rider_claims_total.labels(result="unavailable").inc()
            logger.info("Rider not available for claim", store_id=store_id, rider_id=rider_id)
            raise RiderUnavailable(rider_id)

        rider_claims_total.labels(result="claimed").inc()
        return True

    async def release(self, store_id: str, rider_id: Optional[int]) -> None:
        """
        Return a busy rider to the pool. Idempotent: an already released
        rider is left as is. A rider that went offline mid-delivery lands
        in offline, never available.
        """
        if rider_id is None:
            return
        await self.session.execute(
            update(Rider)
            .where(
                Rider.id == rider_id,
                Rider.store_id == store_id,
                Rider.status == RIDER_BUSY,
            )
            .values(status=_released_status(), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def set_presence(self, store_id: str, rider_id: int, online: bool) -> Rider:
        """
        Rider app going on/offline. A busy rider keeps busy until its
        delivery ends; the release then honours the new presence.
        """
        rider = await self.get_rider(rider_id, store_id)
        now = utcnow()
        values: Dict[str, Any] = {"is_online": online, "last_seen_at": now, "updated_at": now}
        await self.session.execute(
            update(Rider)
            .where(Rider.id == rider_id, Rider.store_id == store_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if online:
            transition = (
                update(Rider)
                .where(
                    Rider.id == rider_id,
                    Rider.status == RIDER_OFFLINE,
                    Rider.is_active == True,  # noqa: E712
                )
                .values(status=RIDER_AVAILABLE)
            )
        else:
            transition = (
                update(Rider)
                .where(Rider.id == rider_id, Rider.status == RIDER_AVAILABLE)
                .values(status=RIDER_OFFLINE)
            )
        await self.session.execute(transition.execution_options(synchronize_session=False))
        await self.session.refresh(rider)
        logger.info("Rider presence changed", store_id=store_id, rider_id=rider_id, online=online, status=rider.status)
        return rider

    async def set_active(self, store_id: str, rider_id: int, is_active: bool) -> Rider:
        """Staff (de)activation. A deactivated idle rider is taken off the pool."""
        rider = await self.get_rider(rider_id, store_id)
        await self.session.execute(
            update(Rider)
            .where(Rider.id == rider_id)
            .values(is_active=is_active, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if not is_active:
            await self.session.execute(
                update(Rider)
                .where(Rider.id == rider_id, Rider.status == RIDER_AVAILABLE)
                .values(status=RIDER_OFFLINE)
                .execution_options(synchronize_session=False)
            )
        await self.session.refresh(rider)
        return rider

    async def update_location(self, store_id: str, rider_id: int, latitude: float, longitude: float) -> Rider:
        rider = await self.get_rider(rider_id, store_id)
        rider.current_latitude = latitude
        rider.current_longitude = longitude
        rider.last_seen_at = utcnow()
        await self.session.flush()
        return rider

    async def increment_deliveries(self, rider_id: int) -> None:
        await self.session.execute(
            update(Rider)
            .where(Rider.id == rider_id)
            .values(total_deliveries=Rider.total_deliveries + 1)
            .execution_options(synchronize_session=False)
        )

    async def record_rating(self, rider_id: int, rating: int) -> None:
        """Fold one customer rating into the rider's running average."""
        while True:
            result = await self.session.execute(
                select(Rider.rating, Rider.total_ratings).where(Rider.id == rider_id)
            )
            row = result.first()
            if row is None:
                raise RiderNotFound(rider_id)
            current, count = Decimal(str(row.rating or 0)), row.total_ratings or 0
            average = ((current * count + rating) / (count + 1)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
            # Guarded on the count read above so a concurrent rating is not lost
            updated = await self.session.execute(
                update(Rider)
                .where(Rider.id == rider_id, Rider.total_ratings == count)
                .values(rating=average, total_ratings=count + 1)
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount == 1:
                return

    async def reconcile_stuck_riders(self, store_id: Optional[str] = None) -> List[int]:
        """
        Release riders left busy with no open assignment, the residue of a
        compensating release that ran out of retries. Caller must commit.
        """
        has_open_assignment = (
            select(DeliveryAssignment.id)
            .where(
                DeliveryAssignment.rider_id == Rider.id,
                DeliveryAssignment.status.in_(NON_TERMINAL_STATUSES),
            )
            .exists()
        )
        query = select(Rider.id).where(Rider.status == RIDER_BUSY, ~has_open_assignment)
        if store_id is not None:
            query = query.where(Rider.store_id == store_id)
        stuck_ids = list((await self.session.execute(query)).scalars().all())
        if not stuck_ids:
            return []

        await self.session.execute(
            update(Rider)
            .where(Rider.id.in_(stuck_ids), Rider.status == RIDER_BUSY, ~has_open_assignment)
            .values(status=_released_status(), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        logger.warning("Released stuck riders", rider_ids=stuck_ids, count=len(stuck_ids))
        return stuck_ids

    async def count_by_status(self, store_id: str) -> Dict[str, int]:
        result = await self.session.execute(
            select(Rider.status, func.count(Rider.id))
            .where(Rider.store_id == store_id, Rider.is_active == True)  # noqa: E712
            .group_by(Rider.status)
        )
        counts = {RIDER_AVAILABLE: 0, RIDER_BUSY: 0, RIDER_OFFLINE: 0}
        counts.update({status: count for status, count in result.all()})
        return counts


async def release_with_retry(
    session_factory: Callable[[], AsyncSession],
    store_id: str,
    rider_id: int,
    attempts: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
) -> None:
    """
    Compensating release after a failed assignment.

    Each attempt runs in its own session since the caller's session may be
    unusable. Retries with exponential backoff; when every attempt fails the
    rider is left busy, an alert is logged and CompensationFailed is raised.
    The periodic stuck-rider reconciliation picks such riders up later.
    """
    settings = get_settings()
    attempts = attempts if attempts is not None else settings.RELEASE_RETRY_ATTEMPTS
    backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.RELEASE_RETRY_BACKOFF_SECONDS

    attempt = 0
    while True:
        try:
            async with session_factory() as session:
                await RiderService(session).release(store_id, rider_id)
                await session.commit()
            return
        except SQLAlchemyError as e:
            attempt += 1
            if attempt >= attempts:
                rider_release_failures_total.inc()
                logger.critical(
                    "Compensating rider release failed, rider left busy",
                    alert=True,
                    store_id=store_id,
                    rider_id=rider_id,
                    attempts=attempt,
                    error=str(e),
                )
                raise CompensationFailed(
                    f"Rider {rider_id} could not be released after {attempt} attempts"
                ) from e
            wait_time = backoff_seconds * (2 ** (attempt - 1))
            logger.warning(
                "Rider release failed, retrying",
                store_id=store_id,
                rider_id=rider_id,
                attempt=attempt,
                retry_in=wait_time,
                error=str(e),
            )
            await asyncio.sleep(wait_time)
