# courier/app/services/dispatch.py
"""
Dispatch engine - assignment lifecycle for delivery orders.

Business writes commit first; customer and rider notifications go out
afterwards, in transition order, and can never undo a committed change.
"""
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, List, Dict, Any, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from courier.app.core.base import utcnow
from courier.app.core.constants import (
    ACTIVE_STATUSES,
    ASSIGNED,
    CANCELLED,
    DELIVERED,
    DELIVERY_STATUSES,
    FAILED,
    IN_TRANSIT,
    NON_TERMINAL_STATUSES,
    ONE_CENT,
    PENDING,
    PICKED_UP,
    STATUS_TIMESTAMP_FIELDS,
    STATUS_TRANSITIONS,
    TERMINAL_STATUSES,
)
from courier.app.core.exceptions import (
    ContentionError,
    NotFoundError,
    TransitionError,
    ValidationFailed,
)
from courier.app.core.logging import get_logger, bind_dispatch_context
from courier.app.core.metrics import delivery_assignments_total, delivery_transitions_total
from courier.app.core.settings import get_settings
from courier.app.models.delivery_assignment import DeliveryAssignment
from courier.app.models.delivery_zone import DeliveryZone
from courier.app.models.order import DeliveryOrder
from courier.app.models.rider import Rider
from courier.app.services.delivery_zones import DeliveryZoneService, quote_fee
from courier.app.services.notifications import (
    DeliveryNotificationPayload,
    NotificationDispatcher,
    format_eta,
    render_rider_assignment,
)
from courier.app.services.riders import RiderService, release_with_retry
from courier.app.services.tracking import OrderNotFound

logger = get_logger(__name__)

RATING_MIN, RATING_MAX = 1, 5
DETAIL_FIELDS = ("delivery_notes", "recipient_name", "delivery_photo_url")


class AlreadyAssigned(ContentionError):
    def __init__(self, order_id: int):
        super().__init__(f"Order {order_id} already has an open delivery assignment")


class StatusConflict(ContentionError):
    def __init__(self, assignment_id: int, expected: str):
        super().__init__(f"Assignment {assignment_id} is no longer '{expected}'")


class AlreadyRated(ContentionError):
    def __init__(self, assignment_id: int):
        super().__init__(f"Assignment {assignment_id} has already been rated")


class AssignmentAlreadyTerminal(TransitionError):
    def __init__(self, assignment_id: int, status: str):
        super().__init__(f"Assignment {assignment_id} is already {status}")


class InvalidTransition(TransitionError):
    def __init__(self, current: str, attempted: str):
        self.current = current
        self.attempted = attempted
        super().__init__(f"Cannot move delivery from '{current}' to '{attempted}'")


class MissingFailureReason(ValidationFailed):
    def __init__(self):
        super().__init__("A failure reason is required")


class InvalidRating(ValidationFailed):
    def __init__(self, rating: Any):
        super().__init__(f"Rating must be between {RATING_MIN} and {RATING_MAX}, got {rating!r}")


class NoZoneMatched(ValidationFailed):
    def __init__(self, order_id: int):
        super().__init__(
            f"No delivery zone matched order {order_id}; choose a zone or enter a fee"
        )


class AssignmentNotFound(NotFoundError):
    def __init__(self, assignment_id: int):
        super().__init__(f"Delivery assignment {assignment_id} not found")


def check_transition(assignment_id: int, current: str, attempted: str) -> None:
    """The single place that decides whether a status change is legal."""
    if current in TERMINAL_STATUSES:
        raise AssignmentAlreadyTerminal(assignment_id, current)
    if attempted not in STATUS_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransition(current, attempted)


def rider_earnings(fee: Decimal, rate: Decimal) -> Decimal:
    return (Decimal(fee) * Decimal(rate)).quantize(ONE_CENT, rounding=ROUND_HALF_UP)


class DispatchService:
    def __init__(
        self,
        session: AsyncSession,
        session_factory=None,
        notifier: Optional[NotificationDispatcher] = None,
        commission_rate: Optional[Decimal] = None,
    ):
        settings = get_settings()
        self.session = session
        self.session_factory = session_factory
        self.notifier = notifier
        self.commission_rate = commission_rate if commission_rate is not None else settings.RIDER_COMMISSION_RATE
        self.riders = RiderService(session)
        self.zones = DeliveryZoneService(session)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_order(self, order_id: int, store_id: str) -> DeliveryOrder:
        result = await self.session.execute(
            select(DeliveryOrder).where(DeliveryOrder.id == order_id, DeliveryOrder.store_id == store_id)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def get_assignment(self, assignment_id: int, store_id: str) -> DeliveryAssignment:
        result = await self.session.execute(
            select(DeliveryAssignment).where(
                DeliveryAssignment.id == assignment_id,
                DeliveryAssignment.store_id == store_id,
            )
        )
        assignment = result.scalar_one_or_none()
        if assignment is None:
            raise AssignmentNotFound(assignment_id)
        return assignment

    async def get_open_assignment(self, order_id: int) -> Optional[DeliveryAssignment]:
        result = await self.session.execute(
            select(DeliveryAssignment).where(
                DeliveryAssignment.order_id == order_id,
                DeliveryAssignment.status.in_(NON_TERMINAL_STATUSES),
            )
        )
        return result.scalar_one_or_none()

    async def list_assignments(
        self,
        store_id: str,
        status: Optional[str] = None,
        rider_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[DeliveryAssignment]:
        query = select(DeliveryAssignment).where(DeliveryAssignment.store_id == store_id)
        if status:
            query = query.where(DeliveryAssignment.status == status)
        if rider_id is not None:
            query = query.where(DeliveryAssignment.rider_id == rider_id)
        result = await self.session.execute(
            query.order_by(DeliveryAssignment.created_at.desc(), DeliveryAssignment.id.desc()).limit(limit)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    async def _price(
        self,
        order: DeliveryOrder,
        zone_id: Optional[int],
        fee: Optional[Decimal],
    ) -> Tuple[Optional[int], Decimal]:
        """A manual fee wins, then an explicit zone, then the zone under the drop-off point."""
        if fee is not None:
            fee = Decimal(str(fee))
            if fee < 0:
                raise ValidationFailed("Delivery fee cannot be negative")
            return zone_id, fee
        if zone_id is not None:
            zone = await self.zones.get_zone(zone_id, order.store_id)
            return zone.id, quote_fee(zone, order.order_total).fee
        if order.delivery_latitude is not None and order.delivery_longitude is not None:
            match = await self.zones.resolve(
                order.store_id, order.delivery_latitude, order.delivery_longitude, order.order_total
            )
            if match.matched:
                return match.zone.id, match.fee
        raise NoZoneMatched(order.id)

    async def _sync_order(self, order_id: int, status: str, rider_id: Optional[int] = None) -> None:
        values: Dict[str, Any] = {"delivery_status": status}
        if rider_id is not None:
            values["rider_id"] = rider_id
        await self.session.execute(
            update(DeliveryOrder)
            .where(DeliveryOrder.id == order_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def queue_delivery(
        self,
        store_id: str,
        order_id: int,
        zone_id: Optional[int] = None,
        fee: Optional[Decimal] = None,
    ) -> DeliveryAssignment:
        """Open a pending assignment with its fee frozen and no rider yet."""
        bind_dispatch_context(store_id=store_id, order_id=order_id)
        order = await self.get_order(order_id, store_id)
        if await self.get_open_assignment(order_id) is not None:
            raise AlreadyAssigned(order_id)
        zone_id, fee = await self._price(order, zone_id, fee)

        assignment = DeliveryAssignment(
            store_id=store_id,
            order_id=order_id,
            zone_id=zone_id,
            status=PENDING,
            delivery_fee=fee,
            rider_earnings=rider_earnings(fee, self.commission_rate),
        )
        self.session.add(assignment)
        try:
            await self.session.flush()
            await self._sync_order(order_id, PENDING)
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise AlreadyAssigned(order_id) from e

        delivery_transitions_total.labels(status=PENDING).inc()
        logger.info("Delivery queued", assignment_id=assignment.id, fee=str(fee))
        await self._notify(assignment, PENDING)
        return assignment

    async def assign_rider(
        self,
        store_id: str,
        order_id: int,
        rider_id: int,
        zone_id: Optional[int] = None,
        fee: Optional[Decimal] = None,
    ) -> DeliveryAssignment:
        """
        Claim a rider and attach them to the order.

        A pending assignment for the order is promoted in place; any other
        open assignment means AlreadyAssigned. Once the rider is claimed,
        every failure releases them again before the error propagates.
        """
        bind_dispatch_context(store_id=store_id, order_id=order_id, rider_id=rider_id)
        order = await self.get_order(order_id, store_id)
        existing = await self.get_open_assignment(order_id)
        if existing is not None and existing.status != PENDING:
            delivery_assignments_total.labels(result="already_assigned").inc()
            raise AlreadyAssigned(order_id)
        if existing is None:
            zone_id, fee = await self._price(order, zone_id, fee)
        await self.riders.get_rider(rider_id, store_id)

        await self.riders.claim(store_id, rider_id)

        now = utcnow()
        try:
            if existing is not None:
                assignment_id = existing.id
                promoted = await self.session.execute(
                    update(DeliveryAssignment)
                    .where(DeliveryAssignment.id == existing.id, DeliveryAssignment.status == PENDING)
                    .values(status=ASSIGNED, rider_id=rider_id, assigned_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if promoted.rowcount != 1:
                    raise AlreadyAssigned(order_id)
            else:
                assignment = DeliveryAssignment(
                    store_id=store_id,
                    order_id=order_id,
                    rider_id=rider_id,
                    zone_id=zone_id,
                    status=ASSIGNED,
                    delivery_fee=fee,
                    rider_earnings=rider_earnings(fee, self.commission_rate),
                    assigned_at=now,
                )
                self.session.add(assignment)
                await self.session.flush()
                assignment_id = assignment.id
            await self._sync_order(order_id, ASSIGNED, rider_id)
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            await self._compensate(store_id, rider_id)
            if isinstance(e, IntegrityError):
                delivery_assignments_total.labels(result="already_assigned").inc()
                raise AlreadyAssigned(order_id) from e
            if not isinstance(e, AlreadyAssigned):
                delivery_assignments_total.labels(result="error").inc()
                logger.error("Rider assignment failed after claim", error=str(e))
            else:
                delivery_assignments_total.labels(result="already_assigned").inc()
            raise

        assignment = await self.get_assignment(assignment_id, store_id)
        await self.session.refresh(assignment)
        delivery_assignments_total.labels(result="assigned").inc()
        delivery_transitions_total.labels(status=ASSIGNED).inc()
        logger.info(
            "Rider assigned",
            assignment_id=assignment.id,
            fee=str(assignment.delivery_fee),
            earnings=str(assignment.rider_earnings),
        )
        await self._notify(assignment, ASSIGNED, notify_rider=True)
        return assignment

    async def _compensate(self, store_id: str, rider_id: int) -> None:
        if self.session_factory is None:
            await self.riders.release(store_id, rider_id)
            await self.session.commit()
            return
        await release_with_retry(self.session_factory, store_id, rider_id)

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def advance_status(
        self,
        store_id: str,
        assignment_id: int,
        next_status: str,
        data: Optional[Dict[str, Any]] = None,
        expected_status: Optional[str] = None,
    ) -> DeliveryAssignment:
        """
        Move an assignment one step along the lifecycle.

        The write is conditioned on the status read here (or expected_status
        when the caller supplies what it saw), so of two racing calls the
        second gets StatusConflict. Terminal statuses release the rider in
        the same transaction.
        """
        data = data or {}
        bind_dispatch_context(store_id=store_id, assignment_id=assignment_id)
        assignment = await self.get_assignment(assignment_id, store_id)
        current = assignment.status
        if current in TERMINAL_STATUSES:
            logger.warning("Rejected transition of a finished delivery", current=current, attempted=next_status)
            raise AssignmentAlreadyTerminal(assignment_id, current)
        if expected_status is not None and expected_status != current:
            raise StatusConflict(assignment_id, expected_status)
        if next_status not in DELIVERY_STATUSES:
            raise InvalidTransition(current, next_status)
        try:
            check_transition(assignment_id, current, next_status)
        except TransitionError:
            logger.warning("Rejected delivery transition", current=current, attempted=next_status)
            raise

        reason = (data.get("failure_reason") or "").strip()
        if next_status == FAILED and not reason:
            raise MissingFailureReason()

        now = utcnow()
        values: Dict[str, Any] = {
            "status": next_status,
            STATUS_TIMESTAMP_FIELDS[next_status]: now,
            "updated_at": now,
        }
        if reason and next_status in (FAILED, CANCELLED):
            values["failure_reason"] = reason
        for field in DETAIL_FIELDS:
            if data.get(field):
                values[field] = data[field]

        result = await self.session.execute(
            update(DeliveryAssignment)
            .where(DeliveryAssignment.id == assignment_id, DeliveryAssignment.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            logger.info("Delivery status changed concurrently", expected=current, attempted=next_status)
            raise StatusConflict(assignment_id, current)

        if next_status in TERMINAL_STATUSES:
            await self.riders.release(store_id, assignment.rider_id)
            if next_status == DELIVERED and assignment.rider_id is not None:
                await self.riders.increment_deliveries(assignment.rider_id)
        await self._sync_order(assignment.order_id, next_status)
        await self.session.commit()
        await self.session.refresh(assignment)

        delivery_transitions_total.labels(status=next_status).inc()
        logger.info("Delivery status advanced", previous=current, status=next_status)
        await self._notify(assignment, next_status)
        return assignment

    async def amend_failure_reason(self, store_id: str, assignment_id: int, reason: str) -> DeliveryAssignment:
        """The failure reason is the one field still editable on a finished delivery."""
        assignment = await self.get_assignment(assignment_id, store_id)
        if assignment.status not in (FAILED, CANCELLED):
            raise InvalidTransition(assignment.status, "amended")
        reason = (reason or "").strip()
        if not reason:
            raise MissingFailureReason()
        assignment.failure_reason = reason
        await self.session.commit()
        return assignment

    async def rate_delivery(
        self,
        store_id: str,
        assignment_id: int,
        rating: int,
        feedback: Optional[str] = None,
    ) -> DeliveryAssignment:
        """Store the customer's rating once and fold it into the rider's average."""
        if not isinstance(rating, int) or not RATING_MIN <= rating <= RATING_MAX:
            raise InvalidRating(rating)
        assignment = await self.get_assignment(assignment_id, store_id)
        if assignment.status != DELIVERED:
            raise InvalidTransition(assignment.status, "rated")
        result = await self.session.execute(
            update(DeliveryAssignment)
            .where(DeliveryAssignment.id == assignment_id, DeliveryAssignment.customer_rating.is_(None))
            .values(customer_rating=rating, customer_feedback=feedback)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            raise AlreadyRated(assignment_id)
        if assignment.rider_id is not None:
            await self.riders.record_rating(assignment.rider_id, rating)
        await self.session.commit()
        await self.session.refresh(assignment)
        return assignment

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_delivery_stats(self, store_id: str, day: Optional[date] = None) -> Dict[str, Any]:
        day = day or utcnow().date()
        start = datetime.combine(day, time.min)
        end = start + timedelta(days=1)
        A = DeliveryAssignment

        async def count(*conditions) -> int:
            result = await self.session.execute(
                select(func.count(A.id)).where(A.store_id == store_id, *conditions)
            )
            return result.scalar_one() or 0

        delivered_today = await count(A.status == DELIVERED, A.delivered_at >= start, A.delivered_at < end)
        failed_today = await count(A.status == FAILED, A.failed_at >= start, A.failed_at < end)
        in_transit = await count(A.status.in_((PICKED_UP, IN_TRANSIT)))
        pending = await count(A.status == PENDING)
        active = await count(A.status.in_(ACTIVE_STATUSES))

        fees = await self.session.execute(
            select(func.coalesce(func.sum(A.delivery_fee), 0)).where(
                A.store_id == store_id, A.status == DELIVERED, A.delivered_at >= start, A.delivered_at < end
            )
        )
        avg_rating = await self.session.execute(
            select(func.avg(A.customer_rating)).where(A.store_id == store_id, A.customer_rating.isnot(None))
        )
        top = await self.session.execute(
            select(Rider.name, func.count(A.id).label("deliveries"))
            .join(Rider, Rider.id == A.rider_id)
            .where(A.store_id == store_id, A.status == DELIVERED, A.delivered_at >= start, A.delivered_at < end)
            .group_by(Rider.id, Rider.name)
            .order_by(func.count(A.id).desc(), Rider.name)
            .limit(1)
        )
        top_row = top.first()
        average = avg_rating.scalar_one()

        return {
            "day": day.isoformat(),
            "delivered_today": delivered_today,
            "failed_today": failed_today,
            "in_transit": in_transit,
            "pending": pending,
            "active": active,
            "riders": await self.riders.count_by_status(store_id),
            "fees_collected_today": Decimal(str(fees.scalar_one())).quantize(ONE_CENT),
            "average_rating": round(float(average), 2) if average is not None else None,
            "top_rider": top_row.name if top_row else None,
        }

    # ------------------------------------------------------------------
    # Notifications (after commit)
    # ------------------------------------------------------------------

    async def build_payload(
        self, assignment: DeliveryAssignment, status: Optional[str] = None
    ) -> Tuple[DeliveryNotificationPayload, DeliveryOrder, Optional[Rider]]:
        """
        Collect what the templates need. status is the one the caller committed;
        the row may already have moved on by the time this runs.
        """
        order = await self.session.get(DeliveryOrder, assignment.order_id)
        rider = await self.session.get(Rider, assignment.rider_id) if assignment.rider_id else None
        zone = await self.session.get(DeliveryZone, assignment.zone_id) if assignment.zone_id else None
        payload = DeliveryNotificationPayload(
            order_id=order.id,
            order_number=order.order_number,
            status=status or assignment.status,
            store_id=assignment.store_id,
            country=order.country or get_settings().DEFAULT_COUNTRY,
            tracking_code=order.tracking_code,
            customer_phone=order.customer_phone,
            customer_name=order.customer_name,
            delivery_address=order.delivery_address,
            rider_name=rider.name if rider else None,
            rider_phone=rider.phone if rider else None,
            estimated_time=format_eta(zone.estimated_time_minutes) if zone else None,
        )
        return payload, order, rider

    async def _notify(self, assignment: DeliveryAssignment, status: str, notify_rider: bool = False) -> None:
        if self.notifier is None:
            return
        try:
            payload, order, rider = await self.build_payload(assignment, status)
            await self.notifier.notify(payload)
            if notify_rider and rider is not None:
                text = render_rider_assignment(
                    order.order_number,
                    order.pickup_address,
                    order.delivery_address,
                    assignment.rider_earnings,
                    payload.country,
                )
                await self.notifier.notify_rider_assignment(order.id, rider.phone, text, payload.country)
        except Exception as e:
            # The transition is already committed; a notification problem must not surface as its failure
            logger.exception("Delivery notification step failed", assignment_id=assignment.id, error=str(e))
