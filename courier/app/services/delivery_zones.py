# courier/app/services/delivery_zones.py
"""Delivery zone management, validation and coordinate matching."""
from decimal import Decimal, InvalidOperation
from typing import List, Dict, Any, Optional, NamedTuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from courier.app.core.constants import (
    COPY_SUFFIX,
    DEFAULT_ESTIMATED_MINUTES,
    ZERO,
    ZONE_COLORS,
    ZONE_NAME_MIN_LENGTH,
)
from courier.app.core.exceptions import ValidationFailed, NotFoundError
from courier.app.core.logging import get_logger
from courier.app.models.delivery_zone import DeliveryZone
from courier.app.services import geo

logger = get_logger(__name__)

ZONE_FIELDS = (
    "name", "description", "delivery_fee", "min_order_amount", "free_delivery_threshold",
    "estimated_time_minutes", "boundary", "color", "is_active",
)


class InvalidZoneField(ValidationFailed):
    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class ZoneValidationError(ValidationFailed):
    """Every field violation found in one zone input."""
    def __init__(self, errors: List[InvalidZoneField]):
        self.errors = errors
        super().__init__("; ".join(e.message for e in errors))

    def as_dict(self) -> Dict[str, str]:
        return {e.field: e.reason for e in self.errors}


class ZoneNotFound(NotFoundError):
    def __init__(self, zone_id: int):
        super().__init__(f"Delivery zone {zone_id} not found")


class ZoneMatch(NamedTuple):
    zone: Optional[DeliveryZone]
    fee: Optional[Decimal]
    matched: bool
    free_delivery: bool = False
    meets_minimum: bool = True


class FeeQuote(NamedTuple):
    fee: Decimal
    free_delivery: bool
    meets_minimum: bool


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"not a number: {value!r}")


def _check_name(data: Dict[str, Any]) -> Optional[InvalidZoneField]:
    name = (data.get("name") or "").strip()
    if not name:
        return InvalidZoneField("name", "Zone name is required")
    if len(name) < ZONE_NAME_MIN_LENGTH:
        return InvalidZoneField("name", f"Name must be at least {ZONE_NAME_MIN_LENGTH} characters")
    return None


def _check_fee(data: Dict[str, Any]) -> Optional[InvalidZoneField]:
    try:
        fee = _to_decimal(data.get("delivery_fee"))
    except ValueError:
        fee = None
    if fee is None or fee < ZERO:
        return InvalidZoneField("delivery_fee", "Valid delivery fee is required")
    return None


def _check_min_order(data: Dict[str, Any]) -> Optional[InvalidZoneField]:
    try:
        min_order = _to_decimal(data.get("min_order_amount"))
    except ValueError:
        return InvalidZoneField("min_order_amount", "Minimum order must be a number")
    if min_order is not None and min_order < ZERO:
        return InvalidZoneField("min_order_amount", "Minimum order cannot be negative")
    return None


def _check_threshold(data: Dict[str, Any]) -> Optional[InvalidZoneField]:
    try:
        threshold = _to_decimal(data.get("free_delivery_threshold"))
    except ValueError:
        return InvalidZoneField("free_delivery_threshold", "Free delivery threshold must be a number")
    if threshold is None:
        return None
    try:
        min_order = _to_decimal(data.get("min_order_amount")) or ZERO
    except ValueError:
        min_order = ZERO
    if threshold <= min_order:
        return InvalidZoneField("free_delivery_threshold", "Must be greater than minimum order")
    return None


def _check_minutes(data: Dict[str, Any]) -> Optional[InvalidZoneField]:
    minutes = data.get("estimated_time_minutes", DEFAULT_ESTIMATED_MINUTES)
    try:
        minutes = int(minutes)
    except (TypeError, ValueError):
        minutes = 0
    if minutes < 1:
        return InvalidZoneField("estimated_time_minutes", "Valid estimated time is required")
    return None


def _check_boundary(data: Dict[str, Any]) -> Optional[InvalidZoneField]:
    boundary = data.get("boundary")
    if boundary is None:
        return None
    try:
        ring = geo.ring_from_boundary(boundary)
    except (TypeError, ValueError, IndexError, AttributeError):
        ring = None
    if ring is None or geo.to_polygon(ring) is None:
        return InvalidZoneField("boundary", "Boundary must be a polygon with at least 3 points")
    return None


_FIELD_CHECKS = (
    _check_name, _check_fee, _check_min_order, _check_threshold, _check_minutes, _check_boundary,
)


def validate_zone(data: Dict[str, Any]) -> Optional[InvalidZoneField]:
    """Return the first violated field of a zone input, or None when it is valid."""
    for check in _FIELD_CHECKS:
        error = check(data)
        if error is not None:
            return error
    return None


def collect_zone_errors(data: Dict[str, Any]) -> List[InvalidZoneField]:
    """Run every field check so a form can show all problems at once (one error per field)."""
    return [error for error in (check(data) for check in _FIELD_CHECKS) if error is not None]


def quote_fee(zone: DeliveryZone, order_total: Optional[Decimal] = None) -> FeeQuote:
    """
    Delivery fee for an order in a zone.

    Free when the zone has a free-delivery threshold and the order total
    reaches it. Without an order total the plain zone fee is quoted.
    """
    fee = Decimal(zone.delivery_fee or 0)
    if order_total is None:
        return FeeQuote(fee=fee, free_delivery=False, meets_minimum=True)
    total = Decimal(str(order_total))
    min_order = Decimal(zone.min_order_amount or 0)
    threshold = zone.free_delivery_threshold
    free = threshold is not None and total >= Decimal(threshold)
    return FeeQuote(fee=ZERO if free else fee, free_delivery=free, meets_minimum=total >= min_order)


def pick_zone_color(used_colors: List[Optional[str]]) -> str:
    """First palette color not used yet by the store; colors may repeat once exhausted."""
    used = {c for c in used_colors if c}
    return next((c for c in ZONE_COLORS if c not in used), ZONE_COLORS[0])


class DeliveryZoneService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_zones(self, store_id: str) -> List[DeliveryZone]:
        """All delivery zones for a store, ordered by id."""
        result = await self.session.execute(
            select(DeliveryZone)
            .where(DeliveryZone.store_id == store_id)
            .order_by(DeliveryZone.id)
        )
        return list(result.scalars().all())

    async def get_matchable_zones(self, store_id: str) -> List[DeliveryZone]:
        """Active zones with a boundary, in the order resolve() tries them."""
        result = await self.session.execute(
            select(DeliveryZone)
            .where(
                DeliveryZone.store_id == store_id,
                DeliveryZone.is_active == True,  # noqa: E712
                DeliveryZone.boundary.isnot(None),
            )
            .order_by(DeliveryZone.id)
        )
        return list(result.scalars().all())

    async def get_zone(self, zone_id: int, store_id: str) -> DeliveryZone:
        result = await self.session.execute(
            select(DeliveryZone).where(
                DeliveryZone.id == zone_id,
                DeliveryZone.store_id == store_id,
            )
        )
        zone = result.scalar_one_or_none()
        if zone is None:
            raise ZoneNotFound(zone_id)
        return zone

    async def create_zone(self, store_id: str, data: Dict[str, Any]) -> DeliveryZone:
        """Create a zone after exhaustive validation. Caller must commit."""
        errors = collect_zone_errors(data)
        if errors:
            raise ZoneValidationError(errors)

        color = data.get("color")
        if not color:
            color = pick_zone_color([z.color for z in await self.get_zones(store_id)])

        zone = DeliveryZone(
            store_id=store_id,
            name=data["name"].strip(),
            description=data.get("description"),
            delivery_fee=_to_decimal(data["delivery_fee"]),
            min_order_amount=_to_decimal(data.get("min_order_amount")) or ZERO,
            free_delivery_threshold=_to_decimal(data.get("free_delivery_threshold")),
            estimated_time_minutes=int(data.get("estimated_time_minutes", DEFAULT_ESTIMATED_MINUTES)),
            boundary=data.get("boundary"),
            color=color,
            is_active=data.get("is_active", True),
        )
        self.session.add(zone)
        await self.session.flush()
        logger.info("Delivery zone created", store_id=store_id, zone_id=zone.id)
        return zone

    async def update_zone(self, zone_id: int, store_id: str, data: Dict[str, Any]) -> DeliveryZone:
        """
        Apply a partial update. The merged result is validated as a whole,
        so lowering min_order below an existing threshold is caught too.
        Existing assignments keep the fee they were created with.
        """
        zone = await self.get_zone(zone_id, store_id)
        merged = {field: getattr(zone, field) for field in ZONE_FIELDS}
        merged.update({k: v for k, v in data.items() if k in ZONE_FIELDS})
        errors = collect_zone_errors(merged)
        if errors:
            raise ZoneValidationError(errors)

        for field in ZONE_FIELDS:
            if field not in data:
                continue
            value = data[field]
            if field in ("delivery_fee", "min_order_amount", "free_delivery_threshold"):
                value = _to_decimal(value)
                if field == "min_order_amount" and value is None:
                    value = ZERO
            elif field == "name":
                value = value.strip()
            setattr(zone, field, value)
        await self.session.flush()
        return zone

    async def duplicate_zone(self, zone_id: int, store_id: str) -> DeliveryZone:
        """
        Copy a zone under a "(Copy)" name. The copy starts inactive so two
        identical zones never go live together by accident.
        """
        source = await self.get_zone(zone_id, store_id)
        copy = DeliveryZone(
            store_id=source.store_id,
            name=f"{source.name}{COPY_SUFFIX}",
            description=source.description,
            delivery_fee=source.delivery_fee,
            min_order_amount=source.min_order_amount,
            free_delivery_threshold=source.free_delivery_threshold,
            estimated_time_minutes=source.estimated_time_minutes,
            boundary=source.boundary,
            color=source.color,
            is_active=False,
        )
        self.session.add(copy)
        await self.session.flush()
        logger.info("Delivery zone duplicated", store_id=store_id, source_zone_id=zone_id, zone_id=copy.id)
        return copy

    async def resolve(
        self,
        store_id: str,
        latitude: float,
        longitude: float,
        order_total: Optional[Decimal] = None,
    ) -> ZoneMatch:
        """
        Find the zone whose boundary contains the coordinate.

        Only active zones with a boundary take part. Overlapping zones are
        tried in ascending id order and the first hit wins. matched=False
        tells the caller to fall back to a manual zone pick.
        """
        for zone in await self.get_matchable_zones(store_id):
            ring = geo.ring_from_boundary(zone.boundary)
            if ring is None:
                continue
            if geo.contains((latitude, longitude), ring):
                quote = quote_fee(zone, order_total)
                return ZoneMatch(
                    zone=zone,
                    fee=quote.fee,
                    matched=True,
                    free_delivery=quote.free_delivery,
                    meets_minimum=quote.meets_minimum,
                )
        logger.debug("No delivery zone matched", store_id=store_id, lat=latitude, lng=longitude)
        return ZoneMatch(zone=None, fee=None, matched=False)
