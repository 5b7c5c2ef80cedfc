from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from courier.app.api.deps import get_session
from courier.app.core.exceptions import ServiceError
from courier.app.core.logging import get_logger
from courier.app.schemas import (
    ZoneCreate,
    ZoneUpdate,
    ZoneResponse,
    ResolveZoneRequest,
    ResolveZoneResponse,
)
from courier.app.services.delivery_zones import DeliveryZoneService, ZoneValidationError

router = APIRouter()
logger = get_logger(__name__)


def _handle_service_error(e: ServiceError):
    """Convert service exceptions to HTTP exceptions."""
    if isinstance(e, ZoneValidationError):
        raise HTTPException(status_code=e.status_code, detail={"message": e.message, "errors": e.as_dict()})
    raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{store_id}/zones", response_model=List[ZoneResponse])
async def list_zones(store_id: str, session: AsyncSession = Depends(get_session)):
    return await DeliveryZoneService(session).get_zones(store_id)


@router.post("/{store_id}/zones", response_model=ZoneResponse, status_code=201)
async def create_zone(store_id: str, data: ZoneCreate, session: AsyncSession = Depends(get_session)):
    """Create a zone. Every invalid field is reported in one 422 response."""
    service = DeliveryZoneService(session)
    try:
        zone = await service.create_zone(store_id, data.model_dump(exclude_unset=True))
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        _handle_service_error(e)
    return zone


@router.patch("/{store_id}/zones/{zone_id}", response_model=ZoneResponse)
async def update_zone(
    store_id: str,
    zone_id: int,
    data: ZoneUpdate,
    session: AsyncSession = Depends(get_session),
):
    service = DeliveryZoneService(session)
    try:
        zone = await service.update_zone(zone_id, store_id, data.model_dump(exclude_unset=True))
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        _handle_service_error(e)
    return zone


@router.post("/{store_id}/zones/{zone_id}/duplicate", response_model=ZoneResponse, status_code=201)
async def duplicate_zone(store_id: str, zone_id: int, session: AsyncSession = Depends(get_session)):
    try:
        zone = await DeliveryZoneService(session).duplicate_zone(zone_id, store_id)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        _handle_service_error(e)
    return zone


@router.post("/{store_id}/zones/resolve", response_model=ResolveZoneResponse)
async def resolve_zone(
    store_id: str,
    data: ResolveZoneRequest,
    session: AsyncSession = Depends(get_session),
):
    """Zone and fee for a drop-off coordinate. matched=false means pick a zone by hand."""
    match = await DeliveryZoneService(session).resolve(
        store_id, data.latitude, data.longitude, data.order_total
    )
    return ResolveZoneResponse(
        matched=match.matched,
        zone=ZoneResponse.model_validate(match.zone) if match.zone else None,
        fee=match.fee,
        free_delivery=match.free_delivery,
        meets_minimum=match.meets_minimum,
    )
