from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from courier.app.api.deps import get_session
from courier.app.core.exceptions import ServiceError
from courier.app.schemas import (
    RiderCreate,
    RiderResponse,
    PresenceUpdate,
    ActiveUpdate,
    LocationUpdate,
)
from courier.app.services.riders import RiderService

router = APIRouter()


def _handle_service_error(e: ServiceError):
    """Convert service exceptions to HTTP exceptions."""
    raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{store_id}/riders", response_model=List[RiderResponse])
async def list_riders(
    store_id: str,
    status: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
):
    try:
        return await RiderService(session).list_riders(store_id, status)
    except ServiceError as e:
        _handle_service_error(e)


@router.get("/{store_id}/riders/available", response_model=List[RiderResponse])
async def list_available_riders(store_id: str, session: AsyncSession = Depends(get_session)):
    """Active riders that are online and idle. Listing does not reserve anyone."""
    return await RiderService(session).list_available(store_id)


@router.post("/{store_id}/riders", response_model=RiderResponse, status_code=201)
async def create_rider(store_id: str, data: RiderCreate, session: AsyncSession = Depends(get_session)):
    try:
        rider = await RiderService(session).create_rider(store_id, data.model_dump())
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        _handle_service_error(e)
    return rider


@router.post("/{store_id}/riders/{rider_id}/presence", response_model=RiderResponse)
async def set_presence(
    store_id: str,
    rider_id: int,
    data: PresenceUpdate,
    session: AsyncSession = Depends(get_session),
):
    try:
        rider = await RiderService(session).set_presence(store_id, rider_id, data.online)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        _handle_service_error(e)
    return rider


@router.post("/{store_id}/riders/{rider_id}/active", response_model=RiderResponse)
async def set_active(
    store_id: str,
    rider_id: int,
    data: ActiveUpdate,
    session: AsyncSession = Depends(get_session),
):
    try:
        rider = await RiderService(session).set_active(store_id, rider_id, data.is_active)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        _handle_service_error(e)
    return rider


@router.post("/{store_id}/riders/{rider_id}/location", response_model=RiderResponse)
async def update_location(
    store_id: str,
    rider_id: int,
    data: LocationUpdate,
    session: AsyncSession = Depends(get_session),
):
    try:
        rider = await RiderService(session).update_location(store_id, rider_id, data.latitude, data.longitude)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        _handle_service_error(e)
    return rider
