from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from courier.app.api.deps import get_session
from courier.app.core.exceptions import ServiceError
from courier.app.models.delivery_assignment import DeliveryAssignment
from courier.app.models.delivery_zone import DeliveryZone
from courier.app.models.rider import Rider
from courier.app.schemas import TrackingResponse
from courier.app.services.tracking import TrackingService

router = APIRouter()


@router.get("/{tracking_code}", response_model=TrackingResponse)
async def track_delivery(tracking_code: str, session: AsyncSession = Depends(get_session)):
    """Public order tracking. Shows only the rider's first name."""
    try:
        order = await TrackingService(session).get_by_tracking_code(tracking_code)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    result = await session.execute(
        select(DeliveryAssignment)
        .where(DeliveryAssignment.order_id == order.id)
        .order_by(DeliveryAssignment.created_at.desc(), DeliveryAssignment.id.desc())
        .limit(1)
    )
    assignment = result.scalar_one_or_none()

    rider_name = None
    eta = None
    if assignment is not None:
        if assignment.rider_id is not None:
            rider = await session.get(Rider, assignment.rider_id)
            rider_name = rider.name.split()[0] if rider and rider.name else None
        if assignment.zone_id is not None:
            zone = await session.get(DeliveryZone, assignment.zone_id)
            eta = zone.estimated_time_minutes if zone else None

    return TrackingResponse(
        tracking_code=order.tracking_code,
        order_number=order.order_number,
        delivery_status=assignment.status if assignment else order.delivery_status,
        rider_name=rider_name,
        estimated_time_minutes=eta,
        assigned_at=assignment.assigned_at if assignment else None,
        picked_up_at=assignment.picked_up_at if assignment else None,
        delivered_at=assignment.delivered_at if assignment else None,
    )
