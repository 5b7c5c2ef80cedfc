from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from courier.app.api.deps import get_session, get_session_factory, get_notifier
from courier.app.core.exceptions import ServiceError, CompensationFailed
from courier.app.core.logging import get_logger, clear_dispatch_context
from courier.app.schemas import (
    QueueDeliveryRequest,
    AssignRiderRequest,
    AdvanceStatusRequest,
    FailureReasonUpdate,
    RateDeliveryRequest,
    AssignmentResponse,
    DeliveryStatsResponse,
    TrackingCodeResponse,
)
from courier.app.services.dispatch import DispatchService
from courier.app.services.notifications import NotificationDispatcher
from courier.app.services.tracking import TrackingService

router = APIRouter()
logger = get_logger(__name__)


def _handle_service_error(e: ServiceError):
    """Convert service exceptions to HTTP exceptions."""
    if isinstance(e, CompensationFailed):
        logger.critical("Dispatch request left a rider busy", alert=True, error=e.message)
    raise HTTPException(status_code=e.status_code, detail=e.message)


async def get_dispatch_service(
    session: AsyncSession = Depends(get_session),
    session_factory=Depends(get_session_factory),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    yield DispatchService(session, session_factory=session_factory, notifier=notifier)
    clear_dispatch_context()


@router.get("/{store_id}/deliveries", response_model=List[AssignmentResponse])
async def list_deliveries(
    store_id: str,
    status: Optional[str] = None,
    rider_id: Optional[int] = None,
    limit: int = Query(default=100, ge=1, le=500),
    service: DispatchService = Depends(get_dispatch_service),
):
    return await service.list_assignments(store_id, status=status, rider_id=rider_id, limit=limit)


@router.get("/{store_id}/deliveries/stats", response_model=DeliveryStatsResponse)
async def delivery_stats(
    store_id: str,
    day: Optional[date] = None,
    service: DispatchService = Depends(get_dispatch_service),
):
    return await service.get_delivery_stats(store_id, day)


@router.get("/{store_id}/deliveries/{assignment_id}", response_model=AssignmentResponse)
async def get_delivery(
    store_id: str,
    assignment_id: int,
    service: DispatchService = Depends(get_dispatch_service),
):
    try:
        return await service.get_assignment(assignment_id, store_id)
    except ServiceError as e:
        _handle_service_error(e)


@router.post("/{store_id}/deliveries", response_model=AssignmentResponse, status_code=201)
async def queue_delivery(
    store_id: str,
    data: QueueDeliveryRequest,
    service: DispatchService = Depends(get_dispatch_service),
):
    """Open a pending delivery for a ready order; the fee is frozen now."""
    try:
        return await service.queue_delivery(store_id, data.order_id, zone_id=data.zone_id, fee=data.fee)
    except ServiceError as e:
        await service.session.rollback()
        _handle_service_error(e)


@router.post("/{store_id}/deliveries/assign", response_model=AssignmentResponse, status_code=201)
async def assign_rider(
    store_id: str,
    data: AssignRiderRequest,
    service: DispatchService = Depends(get_dispatch_service),
):
    """
    Claim a rider for an order. 409 means the rider was taken or the order
    already has an open delivery: refresh and pick again.
    """
    try:
        return await service.assign_rider(
            store_id, data.order_id, data.rider_id, zone_id=data.zone_id, fee=data.fee
        )
    except ServiceError as e:
        await service.session.rollback()
        _handle_service_error(e)


@router.post("/{store_id}/deliveries/{assignment_id}/status", response_model=AssignmentResponse)
async def advance_status(
    store_id: str,
    assignment_id: int,
    data: AdvanceStatusRequest,
    service: DispatchService = Depends(get_dispatch_service),
):
    details = data.model_dump(exclude={"status", "expected_status"}, exclude_none=True)
    try:
        return await service.advance_status(
            store_id, assignment_id, data.status, details, expected_status=data.expected_status
        )
    except ServiceError as e:
        await service.session.rollback()
        _handle_service_error(e)


@router.post("/{store_id}/deliveries/{assignment_id}/failure-reason", response_model=AssignmentResponse)
async def amend_failure_reason(
    store_id: str,
    assignment_id: int,
    data: FailureReasonUpdate,
    service: DispatchService = Depends(get_dispatch_service),
):
    try:
        return await service.amend_failure_reason(store_id, assignment_id, data.failure_reason)
    except ServiceError as e:
        await service.session.rollback()
        _handle_service_error(e)


@router.post("/{store_id}/deliveries/{assignment_id}/rating", response_model=AssignmentResponse)
async def rate_delivery(
    store_id: str,
    assignment_id: int,
    data: RateDeliveryRequest,
    service: DispatchService = Depends(get_dispatch_service),
):
    try:
        return await service.rate_delivery(store_id, assignment_id, data.rating, data.feedback)
    except ServiceError as e:
        await service.session.rollback()
        _handle_service_error(e)


@router.post("/{store_id}/orders/{order_id}/tracking-code", response_model=TrackingCodeResponse)
async def assign_tracking_code(
    store_id: str,
    order_id: int,
    session: AsyncSession = Depends(get_session),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    try:
        code = await TrackingService(session).assign_tracking_code(order_id, store_id)
    except ServiceError as e:
        await session.rollback()
        _handle_service_error(e)
    return TrackingCodeResponse(order_id=order_id, tracking_code=code, tracking_url=notifier.tracking_url(code))
