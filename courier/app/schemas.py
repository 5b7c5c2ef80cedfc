from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from decimal import Decimal


# --- Zones ---
# Field rules live in DeliveryZoneService so every violation is reported at once
class ZoneCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    delivery_fee: Optional[Decimal] = None
    min_order_amount: Optional[Decimal] = None
    free_delivery_threshold: Optional[Decimal] = None
    estimated_time_minutes: Optional[int] = None
    boundary: Optional[Dict[str, Any]] = None
    color: Optional[str] = None
    is_active: bool = True


class ZoneUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    delivery_fee: Optional[Decimal] = None
    min_order_amount: Optional[Decimal] = None
    free_delivery_threshold: Optional[Decimal] = None
    estimated_time_minutes: Optional[int] = None
    boundary: Optional[Dict[str, Any]] = None
    color: Optional[str] = None
    is_active: Optional[bool] = None


class ZoneResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    store_id: str
    name: str
    description: Optional[str] = None
    delivery_fee: Decimal
    min_order_amount: Decimal
    free_delivery_threshold: Optional[Decimal] = None
    estimated_time_minutes: int
    boundary: Optional[Dict[str, Any]] = None
    color: Optional[str] = None
    is_active: bool


class ResolveZoneRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    order_total: Optional[Decimal] = Field(default=None, ge=0)


class ResolveZoneResponse(BaseModel):
    matched: bool
    zone: Optional[ZoneResponse] = None
    fee: Optional[Decimal] = None
    free_delivery: bool = False
    meets_minimum: bool = True


# --- Riders ---
class RiderCreate(BaseModel):
    name: str
    phone: str
    email: Optional[str] = None
    vehicle_type: str = "motorcycle"
    vehicle_number: Optional[str] = None


class RiderResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    store_id: str
    name: str
    phone: str
    email: Optional[str] = None
    vehicle_type: str
    vehicle_number: Optional[str] = None
    status: str
    is_active: bool
    is_online: bool
    rating: Decimal
    total_ratings: int
    total_deliveries: int


class PresenceUpdate(BaseModel):
    online: bool


class ActiveUpdate(BaseModel):
    is_active: bool


class LocationUpdate(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


# --- Deliveries ---
class QueueDeliveryRequest(BaseModel):
    order_id: int
    zone_id: Optional[int] = None
    fee: Optional[Decimal] = Field(default=None, ge=0)


class AssignRiderRequest(BaseModel):
    order_id: int
    rider_id: int
    zone_id: Optional[int] = None
    fee: Optional[Decimal] = Field(default=None, ge=0)


class AdvanceStatusRequest(BaseModel):
    status: str
    expected_status: Optional[str] = None
    failure_reason: Optional[str] = None
    delivery_notes: Optional[str] = None
    recipient_name: Optional[str] = None
    delivery_photo_url: Optional[str] = None


class FailureReasonUpdate(BaseModel):
    failure_reason: str


class RateDeliveryRequest(BaseModel):
    rating: int
    feedback: Optional[str] = Field(default=None, max_length=2000)


class AssignmentResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    store_id: str
    order_id: int
    rider_id: Optional[int] = None
    zone_id: Optional[int] = None
    status: str
    delivery_fee: Decimal
    rider_earnings: Decimal
    assigned_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    in_transit_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    delivery_notes: Optional[str] = None
    recipient_name: Optional[str] = None
    delivery_photo_url: Optional[str] = None
    customer_rating: Optional[int] = None
    customer_feedback: Optional[str] = None


class DeliveryStatsResponse(BaseModel):
    day: str
    delivered_today: int
    failed_today: int
    in_transit: int
    pending: int
    active: int
    riders: Dict[str, int]
    fees_collected_today: Decimal
    average_rating: Optional[float] = None
    top_rider: Optional[str] = None


# --- Public tracking ---
class TrackingResponse(BaseModel):
    tracking_code: str
    order_number: str
    delivery_status: Optional[str] = None
    rider_name: Optional[str] = None
    estimated_time_minutes: Optional[int] = None
    assigned_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class TrackingCodeResponse(BaseModel):
    order_id: int
    tracking_code: str
    tracking_url: str
