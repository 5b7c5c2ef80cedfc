# courier/app/services/__init__.py
"""
Services layer for dispatch logic.
Keeps API endpoints thin and business logic testable and reusable.
"""

from courier.app.services.geo import contains, ring_from_boundary, boundary_from_ring
from courier.app.services.delivery_zones import (
    DeliveryZoneService,
    InvalidZoneField,
    ZoneValidationError,
    ZoneNotFound,
    ZoneMatch,
    FeeQuote,
    validate_zone,
    collect_zone_errors,
    quote_fee,
)
from courier.app.services.riders import (
    RiderService,
    RiderUnavailable,
    RiderNotFound,
    InvalidRiderField,
    release_with_retry,
)
from courier.app.services.dispatch import (
    DispatchService,
    AlreadyAssigned,
    StatusConflict,
    AlreadyRated,
    AssignmentAlreadyTerminal,
    InvalidTransition,
    MissingFailureReason,
    InvalidRating,
    NoZoneMatched,
    AssignmentNotFound,
    check_transition,
)
from courier.app.services.messaging import MessageSender, MessageTransportError, HttpMessageSender
from courier.app.services.notifications import (
    NotificationDispatcher,
    DeliveryNotificationPayload,
    NotifyResult,
)
from courier.app.services.tracking import (
    TrackingService,
    TrackingCodeExhausted,
    OrderNotFound,
    generate_tracking_code,
)

__all__ = [
    # Geometry
    "contains",
    "ring_from_boundary",
    "boundary_from_ring",
    # Zone catalog
    "DeliveryZoneService",
    "InvalidZoneField",
    "ZoneValidationError",
    "ZoneNotFound",
    "ZoneMatch",
    "FeeQuote",
    "validate_zone",
    "collect_zone_errors",
    "quote_fee",
    # Rider registry
    "RiderService",
    "RiderUnavailable",
    "RiderNotFound",
    "InvalidRiderField",
    "release_with_retry",
    # Dispatch engine
    "DispatchService",
    "AlreadyAssigned",
    "StatusConflict",
    "AlreadyRated",
    "AssignmentAlreadyTerminal",
    "InvalidTransition",
    "MissingFailureReason",
    "InvalidRating",
    "NoZoneMatched",
    "AssignmentNotFound",
    "check_transition",
    # Messaging
    "MessageSender",
    "MessageTransportError",
    "HttpMessageSender",
    "NotificationDispatcher",
    "DeliveryNotificationPayload",
    "NotifyResult",
    # Tracking
    "TrackingService",
    "TrackingCodeExhausted",
    "OrderNotFound",
    "generate_tracking_code",
]
