"""
Shared constants for the dispatch service.
"""
from decimal import Decimal

# ---------------------------------------------------------------------------
# Delivery assignment statuses
# ---------------------------------------------------------------------------
PENDING = "pending"
ASSIGNED = "assigned"
ACCEPTED = "accepted"
PICKED_UP = "picked_up"
IN_TRANSIT = "in_transit"
DELIVERED = "delivered"
FAILED = "failed"
CANCELLED = "cancelled"

DELIVERY_STATUSES = (
    PENDING, ASSIGNED, ACCEPTED, PICKED_UP, IN_TRANSIT, DELIVERED, FAILED, CANCELLED,
)

TERMINAL_STATUSES = frozenset({DELIVERED, FAILED, CANCELLED})
ACTIVE_STATUSES = (ASSIGNED, ACCEPTED, PICKED_UP, IN_TRANSIT)
NON_TERMINAL_STATUSES = (PENDING,) + ACTIVE_STATUSES

# Allowed next statuses for AdvanceStatus. pending -> assigned exists in the
# lifecycle but is only reachable through assign_rider (it needs a claimed rider).
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({CANCELLED}),
    ASSIGNED: frozenset({ACCEPTED, FAILED, CANCELLED}),
    ACCEPTED: frozenset({PICKED_UP, FAILED, CANCELLED}),
    PICKED_UP: frozenset({IN_TRANSIT, FAILED, CANCELLED}),
    IN_TRANSIT: frozenset({DELIVERED, FAILED, CANCELLED}),
    DELIVERED: frozenset(),
    FAILED: frozenset(),
    CANCELLED: frozenset(),
}

# Timestamp column stamped when an assignment enters a status
STATUS_TIMESTAMP_FIELDS = {
    ASSIGNED: "assigned_at",
    ACCEPTED: "accepted_at",
    PICKED_UP: "picked_up_at",
    IN_TRANSIT: "in_transit_at",
    DELIVERED: "delivered_at",
    FAILED: "failed_at",
    CANCELLED: "cancelled_at",
}

# ---------------------------------------------------------------------------
# Riders
# ---------------------------------------------------------------------------
RIDER_AVAILABLE = "available"
RIDER_BUSY = "busy"
RIDER_OFFLINE = "offline"
RIDER_STATUSES = (RIDER_AVAILABLE, RIDER_BUSY, RIDER_OFFLINE)

VEHICLE_TYPES = ("bicycle", "motorcycle", "car", "van")

DEFAULT_RIDER_RATING = Decimal("5.00")

# ---------------------------------------------------------------------------
# Zones
# ---------------------------------------------------------------------------
ZONE_COLORS = (
    "#FFD000", "#FF9500", "#34C759", "#007AFF", "#AF52DE", "#FF3B30",
    "#5856D6", "#FF2D55", "#00C7BE", "#FF6482", "#64D2FF", "#BF5AF2",
)
DEFAULT_ESTIMATED_MINUTES = 45
ZONE_NAME_MIN_LENGTH = 2
COPY_SUFFIX = " (Copy)"

# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------
CHANNEL_SMS = "sms"
CHANNEL_WHATSAPP = "whatsapp"
MESSAGE_PREVIEW_LENGTH = 100

# ---------------------------------------------------------------------------
# Tracking codes (no I, O, 0, 1)
# ---------------------------------------------------------------------------
TRACKING_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
TRACKING_CODE_LENGTH = 8

# ---------------------------------------------------------------------------
# Decimal helpers
# ---------------------------------------------------------------------------
ZERO = Decimal("0")
ONE_CENT = Decimal("0.01")
