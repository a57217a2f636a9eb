"""Domain enumerations and state-transition rules."""

import enum


class TripStatus(str, enum.Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
TRIP_TRANSITIONS: dict[TripStatus, set[TripStatus]] = {
    TripStatus.PENDING: {TripStatus.ASSIGNED, TripStatus.CANCELLED},
    TripStatus.ASSIGNED: {TripStatus.IN_PROGRESS, TripStatus.PENDING},
    TripStatus.IN_PROGRESS: {TripStatus.COMPLETED},
    TripStatus.COMPLETED: set(),
    TripStatus.CANCELLED: set(),
}

# Statuses in which a trip must carry a driver
DRIVER_BOUND_STATUSES = frozenset(
    {TripStatus.ASSIGNED, TripStatus.IN_PROGRESS, TripStatus.COMPLETED}
)

# Statuses that occupy a driver's schedule
SCHEDULED_STATUSES = frozenset({TripStatus.ASSIGNED, TripStatus.IN_PROGRESS})

# "active" filter used by company trip listings
ACTIVE_STATUSES = frozenset(
    {TripStatus.PENDING, TripStatus.ASSIGNED, TripStatus.IN_PROGRESS}
)


class RequestDirection(str, enum.Enum):
    DRIVER_TO_COMPANY = "driver_to_company"
    COMPANY_TO_DRIVER = "company_to_driver"
    REASSIGNMENT_APPROVAL = "reassignment_approval"


# Directions that claim a trip for a driver (reassignment only releases one)
CLAIM_DIRECTIONS = frozenset(
    {RequestDirection.DRIVER_TO_COMPANY, RequestDirection.COMPANY_TO_DRIVER}
)


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# Requests that still block a new proposal between the same pair
OPEN_REQUEST_STATUSES = frozenset({RequestStatus.PENDING, RequestStatus.ACCEPTED})


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    COMPANY = "company"
    DRIVER = "driver"


class PartyType(str, enum.Enum):
    COMPANY = "company"
    DRIVER = "driver"
