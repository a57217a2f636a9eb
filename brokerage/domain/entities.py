"""
Domain value objects and lifecycle rules.

Patterns used
-------------
- **State Pattern** on trips: ``ensure_transition`` enforces the lifecycle
  (PENDING -> ASSIGNED -> IN_PROGRESS -> COMPLETED, ASSIGNED -> PENDING,
  PENDING -> CANCELLED).
- ``Actor`` identifies who is calling; ownership checks compare its id
  against the owning column of the trip or request.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional

from .enums import DRIVER_BOUND_STATUSES, PartyType, TRIP_TRANSITIONS, TripStatus
from .errors import InvalidState


def ensure_transition(current: TripStatus, new_status: TripStatus) -> None:
    """Raise ``InvalidState`` unless *current* -> *new_status* is legal."""
    allowed = TRIP_TRANSITIONS.get(TripStatus(current), set())
    if new_status not in allowed:
        raise InvalidState(
            f"Cannot transition trip from {TripStatus(current).value} "
            f"to {new_status.value}",
            {"current": TripStatus(current).value, "requested": new_status.value},
        )


def driver_binding_ok(status: TripStatus, driver_id: Optional[int]) -> bool:
    """``driver_id`` is set iff the status binds a driver."""
    return (driver_id is not None) == (TripStatus(status) in DRIVER_BOUND_STATUSES)


def departure_of(trip_date: date, departure_time: time) -> datetime:
    """Combine the stored date and time columns into one timestamp."""
    return datetime.combine(trip_date, departure_time)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Actor:
    kind: PartyType
    id: int

    @classmethod
    def company(cls, company_id: int) -> "Actor":
        return cls(PartyType.COMPANY, company_id)

    @classmethod
    def driver(cls, driver_id: int) -> "Actor":
        return cls(PartyType.DRIVER, driver_id)

    @property
    def is_company(self) -> bool:
        return self.kind == PartyType.COMPANY

    @property
    def is_driver(self) -> bool:
        return self.kind == PartyType.DRIVER


@dataclass(frozen=True)
class DriverAvailability:
    current_location: Optional[str]
    available_from: Optional[datetime]
    available_to: Optional[datetime]
    vehicle_capacity: int

    @property
    def is_set(self) -> bool:
        return bool(
            self.current_location
            and self.current_location.strip()
            and self.available_from
            and self.available_to
        )


@dataclass(frozen=True)
class Notification:
    user_id: int
    title: str
    message: str
