"""
Driver / Trip Compatibility Predicates
=====================================

A driver is a candidate for a trip when *all* of the following hold:

1. **Capacity**  -- driver's vehicle capacity class >= trip's required class
   (a larger vehicle qualifies).
2. **Location**  -- after lower-casing and replacing punctuation with blanks,
   either the driver's current location appears in the trip's pickup
   location or the other way round (free-text entry: "Tel Aviv" and
   "Tel Aviv, Center" match in both directions).
3. **Window**    -- trip departure lies in ``[available_from, available_to]``,
   both ends inclusive.
4. **Schedule**  -- no assigned / in-progress trip of the driver departs
   strictly less than ``window_minutes`` (default 120) before or after this
   trip's departure.
5. **Proposal**  -- no pending or accepted request already links the pair.
   Rejected requests do not count, so a driver may ask again.

Complexity
----------
Each predicate is O(1) except the schedule check, which is O(k) in the
number of trips already booked for the driver.  The matcher therefore runs
in O(D x K) per query (D = drivers, K = booked trips per driver); no index
beyond the store's own is used.

The location rule is deliberately a single named function
(``pickup_location_matches``) so a geocoding comparison can replace it
without touching the coordinator.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from .entities import DriverAvailability

DEFAULT_CONFLICT_WINDOW_MINUTES = 120

_PUNCTUATION = re.compile(r"[^\w\s]")

LocationPolicy = Callable[[Optional[str], str], bool]


def normalize_location(text: str) -> str:
    """Lower-case, turn punctuation into blanks and collapse whitespace."""
    return " ".join(_PUNCTUATION.sub(" ", text.lower()).split())


def pickup_location_matches(driver_location: Optional[str], pickup_location: str) -> bool:
    """Either normalised location contains the other."""
    if not driver_location or not pickup_location:
        return False
    driver = normalize_location(driver_location)
    pickup = normalize_location(pickup_location)
    if not driver or not pickup:
        return False
    return driver in pickup or pickup in driver


def capacity_ok(driver_capacity: int, required_capacity: int) -> bool:
    return int(driver_capacity) >= int(required_capacity)


def within_window(
    departure: datetime,
    available_from: Optional[datetime],
    available_to: Optional[datetime],
) -> bool:
    if available_from is None or available_to is None:
        return False
    return available_from <= departure <= available_to


def schedule_conflicts(
    departure: datetime,
    booked_departures: Iterable[datetime],
    window_minutes: int = DEFAULT_CONFLICT_WINDOW_MINUTES,
) -> bool:
    """True if any booked departure is closer than the buffer.  O(k)."""
    buffer = timedelta(minutes=window_minutes)
    return any(abs(other - departure) < buffer for other in booked_departures)


@dataclass(frozen=True)
class MatchResult:
    capacity: bool
    location: bool
    window: bool
    schedule: bool
    proposal: bool

    @property
    def ok(self) -> bool:
        return (
            self.capacity
            and self.location
            and self.window
            and self.schedule
            and self.proposal
        )

    def failed(self) -> list[str]:
        return [
            name
            for name in ("capacity", "location", "window", "schedule", "proposal")
            if not getattr(self, name)
        ]


def evaluate_candidate(
    availability: DriverAvailability,
    *,
    pickup_location: str,
    departure: datetime,
    required_capacity: int,
    booked_departures: Iterable[datetime] = (),
    has_open_request: bool = False,
    window_minutes: int = DEFAULT_CONFLICT_WINDOW_MINUTES,
    location_policy: LocationPolicy = pickup_location_matches,
) -> MatchResult:
    """Evaluate every predicate for one driver / trip pair."""
    return MatchResult(
        capacity=capacity_ok(availability.vehicle_capacity, required_capacity),
        location=location_policy(availability.current_location, pickup_location),
        window=within_window(
            departure, availability.available_from, availability.available_to
        ),
        schedule=not schedule_conflicts(departure, booked_departures, window_minutes),
        proposal=not has_open_request,
    )
