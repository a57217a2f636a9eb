"""
Availability Matcher
====================

Computes the compatible counterpart set for a trip or for a driver using
the predicates in ``brokerage.domain.matching``.

Per query the matcher loads the candidate side once, then loads the
booked departures of every candidate driver in a single query and the
open proposals in another, so the predicate scan itself is pure Python:
O(D x K) for D candidate drivers with K booked trips each.  That is fine
for a brokerage-sized fleet; beyond it the schedule check would need an
index on departure time.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from brokerage.config import settings
from brokerage.domain.entities import DriverAvailability, departure_of
from brokerage.domain.enums import TripStatus
from brokerage.domain.errors import NotFound, ValidationError
from brokerage.domain.matching import (
    LocationPolicy,
    evaluate_candidate,
    pickup_location_matches,
)
from brokerage.infrastructure.models import DriverModel, TripModel
from brokerage.infrastructure.repositories import (
    DriverRepository,
    TripRepository,
    TripRequestRepository,
)

logger = logging.getLogger(__name__)


def availability_of(driver: DriverModel) -> DriverAvailability:
    return DriverAvailability(
        current_location=driver.current_location,
        available_from=driver.available_from,
        available_to=driver.available_to,
        vehicle_capacity=driver.vehicle_capacity,
    )


class AvailabilityMatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        window_minutes: Optional[int] = None,
        location_policy: LocationPolicy = pickup_location_matches,
    ):
        self.session_factory = session_factory
        self.window_minutes = (
            window_minutes
            if window_minutes is not None
            else settings.conflict_window_minutes
        )
        self.location_policy = location_policy

    async def find_drivers_for_trip(self, trip_id: int) -> list[DriverModel]:
        async with self.session_factory() as session:
            trip = await TripRepository(session).get_by_id(trip_id)
            if trip is None:
                raise NotFound("Trip", trip_id)
            if trip.status != TripStatus.PENDING or trip.driver_id is not None:
                return []

            drivers = await DriverRepository(session).list_matchable()
            booked = await TripRepository(session).scheduled_departures(
                [d.id for d in drivers], exclude_trip_id=trip.id
            )
            proposed = await TripRequestRepository(session).open_driver_ids_for_trip(
                trip.id
            )

        departure = departure_of(trip.trip_date, trip.departure_time)
        candidates = []
        for driver in drivers:
            result = evaluate_candidate(
                availability_of(driver),
                pickup_location=trip.pickup_location,
                departure=departure,
                required_capacity=trip.vehicle_capacity,
                booked_departures=booked.get(driver.id, ()),
                has_open_request=driver.id in proposed,
                window_minutes=self.window_minutes,
                location_policy=self.location_policy,
            )
            logger.debug(
                "Trip %s / driver %s: %s",
                trip.id,
                driver.id,
                "match" if result.ok else f"rejected on {result.failed()}",
            )
            if result.ok:
                candidates.append(driver)

        logger.info(
            "Trip %s: %d of %d drivers available", trip.id, len(candidates), len(drivers)
        )
        return candidates

    async def find_trips_for_driver(self, driver_id: int) -> list[TripModel]:
        async with self.session_factory() as session:
            driver = await DriverRepository(session).get_by_id(driver_id)
            if driver is None:
                raise NotFound("Driver", driver_id)

            availability = availability_of(driver)
            if not availability.is_set:
                raise ValidationError(
                    "Driver availability is not set; update location and "
                    "availability window first",
                    {"driver_id": driver_id},
                )

            trips = await TripRepository(session).list_open()
            booked = await TripRepository(session).scheduled_departures([driver.id])
            proposed = await TripRequestRepository(session).open_trip_ids_for_driver(
                driver.id
            )

        driver_booked = booked.get(driver.id, [])
        matches = []
        for trip in trips:
            result = evaluate_candidate(
                availability,
                pickup_location=trip.pickup_location,
                departure=departure_of(trip.trip_date, trip.departure_time),
                required_capacity=trip.vehicle_capacity,
                booked_departures=driver_booked,
                has_open_request=trip.id in proposed,
                window_minutes=self.window_minutes,
                location_policy=self.location_policy,
            )
            logger.debug(
                "Driver %s / trip %s: %s",
                driver.id,
                trip.id,
                "match" if result.ok else f"rejected on {result.failed()}",
            )
            if result.ok:
                matches.append(trip)

        logger.info(
            "Driver %s: %d of %d open trips available", driver.id, len(matches), len(trips)
        )
        return matches

    async def count_trips_for_driver(self, driver_id: int) -> int:
        return len(await self.find_trips_for_driver(driver_id))
