"""
Driver endpoints
================

GET /api/v1/drivers/me/available-trips       -- open trips the driver can take
GET /api/v1/drivers/me/available-trips/count -- how many of them there are
PUT /api/v1/drivers/me/availability          -- publish location and time window
"""

from fastapi import APIRouter, Depends, Request

from brokerage.api.dependencies import driver_actor, get_matcher, get_trip_service
from brokerage.api.middleware import limiter
from brokerage.api.schemas import AvailabilityUpdate, TripCountResponse, TripResponse
from brokerage.config import settings
from brokerage.domain.entities import Actor
from brokerage.services.availability import AvailabilityMatcher
from brokerage.services.trips import TripService

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.get(
    "/me/available-trips",
    response_model=list[TripResponse],
    summary="Trips matching the driver's availability",
)
@limiter.limit(settings.rate_limit)
async def available_trips(
    request: Request,
    actor: Actor = Depends(driver_actor),
    matcher: AvailabilityMatcher = Depends(get_matcher),
):
    return await matcher.find_trips_for_driver(actor.id)


@router.get(
    "/me/available-trips/count",
    response_model=TripCountResponse,
    summary="Number of trips matching the driver's availability",
)
@limiter.limit(settings.rate_limit)
async def available_trip_count(
    request: Request,
    actor: Actor = Depends(driver_actor),
    matcher: AvailabilityMatcher = Depends(get_matcher),
):
    return TripCountResponse(count=await matcher.count_trips_for_driver(actor.id))


@router.put(
    "/me/availability",
    status_code=204,
    response_model=None,
    summary="Update location and availability window",
)
@limiter.limit(settings.rate_limit)
async def update_availability(
    request: Request,
    body: AvailabilityUpdate,
    actor: Actor = Depends(driver_actor),
    service: TripService = Depends(get_trip_service),
):
    await service.update_availability(
        actor,
        current_location=body.current_location,
        available_from=body.available_from,
        available_to=body.available_to,
        vehicle_capacity=body.vehicle_capacity,
    )
