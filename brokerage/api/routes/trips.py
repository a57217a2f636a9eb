"""
Trip endpoints
==============

POST   /api/v1/trips                       -- company creates a trip
GET    /api/v1/trips                       -- company lists its trips (?status=)
GET    /api/v1/trips/{trip_id}             -- trip details
PATCH  /api/v1/trips/{trip_id}             -- edit a pending trip
PATCH  /api/v1/trips/{trip_id}/cancel      -- pending -> cancelled
DELETE /api/v1/trips/{trip_id}             -- delete a pending trip
GET    /api/v1/trips/{trip_id}/candidates  -- drivers able to take the trip
POST   /api/v1/trips/{trip_id}/requests    -- driver asks / company proposes
POST   /api/v1/trips/{trip_id}/assign      -- company binds a driver directly
POST   /api/v1/trips/{trip_id}/unassign    -- assigned -> pending
POST   /api/v1/trips/{trip_id}/reassignment -- ask the driver to step down
POST   /api/v1/trips/{trip_id}/start       -- assigned -> in_progress
POST   /api/v1/trips/{trip_id}/complete    -- in_progress -> completed (+ rating)
POST   /api/v1/trips/{trip_id}/rating      -- company rates the driver
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from brokerage.api.dependencies import (
    company_actor,
    current_actor,
    driver_actor,
    get_coordinator,
    get_matcher,
    get_trip_service,
)
from brokerage.api.middleware import limiter
from brokerage.api.schemas import (
    AssignDriverRequest,
    CompleteTripRequest,
    CompletionResponse,
    DriverResponse,
    RateDriverRequest,
    TripCreateRequest,
    TripRequestCreate,
    TripRequestResponse,
    TripResponse,
    TripUpdateRequest,
)
from brokerage.config import settings
from brokerage.domain.entities import Actor
from brokerage.domain.errors import Forbidden, ValidationError
from brokerage.services.availability import AvailabilityMatcher
from brokerage.services.coordinator import AssignmentCoordinator
from brokerage.services.trips import TripDraft, TripService

router = APIRouter(prefix="/trips", tags=["trips"])


# ── Company lifecycle ─────────────────────────────────────────────────


@router.post("", status_code=201, response_model=TripResponse, summary="Create a trip")
@limiter.limit(settings.rate_limit)
async def create_trip(
    request: Request,
    body: TripCreateRequest,
    actor: Actor = Depends(company_actor),
    service: TripService = Depends(get_trip_service),
):
    return await service.create_trip(actor, TripDraft(**body.model_dump()))


@router.get("", response_model=list[TripResponse], summary="List the company's trips")
@limiter.limit(settings.rate_limit)
async def list_trips(
    request: Request,
    status: Optional[str] = None,
    actor: Actor = Depends(company_actor),
    service: TripService = Depends(get_trip_service),
):
    return await service.list_company_trips(actor, status)


@router.get("/{trip_id}", response_model=TripResponse, summary="Get a trip")
@limiter.limit(settings.rate_limit)
async def get_trip(
    request: Request,
    trip_id: int,
    service: TripService = Depends(get_trip_service),
):
    return await service.get_trip(trip_id)


@router.patch(
    "/{trip_id}",
    response_model=TripResponse,
    summary="Edit a pending trip",
    description="Status and driver change only through the assignment endpoints.",
)
@limiter.limit(settings.rate_limit)
async def update_trip(
    request: Request,
    trip_id: int,
    body: TripUpdateRequest,
    actor: Actor = Depends(company_actor),
    service: TripService = Depends(get_trip_service),
):
    return await service.update_trip(trip_id, actor, body.model_dump(exclude_unset=True))


@router.patch("/{trip_id}/cancel", response_model=TripResponse, summary="Cancel a trip")
@limiter.limit(settings.rate_limit)
async def cancel_trip(
    request: Request,
    trip_id: int,
    actor: Actor = Depends(company_actor),
    service: TripService = Depends(get_trip_service),
):
    return await service.cancel_trip(trip_id, actor)


@router.delete("/{trip_id}", status_code=204, response_model=None, summary="Delete a trip")
@limiter.limit(settings.rate_limit)
async def delete_trip(
    request: Request,
    trip_id: int,
    actor: Actor = Depends(company_actor),
    service: TripService = Depends(get_trip_service),
):
    await service.delete_trip(trip_id, actor)


@router.get(
    "/{trip_id}/candidates",
    response_model=list[DriverResponse],
    summary="Drivers compatible with the trip",
)
@limiter.limit(settings.rate_limit)
async def trip_candidates(
    request: Request,
    trip_id: int,
    actor: Actor = Depends(company_actor),
    service: TripService = Depends(get_trip_service),
    matcher: AvailabilityMatcher = Depends(get_matcher),
):
    trip = await service.get_trip(trip_id)
    if trip.company_id != actor.id:
        raise Forbidden("You can only search drivers for your own trips")
    return await matcher.find_drivers_for_trip(trip_id)


@router.post(
    "/{trip_id}/rating",
    status_code=204,
    response_model=None,
    summary="Rate the driver of a completed trip",
)
@limiter.limit(settings.rate_limit)
async def rate_driver(
    request: Request,
    trip_id: int,
    body: RateDriverRequest,
    actor: Actor = Depends(company_actor),
    service: TripService = Depends(get_trip_service),
):
    await service.rate_driver(trip_id, actor, body.rating, body.comment)


# ── Assignment workflow ───────────────────────────────────────────────


@router.post(
    "/{trip_id}/requests",
    status_code=201,
    response_model=TripRequestResponse,
    summary="Request a trip (driver) or propose it to a driver (company)",
)
@limiter.limit(settings.rate_limit)
async def send_request(
    request: Request,
    trip_id: int,
    body: Optional[TripRequestCreate] = None,
    actor: Actor = Depends(current_actor),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    if actor.is_driver:
        return await coordinator.send_trip_request(trip_id, actor)
    if body is None or body.driver_id is None:
        raise ValidationError("driver_id is required when a company sends a request")
    return await coordinator.send_driver_request(trip_id, body.driver_id, actor)


@router.post("/{trip_id}/assign", response_model=TripResponse, summary="Assign a driver")
@limiter.limit(settings.rate_limit)
async def assign_driver(
    request: Request,
    trip_id: int,
    body: AssignDriverRequest,
    actor: Actor = Depends(company_actor),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.assign_driver_direct(trip_id, body.driver_id, actor)


@router.post("/{trip_id}/unassign", response_model=TripResponse, summary="Unassign the driver")
@limiter.limit(settings.rate_limit)
async def unassign_driver(
    request: Request,
    trip_id: int,
    actor: Actor = Depends(company_actor),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.unassign_driver(trip_id, actor)


@router.post(
    "/{trip_id}/reassignment",
    status_code=201,
    response_model=TripRequestResponse,
    summary="Ask the assigned driver to approve a reassignment",
)
@limiter.limit(settings.rate_limit)
async def request_reassignment(
    request: Request,
    trip_id: int,
    actor: Actor = Depends(company_actor),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.request_reassignment(trip_id, actor)


@router.post("/{trip_id}/start", response_model=TripResponse, summary="Start the trip")
@limiter.limit(settings.rate_limit)
async def start_trip(
    request: Request,
    trip_id: int,
    actor: Actor = Depends(driver_actor),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.start_trip(trip_id, actor)


@router.post(
    "/{trip_id}/complete",
    response_model=CompletionResponse,
    summary="Complete the trip and optionally rate the company",
)
@limiter.limit(settings.rate_limit)
async def complete_trip(
    request: Request,
    trip_id: int,
    body: Optional[CompleteTripRequest] = None,
    actor: Actor = Depends(driver_actor),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    body = body or CompleteTripRequest()
    result = await coordinator.complete_trip(
        trip_id, actor, rating=body.rating, comment=body.comment
    )
    return CompletionResponse(
        trip=TripResponse.model_validate(result.trip),
        rating_saved=result.rating_saved,
    )
