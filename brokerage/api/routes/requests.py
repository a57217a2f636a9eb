"""
Trip-request endpoints
======================

GET    /api/v1/requests                                  -- caller's request inbox
POST   /api/v1/requests/{request_id}/accept              -- counterpart accepts
POST   /api/v1/requests/{request_id}/reject              -- counterpart rejects
DELETE /api/v1/requests/{request_id}                     -- originator cancels
POST   /api/v1/requests/{request_id}/reassignment-response -- driver answers
"""

from fastapi import APIRouter, Depends, Request

from brokerage.api.dependencies import current_actor, driver_actor, get_coordinator
from brokerage.api.middleware import limiter
from brokerage.api.schemas import ReassignmentAnswer, TripRequestResponse, TripResponse
from brokerage.config import settings
from brokerage.domain.entities import Actor
from brokerage.services.coordinator import AssignmentCoordinator

router = APIRouter(prefix="/requests", tags=["requests"])


@router.get(
    "",
    response_model=list[TripRequestResponse],
    summary="List requests",
    description=(
        "Drivers get every request addressed to or sent by them; companies "
        "get the pending requests on their trips."
    ),
)
@limiter.limit(settings.rate_limit)
async def list_requests(
    request: Request,
    actor: Actor = Depends(current_actor),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    if actor.is_driver:
        return await coordinator.requests_for_driver(actor)
    return await coordinator.pending_requests_for_company(actor)


@router.post(
    "/{request_id}/accept",
    response_model=TripResponse,
    summary="Accept a request",
    description=(
        "Binds the driver to the trip and rejects every other pending "
        "request for it in the same transaction."
    ),
)
@limiter.limit(settings.rate_limit)
async def accept_request(
    request: Request,
    request_id: int,
    actor: Actor = Depends(current_actor),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.accept_request(request_id, actor)


@router.post("/{request_id}/reject", response_model=TripRequestResponse, summary="Reject a request")
@limiter.limit(settings.rate_limit)
async def reject_request(
    request: Request,
    request_id: int,
    actor: Actor = Depends(current_actor),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.reject_request(request_id, actor)


@router.delete(
    "/{request_id}", status_code=204, response_model=None, summary="Cancel your own request"
)
@limiter.limit(settings.rate_limit)
async def cancel_request(
    request: Request,
    request_id: int,
    actor: Actor = Depends(current_actor),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    await coordinator.cancel_request(request_id, actor)


@router.post(
    "/{request_id}/reassignment-response",
    response_model=TripResponse,
    summary="Approve or refuse a reassignment",
)
@limiter.limit(settings.rate_limit)
async def respond_to_reassignment(
    request: Request,
    request_id: int,
    body: ReassignmentAnswer,
    actor: Actor = Depends(driver_actor),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.respond_to_reassignment(request_id, actor, body.accept)
