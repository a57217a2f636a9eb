"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from brokerage.domain.entities import Actor
from brokerage.domain.errors import Forbidden
from brokerage.services.availability import AvailabilityMatcher
from brokerage.services.coordinator import AssignmentCoordinator
from brokerage.services.notifications import NotificationInbox, NotificationSink
from brokerage.services.trips import TripService


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory


def get_notifier(request: Request) -> NotificationSink:
    return request.app.state.notifier


# ── Services ──────────────────────────────────────────────────────────


def get_trip_service(
    session_factory=Depends(get_session_factory),
    notifier=Depends(get_notifier),
) -> TripService:
    return TripService(session_factory, notifier)


def get_coordinator(
    session_factory=Depends(get_session_factory),
    notifier=Depends(get_notifier),
) -> AssignmentCoordinator:
    return AssignmentCoordinator(session_factory, notifier)


def get_matcher(session_factory=Depends(get_session_factory)) -> AvailabilityMatcher:
    return AvailabilityMatcher(session_factory)


def get_inbox(session_factory=Depends(get_session_factory)) -> NotificationInbox:
    return NotificationInbox(session_factory)


# ── Caller identity ───────────────────────────────────────────────────
# Stand-in for authentication: the caller names itself with one header.


async def current_actor(
    x_company_id: Optional[int] = Header(None),
    x_driver_id: Optional[int] = Header(None),
) -> Actor:
    if (x_company_id is None) == (x_driver_id is None):
        raise HTTPException(
            status_code=401,
            detail="Send exactly one of the X-Company-Id or X-Driver-Id headers",
        )
    if x_company_id is not None:
        return Actor.company(x_company_id)
    return Actor.driver(x_driver_id)


async def company_actor(actor: Actor = Depends(current_actor)) -> Actor:
    if not actor.is_company:
        raise Forbidden("This endpoint is for companies")
    return actor


async def driver_actor(actor: Actor = Depends(current_actor)) -> Actor:
    if not actor.is_driver:
        raise Forbidden("This endpoint is for drivers")
    return actor
