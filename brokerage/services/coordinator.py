"""
Assignment Coordinator
======================

State-transition engine for trips and trip requests.

Trip lifecycle
--------------
    pending --assign--> assigned --start--> in_progress --complete--> completed
    assigned --unassign--> pending
    pending --cancel--> cancelled            (TripService.cancel_trip)

Concurrency
-----------
Every operation runs in **one** transaction opened from the injected
session factory:

* The trip row is read with ``SELECT ... FOR UPDATE`` so a second writer
  for the same trip queues behind the first.
* Every status change is a conditional UPDATE whose WHERE clause encodes
  the expected prior state; zero affected rows is reported as ``Conflict``.
* Accepting a claim, binding the driver and rejecting the sibling pending
  requests commit or roll back together.
* A new request re-asserts, with a conditional write after the insert, that
  its trip is still pending and unassigned; otherwise it is rolled back.
* After every bind or release the trip must carry a driver exactly when its
  status says so.

Notifications are collected in an outbox while the transaction runs and
delivered only after it commits; a failing sink never undoes a transition.
The completion rating is written in a separate transaction for the same
reason.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from brokerage.config import settings
from brokerage.domain.entities import (
    Actor,
    Notification,
    departure_of,
    driver_binding_ok,
)
from brokerage.domain.enums import (
    CLAIM_DIRECTIONS,
    OPEN_REQUEST_STATUSES,
    RequestDirection,
    RequestStatus,
    SCHEDULED_STATUSES,
    TripStatus,
)
from brokerage.domain.errors import (
    Conflict,
    Forbidden,
    InvalidState,
    NotFound,
)
from brokerage.domain.matching import schedule_conflicts
from brokerage.infrastructure.models import TripModel, TripRequestModel
from brokerage.infrastructure.repositories import (
    CompanyRepository,
    DriverRepository,
    TripRepository,
    TripRequestRepository,
)
from brokerage.services.notifications import NotificationSink, notify_safely
from brokerage.services.ratings import RatingRecorder, validate_rating

logger = logging.getLogger(__name__)


@dataclass
class CompletionResult:
    trip: TripModel
    rating_saved: bool


def _describe(trip: TripModel) -> str:
    return f"from {trip.pickup_location} to {trip.destination} on {trip.trip_date.isoformat()}"


class AssignmentCoordinator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: NotificationSink,
        ratings: Optional[RatingRecorder] = None,
        *,
        window_minutes: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.ratings = ratings or RatingRecorder(session_factory)
        self.window_minutes = (
            window_minutes
            if window_minutes is not None
            else settings.conflict_window_minutes
        )

    # ── Proposals ────────────────────────────────────────────────────

    async def send_trip_request(self, trip_id: int, actor: Actor) -> TripRequestModel:
        """A driver asks the owning company for a pending trip."""
        if not actor.is_driver:
            raise Forbidden("Only drivers can request trips")
        outbox: list[Notification] = []

        async with self.session_factory() as session, session.begin():
            driver = await self._approved_driver(session, actor.id)
            trip = await self._trip(TripRepository(session), trip_id, lock=True)
            self._ensure_assignable(trip)
            request = await self._create_claim(
                session, trip.id, driver.id, RequestDirection.DRIVER_TO_COMPANY
            )
            company = await CompanyRepository(session).get_by_id(trip.company_id)
            if company is not None:
                outbox.append(
                    Notification(
                        company.user_id,
                        "New Trip Request",
                        f"A driver has requested to take your trip {_describe(trip)}.",
                    )
                )

        logger.info("Driver %s requested trip %s (request %s)", actor.id, trip_id, request.id)
        await notify_safely(self.notifier, outbox)
        return request

    async def send_driver_request(
        self, trip_id: int, driver_id: int, actor: Actor
    ) -> TripRequestModel:
        """A company proposes one of its pending trips to a driver."""
        outbox: list[Notification] = []

        async with self.session_factory() as session, session.begin():
            trip = await self._owned_trip(TripRepository(session), trip_id, actor, lock=True)
            self._ensure_assignable(trip)
            driver = await self._approved_driver(session, driver_id)
            request = await self._create_claim(
                session, trip.id, driver.id, RequestDirection.COMPANY_TO_DRIVER
            )
            company = await CompanyRepository(session).get_by_id(trip.company_id)
            company_name = company.company_name if company else "a company"
            outbox.append(
                Notification(
                    driver.user_id,
                    "New Trip Request",
                    f"You have a new trip request from {company_name} for the trip {_describe(trip)}.",
                )
            )

        logger.info(
            "Company %s proposed trip %s to driver %s (request %s)",
            actor.id,
            trip_id,
            driver_id,
            request.id,
        )
        await notify_safely(self.notifier, outbox)
        return request

    # ── Accept / reject / cancel ─────────────────────────────────────

    async def accept_request(self, request_id: int, actor: Actor) -> TripModel:
        """
        Accept a claim addressed to *actor* and bind its driver to the trip.

        A driver accepts ``company_to_driver`` requests sent to them; a
        company accepts ``driver_to_company`` requests on its own trips.
        The request becomes ``accepted``, the trip ``assigned`` and every
        other pending request of the trip ``rejected`` -- all in one
        transaction.
        """
        outbox: list[Notification] = []

        async with self.session_factory() as session, session.begin():
            requests = TripRequestRepository(session)
            request = await self._request(requests, request_id)
            trip = await self._trip(TripRepository(session), request.trip_id, lock=True)
            self._ensure_responder(request, trip, actor)
            self._ensure_pending(request)
            await self._approved_driver(session, request.driver_id)

            rejected = await self._claim_trip(
                session, trip, request.driver_id, accepted_request_id=request.id
            )
            await session.refresh(request)
            outbox.extend(
                await self._recipients(
                    session,
                    trip,
                    request.driver_id,
                    notify_company=actor.is_driver,
                    title="Trip Request Accepted",
                    message=f"The request for the trip {_describe(trip)} has been accepted.",
                )
            )

        logger.info(
            "Request %s accepted: trip %s assigned to driver %s, %d sibling request(s) rejected",
            request_id,
            trip.id,
            trip.driver_id,
            rejected,
        )
        await notify_safely(self.notifier, outbox)
        return trip

    async def assign_driver_direct(
        self, trip_id: int, driver_id: int, actor: Actor
    ) -> TripModel:
        """Company binds a driver without a prior request round-trip."""
        outbox: list[Notification] = []

        async with self.session_factory() as session, session.begin():
            trip = await self._owned_trip(TripRepository(session), trip_id, actor, lock=True)
            driver = await self._approved_driver(session, driver_id)
            own_request = await TripRequestRepository(session).find_by_trip_and_driver(
                trip.id, driver.id, statuses=[RequestStatus.PENDING]
            )
            if own_request is not None and own_request.direction not in CLAIM_DIRECTIONS:
                own_request = None

            rejected = await self._claim_trip(
                session,
                trip,
                driver.id,
                accepted_request_id=own_request.id if own_request else None,
            )
            outbox.append(
                Notification(
                    driver.user_id,
                    "Trip Assigned",
                    f"You have been assigned to the trip {_describe(trip)}.",
                )
            )

        logger.info(
            "Company %s assigned driver %s to trip %s directly, %d request(s) rejected",
            actor.id,
            driver_id,
            trip_id,
            rejected,
        )
        await notify_safely(self.notifier, outbox)
        return trip

    async def reject_request(self, request_id: int, actor: Actor) -> TripRequestModel:
        """The counterpart declines a pending claim; the trip is untouched."""
        outbox: list[Notification] = []

        async with self.session_factory() as session, session.begin():
            requests = TripRequestRepository(session)
            request = await self._request(requests, request_id)
            trip = await self._trip(TripRepository(session), request.trip_id)
            self._ensure_responder(request, trip, actor)
            self._ensure_pending(request)
            if not await requests.set_status(request.id, RequestStatus.REJECTED):
                raise Conflict("Trip request was answered concurrently")
            await session.refresh(request)
            outbox.extend(
                await self._recipients(
                    session,
                    trip,
                    request.driver_id,
                    notify_company=actor.is_driver,
                    title="Trip Request Rejected",
                    message=f"The request for the trip {_describe(trip)} has been rejected.",
                )
            )

        logger.info("Request %s rejected by %s %s", request_id, actor.kind.value, actor.id)
        await notify_safely(self.notifier, outbox)
        return request

    async def cancel_request(self, request_id: int, actor: Actor) -> None:
        """The originator withdraws a pending request (the row is deleted)."""
        async with self.session_factory() as session, session.begin():
            requests = TripRequestRepository(session)
            request = await self._request(requests, request_id)
            trip = await self._trip(TripRepository(session), request.trip_id)

            if actor.is_driver:
                if request.driver_id != actor.id:
                    raise Forbidden("Not authorized to cancel this request")
                if request.direction != RequestDirection.DRIVER_TO_COMPANY:
                    raise InvalidState("Can only cancel requests you made to companies")
            else:
                if trip.company_id != actor.id:
                    raise Forbidden("Not authorized to cancel this request")
                if request.direction == RequestDirection.DRIVER_TO_COMPANY:
                    raise InvalidState("Can only cancel requests you sent to drivers")

            self._ensure_pending(request)
            if not await requests.delete(request.id):
                raise Conflict("Trip request was answered concurrently")

        logger.info("Request %s cancelled by %s %s", request_id, actor.kind.value, actor.id)

    # ── Assignment reversal ──────────────────────────────────────────

    async def unassign_driver(self, trip_id: int, actor: Actor) -> TripModel:
        """``assigned`` -> ``pending``; the accepted claim is released."""
        outbox: list[Notification] = []

        async with self.session_factory() as session, session.begin():
            trip = await self._owned_trip(TripRepository(session), trip_id, actor, lock=True)
            if trip.status != TripStatus.ASSIGNED:
                raise InvalidState(
                    f"Only assigned trips can be unassigned (status: {TripStatus(trip.status).value})"
                )
            driver_id = trip.driver_id
            await self._release(session, trip, driver_id)
            driver = await DriverRepository(session).get_by_id(driver_id)
            if driver is not None:
                outbox.append(
                    Notification(
                        driver.user_id,
                        "Trip Unassigned",
                        f"You have been unassigned from the trip {_describe(trip)}.",
                    )
                )

        logger.info("Company %s unassigned driver %s from trip %s", actor.id, driver_id, trip_id)
        await notify_safely(self.notifier, outbox)
        return trip

    async def request_reassignment(self, trip_id: int, actor: Actor) -> TripRequestModel:
        """Company asks its assigned driver to agree to be released."""
        outbox: list[Notification] = []

        async with self.session_factory() as session, session.begin():
            trip = await self._owned_trip(TripRepository(session), trip_id, actor, lock=True)
            if trip.driver_id is None:
                raise InvalidState("No driver is currently assigned to this trip")
            if trip.status != TripStatus.ASSIGNED:
                raise InvalidState(
                    f"Cannot request reassignment for a trip with status "
                    f"'{TripStatus(trip.status).value}'"
                )
            requests = TripRequestRepository(session)
            if await requests.find_by_trip_and_driver(
                trip.id,
                trip.driver_id,
                statuses=[RequestStatus.PENDING],
                direction=RequestDirection.REASSIGNMENT_APPROVAL,
            ):
                raise Conflict("A reassignment request is already pending for this trip")
            try:
                request = await requests.create(
                    trip_id=trip.id,
                    driver_id=trip.driver_id,
                    direction=RequestDirection.REASSIGNMENT_APPROVAL,
                )
            except IntegrityError as exc:
                raise Conflict("A request is already pending for this trip") from exc
            driver = await DriverRepository(session).get_by_id(trip.driver_id)
            if driver is not None:
                outbox.append(
                    Notification(
                        driver.user_id,
                        "Reassignment Request",
                        f"Your company has requested to reassign you from the trip to "
                        f"{trip.destination}. Please respond.",
                    )
                )

        logger.info("Company %s requested reassignment on trip %s", actor.id, trip_id)
        await notify_safely(self.notifier, outbox)
        return request

    async def respond_to_reassignment(
        self, request_id: int, actor: Actor, accept: bool
    ) -> TripModel:
        """Driver approves (trip back to pending) or refuses (trip unchanged)."""
        outbox: list[Notification] = []

        async with self.session_factory() as session, session.begin():
            requests = TripRequestRepository(session)
            request = await self._request(requests, request_id)
            if not actor.is_driver or request.driver_id != actor.id:
                raise Forbidden("Not authorized to answer this reassignment request")
            if request.direction != RequestDirection.REASSIGNMENT_APPROVAL:
                raise InvalidState("Not a reassignment request")
            self._ensure_pending(request)
            trip = await self._trip(TripRepository(session), request.trip_id, lock=True)

            if accept:
                if not await requests.set_status(request.id, RequestStatus.ACCEPTED):
                    raise Conflict("Reassignment request was answered concurrently")
                if trip.status != TripStatus.ASSIGNED or trip.driver_id != actor.id:
                    raise InvalidState(
                        f"Trip can no longer be released (status: {TripStatus(trip.status).value})"
                    )
                await self._release(session, trip, actor.id)
            else:
                if not await requests.set_status(request.id, RequestStatus.REJECTED):
                    raise Conflict("Reassignment request was answered concurrently")

            driver = await DriverRepository(session).get_by_id(actor.id)
            company = await CompanyRepository(session).get_by_id(trip.company_id)
            name = driver.full_name if driver else f"Driver {actor.id}"
            if company is not None:
                if accept:
                    outbox.append(
                        Notification(
                            company.user_id,
                            "Reassignment Approved",
                            f"Driver {name} has approved the reassignment for the trip to "
                            f"{trip.destination}. The trip is now pending.",
                        )
                    )
                else:
                    outbox.append(
                        Notification(
                            company.user_id,
                            "Reassignment Rejected",
                            f"Driver {name} has rejected the reassignment for the trip to "
                            f"{trip.destination}.",
                        )
                    )

        logger.info(
            "Driver %s %s reassignment request %s",
            actor.id,
            "approved" if accept else "rejected",
            request_id,
        )
        await notify_safely(self.notifier, outbox)
        return trip

    # ── Execution ────────────────────────────────────────────────────

    async def start_trip(self, trip_id: int, actor: Actor) -> TripModel:
        outbox: list[Notification] = []

        async with self.session_factory() as session, session.begin():
            trips = TripRepository(session)
            trip = await self._driven_trip(trips, trip_id, actor)
            if trip.status != TripStatus.ASSIGNED:
                raise InvalidState(
                    f"Trip cannot be started (status: {TripStatus(trip.status).value})"
                )
            if not await trips.set_status(
                trip.id, TripStatus.ASSIGNED, TripStatus.IN_PROGRESS, driver_id=actor.id
            ):
                raise Conflict("Trip changed while starting; reload and retry")
            await session.refresh(trip)
            outbox.extend(
                await self._recipients(
                    session,
                    trip,
                    actor.id,
                    notify_company=True,
                    title="Trip Started",
                    message=f"Trip {_describe(trip)} has been started by the driver.",
                )
            )

        logger.info("Driver %s started trip %s", actor.id, trip_id)
        await notify_safely(self.notifier, outbox)
        return trip

    async def complete_trip(
        self,
        trip_id: int,
        actor: Actor,
        rating: Optional[int] = None,
        comment: Optional[str] = None,
    ) -> CompletionResult:
        """
        ``in_progress`` -> ``completed``, then a best-effort rating of the
        company.  The rating is written after the transition commits, so a
        rating failure leaves the trip completed.
        """
        validate_rating(rating)
        outbox: list[Notification] = []

        async with self.session_factory() as session, session.begin():
            trips = TripRepository(session)
            trip = await self._driven_trip(trips, trip_id, actor)
            if trip.status != TripStatus.IN_PROGRESS:
                raise InvalidState(
                    f"Trip cannot be completed (status: {TripStatus(trip.status).value})"
                )
            if not await trips.set_status(
                trip.id, TripStatus.IN_PROGRESS, TripStatus.COMPLETED, driver_id=actor.id
            ):
                raise Conflict("Trip changed while completing; reload and retry")
            await session.refresh(trip)
            outbox.extend(
                await self._recipients(
                    session,
                    trip,
                    actor.id,
                    notify_company=True,
                    title="Trip Completed",
                    message=f"Trip {_describe(trip)} has been completed by the driver.",
                )
            )

        logger.info("Driver %s completed trip %s", actor.id, trip_id)

        rating_saved = False
        if rating is not None:
            try:
                await self.ratings.rate_company(
                    trip_id=trip.id,
                    driver_id=actor.id,
                    company_id=trip.company_id,
                    rating=rating,
                    comment=comment,
                )
                rating_saved = True
            except Exception:
                logger.exception("Saving rating for trip %s failed", trip.id)

        await notify_safely(self.notifier, outbox)
        return CompletionResult(trip=trip, rating_saved=rating_saved)

    # ── Reads ────────────────────────────────────────────────────────

    async def requests_for_driver(self, actor: Actor) -> list[TripRequestModel]:
        if not actor.is_driver:
            raise Forbidden("Only drivers have a request inbox")
        async with self.session_factory() as session:
            return await TripRequestRepository(session).list_for_driver(actor.id)

    async def pending_requests_for_company(
        self, actor: Actor, direction: Optional[RequestDirection] = None
    ) -> list[TripRequestModel]:
        if not actor.is_company:
            raise Forbidden("Only companies have a request inbox")
        async with self.session_factory() as session:
            return await TripRequestRepository(session).list_pending_for_company(
                actor.id, direction
            )

    # ── Internals ────────────────────────────────────────────────────

    async def _claim_trip(
        self,
        session: AsyncSession,
        trip: TripModel,
        driver_id: int,
        accepted_request_id: Optional[int] = None,
    ) -> int:
        """Bind *driver_id* to the locked *trip*; returns siblings rejected."""
        trips = TripRepository(session)
        requests = TripRequestRepository(session)

        self._ensure_assignable(trip)
        booked = await trips.scheduled_departures([driver_id], exclude_trip_id=trip.id)
        if schedule_conflicts(
            departure_of(trip.trip_date, trip.departure_time),
            booked.get(driver_id, ()),
            self.window_minutes,
        ):
            raise Conflict(
                "Driver already has a conflicting trip at this time",
                {"driver_id": driver_id, "window_minutes": self.window_minutes},
            )

        if accepted_request_id is not None and not await requests.set_status(
            accepted_request_id, RequestStatus.ACCEPTED
        ):
            raise Conflict("Trip request was answered concurrently")
        if not await trips.assign_driver_if_pending(trip.id, driver_id):
            raise Conflict("Trip was already assigned to another driver")

        rejected = await requests.reject_pending_for_trip(
            trip.id, excluding_id=accepted_request_id
        )
        await session.refresh(trip)
        self._ensure_bound(trip)
        return rejected

    async def _release(self, session: AsyncSession, trip: TripModel, driver_id: int) -> None:
        """Undo an assignment inside the caller's transaction."""
        if not await TripRepository(session).unassign_driver(trip.id, driver_id):
            raise Conflict("Trip changed while releasing the driver; reload and retry")
        await TripRequestRepository(session).release_accepted_claims(trip.id, driver_id)
        await session.refresh(trip)
        self._ensure_bound(trip)

    async def _create_claim(
        self,
        session: AsyncSession,
        trip_id: int,
        driver_id: int,
        direction: RequestDirection,
    ) -> TripRequestModel:
        requests = TripRequestRepository(session)
        existing = await requests.find_by_trip_and_driver(
            trip_id, driver_id, statuses=OPEN_REQUEST_STATUSES
        )
        if existing is not None:
            raise Conflict(
                "A request for this trip and driver already exists",
                {"request_id": existing.id},
            )
        try:
            request = await requests.create(
                trip_id=trip_id, driver_id=driver_id, direction=direction
            )
        except IntegrityError as exc:
            raise Conflict("A request for this trip and driver already exists") from exc
        # the trip may have been assigned since it was read
        if not await TripRepository(session).hold_if_open(trip_id):
            raise Conflict("Trip was assigned to another driver", {"trip_id": trip_id})
        return request

    async def _recipients(
        self,
        session: AsyncSession,
        trip: TripModel,
        driver_id: int,
        *,
        notify_company: bool,
        title: str,
        message: str,
    ) -> list[Notification]:
        if notify_company:
            company = await CompanyRepository(session).get_by_id(trip.company_id)
            return [Notification(company.user_id, title, message)] if company else []
        driver = await DriverRepository(session).get_by_id(driver_id)
        return [Notification(driver.user_id, title, message)] if driver else []

    @staticmethod
    async def _request(repo: TripRequestRepository, request_id: int) -> TripRequestModel:
        request = await repo.get_by_id(request_id)
        if request is None:
            raise NotFound("Trip request", request_id)
        return request

    @staticmethod
    async def _trip(repo: TripRepository, trip_id: int, lock: bool = False) -> TripModel:
        trip = await (repo.get_for_update(trip_id) if lock else repo.get_by_id(trip_id))
        if trip is None:
            raise NotFound("Trip", trip_id)
        return trip

    async def _owned_trip(
        self, repo: TripRepository, trip_id: int, actor: Actor, lock: bool = False
    ) -> TripModel:
        if not actor.is_company:
            raise Forbidden("Only the owning company can do this")
        trip = await self._trip(repo, trip_id, lock=lock)
        if trip.company_id != actor.id:
            raise Forbidden("You are not authorized to modify this trip")
        return trip

    async def _driven_trip(self, repo: TripRepository, trip_id: int, actor: Actor) -> TripModel:
        if not actor.is_driver:
            raise Forbidden("Only the assigned driver can do this")
        trip = await self._trip(repo, trip_id, lock=True)
        if trip.driver_id != actor.id:
            raise Forbidden("You are not the driver of this trip")
        return trip

    @staticmethod
    async def _approved_driver(session: AsyncSession, driver_id: int):
        repo = DriverRepository(session)
        driver = await repo.get_by_id(driver_id)
        if driver is None:
            raise NotFound("Driver", driver_id)
        if not await repo.is_approved(driver_id):
            raise Forbidden("Driver account is not approved")
        return driver

    @staticmethod
    def _ensure_assignable(trip: TripModel) -> None:
        status = TripStatus(trip.status)
        if status in SCHEDULED_STATUSES or trip.driver_id is not None:
            raise Conflict(
                "Trip is already taken by another driver", {"trip_id": trip.id}
            )
        if status != TripStatus.PENDING:
            raise InvalidState(
                f"This trip is already {status.value} and cannot be assigned",
                {"trip_id": trip.id},
            )

    @staticmethod
    def _ensure_bound(trip: TripModel) -> None:
        if not driver_binding_ok(trip.status, trip.driver_id):
            raise Conflict(
                "Trip status and driver disagree; the change was rolled back",
                {"trip_id": trip.id},
            )

    @staticmethod
    def _ensure_pending(request: TripRequestModel) -> None:
        if request.status != RequestStatus.PENDING:
            raise InvalidState(
                f"Trip request is already {RequestStatus(request.status).value}",
                {"request_id": request.id},
            )

    @staticmethod
    def _ensure_responder(request: TripRequestModel, trip: TripModel, actor: Actor) -> None:
        """Only the counterpart of a claim may accept or reject it."""
        if request.direction == RequestDirection.REASSIGNMENT_APPROVAL:
            raise InvalidState("Reassignment requests are answered by the driver")
        if actor.is_driver:
            if request.driver_id != actor.id:
                raise Forbidden("Not authorized to respond to this request")
            if request.direction != RequestDirection.COMPANY_TO_DRIVER:
                raise InvalidState("Cannot respond to a request you made")
        else:
            if trip.company_id != actor.id:
                raise Forbidden("Not authorized to respond to this request")
            if request.direction != RequestDirection.DRIVER_TO_COMPANY:
                raise InvalidState("Cannot respond to a request you made")
