"""
Assignment coordinator workflow tests.

Covers:
1. Accepting a claim binds the driver and rejects the sibling requests.
2. Losing a race surfaces as ``Conflict``, never as a silent success.
3. Rejection, cancellation, unassignment and reassignment semantics.
4. Start / complete, including a failing notification sink.
"""

from datetime import time
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from brokerage.domain.entities import Actor
from brokerage.domain.enums import (
    PartyType,
    RequestDirection,
    RequestStatus,
    TripStatus,
)
from brokerage.domain.errors import (
    Conflict,
    Forbidden,
    InvalidState,
    NotFound,
    ValidationError,
)
from brokerage.infrastructure.models import (
    CompanyModel,
    RatingModel,
    TripModel,
    TripRequestModel,
)
from brokerage.services.coordinator import AssignmentCoordinator


@pytest.fixture
def coordinator(session_factory, sink):
    return AssignmentCoordinator(session_factory, sink, window_minutes=120)


async def _requests_for(session_factory, trip_id):
    async with session_factory() as session:
        result = await session.execute(
            select(TripRequestModel)
            .where(TripRequestModel.trip_id == trip_id)
            .order_by(TripRequestModel.id)
        )
        return list(result.scalars().all())


class TestAcceptRequest:
    @pytest.mark.asyncio
    async def test_company_accepts_one_of_two_claims(self, seed, coordinator, sink):
        company = await seed.company()
        trip = await seed.trip(company, capacity=4)
        driver_a = await seed.driver(first_name="Avi")
        driver_b = await seed.driver(first_name="Ben")
        request_a = await seed.request(trip, driver_a)
        request_b = await seed.request(trip, driver_b)

        result = await coordinator.accept_request(request_a.id, Actor.company(company.id))

        assert result.status == TripStatus.ASSIGNED
        assert result.driver_id == driver_a.id
        stored = await seed.get(TripModel, trip.id)
        assert stored.status == TripStatus.ASSIGNED
        assert stored.driver_id == driver_a.id
        assert (await seed.get(TripRequestModel, request_a.id)).status == RequestStatus.ACCEPTED
        assert (await seed.get(TripRequestModel, request_b.id)).status == RequestStatus.REJECTED
        assert sink.titles == ["Trip Request Accepted"]

    @pytest.mark.asyncio
    async def test_at_most_one_accepted_claim(self, seed, coordinator, session_factory):
        company = await seed.company()
        trip = await seed.trip(company)
        drivers = [await seed.driver() for _ in range(3)]
        requests = [await seed.request(trip, d) for d in drivers]

        await coordinator.accept_request(requests[1].id, Actor.company(company.id))
        with pytest.raises(InvalidState):
            await coordinator.accept_request(requests[2].id, Actor.company(company.id))

        statuses = [r.status for r in await _requests_for(session_factory, trip.id)]
        assert statuses.count(RequestStatus.ACCEPTED) == 1
        assert statuses.count(RequestStatus.PENDING) == 0

    @pytest.mark.asyncio
    async def test_driver_accepts_company_proposal(self, seed, coordinator, sink):
        company = await seed.company()
        trip = await seed.trip(company)
        driver = await seed.driver()
        proposal = await seed.request(trip, driver, RequestDirection.COMPANY_TO_DRIVER)

        result = await coordinator.accept_request(proposal.id, Actor.driver(driver.id))

        assert result.driver_id == driver.id
        assert sink.sent[0].user_id == company.user_id

    @pytest.mark.asyncio
    async def test_accept_on_already_assigned_trip_is_conflict(self, seed, coordinator):
        """A claim left pending on a trip someone else took cannot win."""
        company = await seed.company()
        winner = await seed.driver()
        late = await seed.driver()
        trip = await seed.trip(company, status=TripStatus.ASSIGNED, driver=winner)
        stale = await seed.request(trip, late)

        with pytest.raises(Conflict):
            await coordinator.accept_request(stale.id, Actor.company(company.id))

        stored = await seed.get(TripModel, trip.id)
        assert stored.driver_id == winner.id
        assert (await seed.get(TripRequestModel, stale.id)).status == RequestStatus.PENDING

    @pytest.mark.asyncio
    async def test_accept_on_cancelled_trip_is_invalid_state(self, seed, coordinator):
        company = await seed.company()
        driver = await seed.driver()
        trip = await seed.trip(company, status=TripStatus.CANCELLED)
        request = await seed.request(trip, driver)

        with pytest.raises(InvalidState):
            await coordinator.accept_request(request.id, Actor.company(company.id))

    @pytest.mark.asyncio
    async def test_schedule_conflict_blocks_accept(self, seed, coordinator):
        company = await seed.company()
        driver = await seed.driver()
        await seed.trip(company, departure=time(10, 0), status=TripStatus.ASSIGNED, driver=driver)
        second = await seed.trip(company, departure=time(11, 30))
        request = await seed.request(second, driver)

        with pytest.raises(Conflict):
            await coordinator.accept_request(request.id, Actor.company(company.id))

        stored = await seed.get(TripModel, second.id)
        assert stored.status == TripStatus.PENDING
        assert stored.driver_id is None
        assert (await seed.get(TripRequestModel, request.id)).status == RequestStatus.PENDING

    @pytest.mark.asyncio
    async def test_one_hundred_fifty_minutes_apart_is_accepted(self, seed, coordinator):
        company = await seed.company()
        driver = await seed.driver()
        await seed.trip(company, departure=time(10, 0), status=TripStatus.ASSIGNED, driver=driver)
        second = await seed.trip(company, departure=time(12, 30))
        request = await seed.request(second, driver)

        result = await coordinator.accept_request(request.id, Actor.company(company.id))

        assert result.status == TripStatus.ASSIGNED

    @pytest.mark.asyncio
    async def test_cannot_accept_own_request(self, seed, coordinator):
        company = await seed.company()
        driver = await seed.driver()
        trip = await seed.trip(company)
        request = await seed.request(trip, driver, RequestDirection.DRIVER_TO_COMPANY)

        with pytest.raises(InvalidState):
            await coordinator.accept_request(request.id, Actor.driver(driver.id))

    @pytest.mark.asyncio
    async def test_other_company_cannot_accept(self, seed, coordinator):
        owner = await seed.company()
        stranger = await seed.company("Other Co")
        driver = await seed.driver()
        trip = await seed.trip(owner)
        request = await seed.request(trip, driver)

        with pytest.raises(Forbidden):
            await coordinator.accept_request(request.id, Actor.company(stranger.id))

    @pytest.mark.asyncio
    async def test_claim_of_unapproved_driver_cannot_be_accepted(self, seed, coordinator):
        company = await seed.company()
        trip = await seed.trip(company)
        driver = await seed.driver(approved=False)
        claim = await seed.request(trip, driver)

        with pytest.raises(Forbidden):
            await coordinator.accept_request(claim.id, Actor.company(company.id))

        stored = await seed.get(TripModel, trip.id)
        assert stored.status == TripStatus.PENDING
        assert stored.driver_id is None
        assert (await seed.get(TripRequestModel, claim.id)).status == RequestStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_request(self, coordinator):
        with pytest.raises(NotFound):
            await coordinator.accept_request(999, Actor.driver(1))


class TestAssignDirect:
    @pytest.mark.asyncio
    async def test_assign_accepts_drivers_pending_claim(self, seed, coordinator, sink):
        company = await seed.company()
        trip = await seed.trip(company)
        chosen = await seed.driver()
        other = await seed.driver()
        own_claim = await seed.request(trip, chosen)
        other_claim = await seed.request(trip, other)

        result = await coordinator.assign_driver_direct(
            trip.id, chosen.id, Actor.company(company.id)
        )

        assert result.status == TripStatus.ASSIGNED
        assert result.driver_id == chosen.id
        assert (await seed.get(TripRequestModel, own_claim.id)).status == RequestStatus.ACCEPTED
        assert (await seed.get(TripRequestModel, other_claim.id)).status == RequestStatus.REJECTED
        assert sink.titles == ["Trip Assigned"]

    @pytest.mark.asyncio
    async def test_second_assign_is_conflict(self, seed, coordinator):
        company = await seed.company()
        trip = await seed.trip(company)
        first = await seed.driver()
        second = await seed.driver()
        actor = Actor.company(company.id)

        await coordinator.assign_driver_direct(trip.id, first.id, actor)
        with pytest.raises(Conflict):
            await coordinator.assign_driver_direct(trip.id, second.id, actor)

        assert (await seed.get(TripModel, trip.id)).driver_id == first.id

    @pytest.mark.asyncio
    async def test_unapproved_driver_refused(self, seed, coordinator):
        company = await seed.company()
        trip = await seed.trip(company)
        driver = await seed.driver(approved=False)

        with pytest.raises(Forbidden):
            await coordinator.assign_driver_direct(trip.id, driver.id, Actor.company(company.id))

    @pytest.mark.asyncio
    async def test_unknown_driver(self, seed, coordinator):
        company = await seed.company()
        trip = await seed.trip(company)

        with pytest.raises(NotFound):
            await coordinator.assign_driver_direct(trip.id, 999, Actor.company(company.id))


class TestRejectAndCancel:
    @pytest.mark.asyncio
    async def test_reject_proposal_leaves_trip_unchanged(self, seed, coordinator, sink):
        company = await seed.company()
        trip = await seed.trip(company)
        driver = await seed.driver()
        proposal = await seed.request(trip, driver, RequestDirection.COMPANY_TO_DRIVER)

        result = await coordinator.reject_request(proposal.id, Actor.driver(driver.id))

        assert result.status == RequestStatus.REJECTED
        stored = await seed.get(TripModel, trip.id)
        assert stored.status == TripStatus.PENDING
        assert stored.driver_id is None
        assert sink.titles == ["Trip Request Rejected"]
        assert sink.sent[0].user_id == company.user_id

    @pytest.mark.asyncio
    async def test_reject_twice_is_invalid_state(self, seed, coordinator):
        company = await seed.company()
        trip = await seed.trip(company)
        driver = await seed.driver()
        request = await seed.request(trip, driver)
        actor = Actor.company(company.id)

        await coordinator.reject_request(request.id, actor)
        with pytest.raises(InvalidState):
            await coordinator.reject_request(request.id, actor)

    @pytest.mark.asyncio
    async def test_rejected_pair_can_request_again(self, seed, coordinator):
        company = await seed.company()
        trip = await seed.trip(company)
        driver = await seed.driver()
        request = await seed.request(trip, driver)
        await coordinator.reject_request(request.id, Actor.company(company.id))

        again = await coordinator.send_trip_request(trip.id, Actor.driver(driver.id))

        assert again.id != request.id
        assert again.status == RequestStatus.PENDING

    @pytest.mark.asyncio
    async def test_originator_cancels_pending_request(self, seed, coordinator, session_factory):
        company = await seed.company()
        trip = await seed.trip(company)
        driver = await seed.driver()
        request = await seed.request(trip, driver)

        await coordinator.cancel_request(request.id, Actor.driver(driver.id))

        assert await _requests_for(session_factory, trip.id) == []

    @pytest.mark.asyncio
    async def test_counterpart_cannot_cancel(self, seed, coordinator):
        company = await seed.company()
        trip = await seed.trip(company)
        driver = await seed.driver()
        request = await seed.request(trip, driver, RequestDirection.COMPANY_TO_DRIVER)

        with pytest.raises(InvalidState):
            await coordinator.cancel_request(request.id, Actor.driver(driver.id))

    @pytest.mark.asyncio
    async def test_accepted_request_cannot_be_cancelled(self, seed, coordinator):
        company = await seed.company()
        trip = await seed.trip(company)
        driver = await seed.driver()
        request = await seed.request(trip, driver, RequestDirection.COMPANY_TO_DRIVER)
        await coordinator.accept_request(request.id, Actor.driver(driver.id))

        with pytest.raises(InvalidState):
            await coordinator.cancel_request(request.id, Actor.company(company.id))


class TestSendRequests:
    @pytest.mark.asyncio
    async def test_driver_request_notifies_company(self, seed, coordinator, sink):
        company = await seed.company()
        trip = await seed.trip(company)
        driver = await seed.driver()

        request = await coordinator.send_trip_request(trip.id, Actor.driver(driver.id))

        assert request.direction == RequestDirection.DRIVER_TO_COMPANY
        assert request.status == RequestStatus.PENDING
        assert sink.titles == ["New Trip Request"]
        assert sink.sent[0].user_id == company.user_id

    @pytest.mark.asyncio
    async def test_duplicate_open_request_is_conflict(self, seed, coordinator):
        company = await seed.company()
        trip = await seed.trip(company)
        driver = await seed.driver()
        await coordinator.send_driver_request(trip.id, driver.id, Actor.company(company.id))

        with pytest.raises(Conflict):
            await coordinator.send_trip_request(trip.id, Actor.driver(driver.id))

    @pytest.mark.asyncio
    async def test_request_on_taken_trip_is_conflict(self, seed, coordinator):
        company = await seed.company()
        owner = await seed.driver()
        trip = await seed.trip(company, status=TripStatus.ASSIGNED, driver=owner)
        driver = await seed.driver()

        with pytest.raises(Conflict):
            await coordinator.send_trip_request(trip.id, Actor.driver(driver.id))

    @pytest.mark.asyncio
    async def test_company_cannot_propose_foreign_trip(self, seed, coordinator):
        owner = await seed.company()
        stranger = await seed.company("Other Co")
        trip = await seed.trip(owner)
        driver = await seed.driver()

        with pytest.raises(Forbidden):
            await coordinator.send_driver_request(trip.id, driver.id, Actor.company(stranger.id))


class TestUnassignAndReassignment:
    @pytest.mark.asyncio
    async def test_unassign_reopens_trip(self, seed, coordinator, sink):
        company = await seed.company()
        trip = await seed.trip(company)
        driver = await seed.driver()
        request = await seed.request(trip, driver)
        actor = Actor.company(company.id)
        await coordinator.accept_request(request.id, actor)

        result = await coordinator.unassign_driver(trip.id, actor)

        assert result.status == TripStatus.PENDING
        assert result.driver_id is None
        assert (await seed.get(TripRequestModel, request.id)).status == RequestStatus.REJECTED
        assert sink.titles[-1] == "Trip Unassigned"

    @pytest.mark.asyncio
    async def test_unassign_pending_trip_is_invalid_state(self, seed, coordinator):
        company = await seed.company()
        trip = await seed.trip(company)

        with pytest.raises(InvalidState):
            await coordinator.unassign_driver(trip.id, Actor.company(company.id))

    @pytest.mark.asyncio
    async def test_approved_reassignment_reopens_trip(self, seed, coordinator, sink):
        company = await seed.company()
        driver = await seed.driver()
        trip = await seed.trip(company, status=TripStatus.ASSIGNED, driver=driver)

        request = await coordinator.request_reassignment(trip.id, Actor.company(company.id))
        assert request.direction == RequestDirection.REASSIGNMENT_APPROVAL
        assert sink.sent[-1].user_id == driver.user_id

        result = await coordinator.respond_to_reassignment(
            request.id, Actor.driver(driver.id), accept=True
        )

        assert result.status == TripStatus.PENDING
        assert result.driver_id is None
        assert (await seed.get(TripRequestModel, request.id)).status == RequestStatus.ACCEPTED
        assert sink.titles[-1] == "Reassignment Approved"

    @pytest.mark.asyncio
    async def test_refused_reassignment_keeps_driver(self, seed, coordinator, sink):
        company = await seed.company()
        driver = await seed.driver()
        trip = await seed.trip(company, status=TripStatus.ASSIGNED, driver=driver)
        request = await coordinator.request_reassignment(trip.id, Actor.company(company.id))

        result = await coordinator.respond_to_reassignment(
            request.id, Actor.driver(driver.id), accept=False
        )

        assert result.status == TripStatus.ASSIGNED
        assert result.driver_id == driver.id
        assert (await seed.get(TripRequestModel, request.id)).status == RequestStatus.REJECTED
        assert sink.titles[-1] == "Reassignment Rejected"

    @pytest.mark.asyncio
    async def test_duplicate_reassignment_is_conflict(self, seed, coordinator):
        company = await seed.company()
        driver = await seed.driver()
        trip = await seed.trip(company, status=TripStatus.ASSIGNED, driver=driver)
        actor = Actor.company(company.id)
        await coordinator.request_reassignment(trip.id, actor)

        with pytest.raises(Conflict):
            await coordinator.request_reassignment(trip.id, actor)

    @pytest.mark.asyncio
    async def test_reassignment_needs_assigned_trip(self, seed, coordinator):
        company = await seed.company()
        trip = await seed.trip(company)

        with pytest.raises(InvalidState):
            await coordinator.request_reassignment(trip.id, Actor.company(company.id))

    @pytest.mark.asyncio
    async def test_reassignment_cannot_be_accepted_as_claim(self, seed, coordinator):
        company = await seed.company()
        driver = await seed.driver()
        trip = await seed.trip(company, status=TripStatus.ASSIGNED, driver=driver)
        request = await coordinator.request_reassignment(trip.id, Actor.company(company.id))

        with pytest.raises(InvalidState):
            await coordinator.accept_request(request.id, Actor.driver(driver.id))

    @pytest.mark.asyncio
    async def test_other_driver_cannot_answer(self, seed, coordinator):
        company = await seed.company()
        driver = await seed.driver()
        intruder = await seed.driver()
        trip = await seed.trip(company, status=TripStatus.ASSIGNED, driver=driver)
        request = await coordinator.request_reassignment(trip.id, Actor.company(company.id))

        with pytest.raises(Forbidden):
            await coordinator.respond_to_reassignment(
                request.id, Actor.driver(intruder.id), accept=True
            )


class TestExecution:
    @pytest.mark.asyncio
    async def test_start_trip(self, seed, coordinator, sink):
        company = await seed.company()
        driver = await seed.driver()
        trip = await seed.trip(company, status=TripStatus.ASSIGNED, driver=driver)

        result = await coordinator.start_trip(trip.id, Actor.driver(driver.id))

        assert result.status == TripStatus.IN_PROGRESS
        assert sink.titles == ["Trip Started"]
        assert sink.sent[0].user_id == company.user_id

    @pytest.mark.asyncio
    async def test_only_assigned_driver_can_start(self, seed, coordinator):
        company = await seed.company()
        driver = await seed.driver()
        other = await seed.driver()
        trip = await seed.trip(company, status=TripStatus.ASSIGNED, driver=driver)

        with pytest.raises(Forbidden):
            await coordinator.start_trip(trip.id, Actor.driver(other.id))

    @pytest.mark.asyncio
    async def test_start_twice_is_invalid_state(self, seed, coordinator):
        company = await seed.company()
        driver = await seed.driver()
        trip = await seed.trip(company, status=TripStatus.ASSIGNED, driver=driver)
        actor = Actor.driver(driver.id)
        await coordinator.start_trip(trip.id, actor)

        with pytest.raises(InvalidState):
            await coordinator.start_trip(trip.id, actor)

    @pytest.mark.asyncio
    async def test_complete_with_rating_survives_failing_notifier(
        self, seed, session_factory
    ):
        notifier = AsyncMock()
        notifier.send.side_effect = RuntimeError("notification backend down")
        coordinator = AssignmentCoordinator(session_factory, notifier)
        company = await seed.company()
        driver = await seed.driver()
        trip = await seed.trip(company, status=TripStatus.IN_PROGRESS, driver=driver)

        result = await coordinator.complete_trip(
            trip.id, Actor.driver(driver.id), rating=5, comment="Smooth handover"
        )

        assert result.trip.status == TripStatus.COMPLETED
        assert result.rating_saved is True
        notifier.send.assert_awaited_once()
        assert (await seed.get(TripModel, trip.id)).status == TripStatus.COMPLETED
        async with session_factory() as session:
            ratings = (await session.execute(select(RatingModel))).scalars().all()
        assert [(r.rating, r.rated_type, r.rated_id) for r in ratings] == [
            (5, PartyType.COMPANY, company.id)
        ]
        rated = await seed.get(CompanyModel, company.id)
        assert rated.rating == 5.0
        assert rated.rating_count == 1

    @pytest.mark.asyncio
    async def test_complete_survives_failing_rating(self, seed, session_factory, sink):
        ratings = AsyncMock()
        ratings.rate_company.side_effect = RuntimeError("ratings table locked")
        coordinator = AssignmentCoordinator(session_factory, sink, ratings)
        company = await seed.company()
        driver = await seed.driver()
        trip = await seed.trip(company, status=TripStatus.IN_PROGRESS, driver=driver)

        result = await coordinator.complete_trip(trip.id, Actor.driver(driver.id), rating=4)

        assert result.trip.status == TripStatus.COMPLETED
        assert result.rating_saved is False
        assert sink.titles == ["Trip Completed"]

    @pytest.mark.asyncio
    async def test_out_of_range_rating_rejected_before_completion(self, seed, coordinator):
        company = await seed.company()
        driver = await seed.driver()
        trip = await seed.trip(company, status=TripStatus.IN_PROGRESS, driver=driver)

        with pytest.raises(ValidationError):
            await coordinator.complete_trip(trip.id, Actor.driver(driver.id), rating=6)

        assert (await seed.get(TripModel, trip.id)).status == TripStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_complete_assigned_trip_is_invalid_state(self, seed, coordinator):
        company = await seed.company()
        driver = await seed.driver()
        trip = await seed.trip(company, status=TripStatus.ASSIGNED, driver=driver)

        with pytest.raises(InvalidState):
            await coordinator.complete_trip(trip.id, Actor.driver(driver.id))
