"""
Trip Service
============

Company-side trip lifecycle (create / update / cancel / delete), the
driver's availability window, and post-completion ratings of drivers.

Writes go through the conditional repository methods; when one affects no
row the service re-reads the trip only to pick the right error kind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from brokerage.domain.entities import Actor, Notification, ensure_transition
from brokerage.domain.enums import ACTIVE_STATUSES, TripStatus
from brokerage.domain.errors import (
    Conflict,
    Forbidden,
    InvalidState,
    NotFound,
    ValidationError,
)
from brokerage.infrastructure.models import TripModel
from brokerage.infrastructure.repositories import (
    CompanyRepository,
    DriverRepository,
    TripRepository,
)
from brokerage.services.notifications import NotificationSink, notify_safely
from brokerage.services.ratings import RatingRecorder, validate_rating

logger = logging.getLogger(__name__)

REQUIRED_TRIP_FIELDS = frozenset(
    {
        "pickup_location",
        "destination",
        "trip_date",
        "departure_time",
        "passenger_count",
        "vehicle_capacity",
    }
)


@dataclass
class TripDraft:
    pickup_location: str
    destination: str
    trip_date: date
    departure_time: time
    passenger_count: int = 1
    vehicle_capacity: int = 4
    company_price: Optional[Decimal] = None
    driver_price: Optional[Decimal] = None
    visa_number: Optional[str] = None

    def validate(self) -> None:
        missing = [
            name
            for name in ("pickup_location", "destination", "trip_date", "departure_time")
            if not getattr(self, name)
        ]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}", {"missing": missing}
            )
        if self.passenger_count < 1:
            raise ValidationError("passenger_count must be at least 1")
        if self.vehicle_capacity < 1:
            raise ValidationError("vehicle_capacity must be at least 1")


def _require_company(actor: Actor) -> None:
    if not actor.is_company:
        raise Forbidden("Only companies can manage trips")


def _require_driver(actor: Actor) -> None:
    if not actor.is_driver:
        raise Forbidden("Only drivers can perform this action")


def _wall_clock(value: datetime) -> datetime:
    # availability is stored as naive local time, like trip date + time
    return value.replace(tzinfo=None) if value.tzinfo is not None else value


class TripService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: NotificationSink,
        ratings: Optional[RatingRecorder] = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.ratings = ratings or RatingRecorder(session_factory)

    # ── Reads ────────────────────────────────────────────────────────

    async def get_trip(self, trip_id: int) -> TripModel:
        async with self.session_factory() as session:
            trip = await TripRepository(session).get_by_id(trip_id)
        if trip is None:
            raise NotFound("Trip", trip_id)
        return trip

    async def list_company_trips(
        self, actor: Actor, status: Optional[str] = None
    ) -> list[TripModel]:
        _require_company(actor)
        if status is None:
            statuses = None
        elif status == "active":
            statuses = ACTIVE_STATUSES
        else:
            try:
                statuses = {TripStatus(status)}
            except ValueError:
                raise ValidationError(f"Unknown trip status: {status}") from None
        async with self.session_factory() as session:
            return await TripRepository(session).list_by_company(actor.id, statuses)

    # ── Company lifecycle ────────────────────────────────────────────

    async def create_trip(self, actor: Actor, draft: TripDraft) -> TripModel:
        _require_company(actor)
        draft.validate()

        async with self.session_factory() as session, session.begin():
            if await CompanyRepository(session).get_by_id(actor.id) is None:
                raise NotFound("Company", actor.id)
            repo = TripRepository(session)
            if draft.visa_number and await repo.find_by_reference(
                actor.id, draft.visa_number
            ):
                raise Conflict(
                    "A trip with this visa number already exists for your company",
                    {"visa_number": draft.visa_number},
                )
            trip = TripModel(
                company_id=actor.id,
                pickup_location=draft.pickup_location.strip(),
                destination=draft.destination.strip(),
                trip_date=draft.trip_date,
                departure_time=draft.departure_time,
                passenger_count=draft.passenger_count,
                vehicle_capacity=draft.vehicle_capacity,
                company_price=draft.company_price,
                driver_price=draft.driver_price,
                visa_number=draft.visa_number,
                status=TripStatus.PENDING,
            )
            try:
                await repo.create(trip)
            except IntegrityError as exc:
                raise Conflict(
                    "A trip with this visa number already exists for your company",
                    {"visa_number": draft.visa_number},
                ) from exc

        logger.info("Company %s created trip %s", actor.id, trip.id)
        return trip

    async def update_trip(
        self, trip_id: int, actor: Actor, changes: dict[str, Any]
    ) -> TripModel:
        _require_company(actor)
        if {"status", "driver_id"} & set(changes):
            raise ValidationError(
                "Status and driver are changed through the assignment workflow"
            )
        if not changes:
            raise ValidationError("No fields to update")
        cleared = sorted(k for k in REQUIRED_TRIP_FIELDS if k in changes and changes[k] is None)
        if cleared:
            raise ValidationError(
                f"Fields cannot be cleared: {', '.join(cleared)}", {"fields": cleared}
            )

        async with self.session_factory() as session, session.begin():
            repo = TripRepository(session)
            trip = await self._owned_trip(repo, trip_id, actor)
            visa_number = changes.get("visa_number")
            if visa_number and visa_number != trip.visa_number:
                if await repo.find_by_reference(actor.id, visa_number):
                    raise Conflict(
                        "A trip with this visa number already exists for your company",
                        {"visa_number": visa_number},
                    )
            try:
                updated = await repo.update_fields(trip_id, changes)
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
            if not updated:
                raise InvalidState(
                    f"Only pending trips can be edited (status: {TripStatus(trip.status).value})"
                )
            await session.refresh(trip)

        logger.info("Company %s updated trip %s: %s", actor.id, trip_id, sorted(changes))
        return trip

    async def cancel_trip(self, trip_id: int, actor: Actor) -> TripModel:
        _require_company(actor)
        async with self.session_factory() as session, session.begin():
            repo = TripRepository(session)
            trip = await self._owned_trip(repo, trip_id, actor)
            ensure_transition(trip.status, TripStatus.CANCELLED)
            if not await repo.set_status(
                trip_id, TripStatus.PENDING, TripStatus.CANCELLED
            ):
                raise Conflict("Trip changed while cancelling; reload and retry")
            await session.refresh(trip)

        logger.info("Company %s cancelled trip %s", actor.id, trip_id)
        return trip

    async def delete_trip(self, trip_id: int, actor: Actor) -> None:
        _require_company(actor)
        async with self.session_factory() as session, session.begin():
            repo = TripRepository(session)
            trip = await self._owned_trip(repo, trip_id, actor)
            if not await repo.delete_if_pending(trip_id, actor.id):
                raise InvalidState(
                    f"Only pending trips can be deleted (status: {TripStatus(trip.status).value})"
                )
        logger.info("Company %s deleted trip %s", actor.id, trip_id)

    async def rate_driver(
        self, trip_id: int, actor: Actor, rating: int, comment: Optional[str] = None
    ) -> None:
        _require_company(actor)
        validate_rating(rating)
        async with self.session_factory() as session:
            repo = TripRepository(session)
            trip = await self._owned_trip(repo, trip_id, actor)
            if trip.status != TripStatus.COMPLETED:
                raise InvalidState("Only completed trips can be rated")
            driver = await DriverRepository(session).get_by_id(trip.driver_id)

        await self.ratings.rate_driver(
            trip_id=trip_id,
            company_id=actor.id,
            driver_id=trip.driver_id,
            rating=rating,
            comment=comment,
        )
        if driver is not None:
            await notify_safely(
                self.notifier,
                [
                    Notification(
                        driver.user_id,
                        "New Rating",
                        f"You have received a new rating of {rating} for a trip.",
                    )
                ],
            )

    # ── Driver availability ──────────────────────────────────────────

    async def update_availability(
        self,
        actor: Actor,
        *,
        current_location: str,
        available_from: datetime,
        available_to: datetime,
        vehicle_capacity: Optional[int] = None,
    ) -> None:
        _require_driver(actor)
        if not current_location or not current_location.strip():
            raise ValidationError("current_location is required")
        available_from = _wall_clock(available_from)
        available_to = _wall_clock(available_to)
        if available_from > available_to:
            raise ValidationError("available_from must not be after available_to")
        if vehicle_capacity is not None and vehicle_capacity < 1:
            raise ValidationError("vehicle_capacity must be at least 1")

        async with self.session_factory() as session, session.begin():
            updated = await DriverRepository(session).update_availability(
                actor.id,
                current_location=current_location.strip(),
                available_from=available_from,
                available_to=available_to,
                vehicle_capacity=vehicle_capacity,
            )
            if not updated:
                raise NotFound("Driver", actor.id)

    # ── Helpers ──────────────────────────────────────────────────────

    @staticmethod
    async def _owned_trip(repo: TripRepository, trip_id: int, actor: Actor) -> TripModel:
        trip = await repo.get_by_id(trip_id)
        if trip is None:
            raise NotFound("Trip", trip_id)
        if trip.company_id != actor.id:
            raise Forbidden("Not authorized to modify this trip")
        return trip
