"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

Every status change is a *conditional* write: the WHERE clause encodes the
expected prior state and the method reports whether a row was affected.
Callers treat ``False`` as "someone else got there first" and never rely on
an earlier SELECT for correctness.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    CompanyModel,
    DriverModel,
    NotificationModel,
    RatingModel,
    TripModel,
    TripRequestModel,
    UserModel,
)
from brokerage.domain.entities import departure_of
from brokerage.domain.enums import (
    OPEN_REQUEST_STATUSES,
    PartyType,
    RequestDirection,
    RequestStatus,
    SCHEDULED_STATUSES,
    TripStatus,
    UserRole,
)

# Columns a company may change through ``update_fields``
EDITABLE_TRIP_FIELDS = frozenset(
    {
        "pickup_location",
        "destination",
        "trip_date",
        "departure_time",
        "passenger_count",
        "vehicle_capacity",
        "company_price",
        "driver_price",
        "visa_number",
    }
)


class TripRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, trip: TripModel) -> TripModel:
        self.session.add(trip)
        await self.session.flush()
        await self.session.refresh(trip)
        return trip

    async def get_by_id(self, trip_id: int) -> Optional[TripModel]:
        return await self.session.get(TripModel, trip_id)

    async def get_for_update(self, trip_id: int) -> Optional[TripModel]:
        """SELECT ... FOR UPDATE so racing writers queue behind us."""
        result = await self.session.execute(
            select(TripModel)
            .where(TripModel.id == trip_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_by_reference(
        self, company_id: int, visa_number: str
    ) -> Optional[TripModel]:
        result = await self.session.execute(
            select(TripModel).where(
                TripModel.company_id == company_id,
                TripModel.visa_number == visa_number,
            )
        )
        return result.scalars().first()

    async def list_by_company(
        self, company_id: int, statuses: Optional[Iterable[TripStatus]] = None
    ) -> list[TripModel]:
        query = select(TripModel).where(TripModel.company_id == company_id)
        if statuses is not None:
            query = query.where(TripModel.status.in_(list(statuses)))
        result = await self.session.execute(
            query.order_by(TripModel.created_at.desc(), TripModel.id.desc())
        )
        return list(result.scalars().all())

    async def list_open(self) -> list[TripModel]:
        """Pending trips that nobody drives yet."""
        result = await self.session.execute(
            select(TripModel)
            .where(
                TripModel.status == TripStatus.PENDING,
                TripModel.driver_id.is_(None),
            )
            .order_by(TripModel.trip_date, TripModel.departure_time, TripModel.id)
        )
        return list(result.scalars().all())

    async def scheduled_departures(
        self, driver_ids: Iterable[int], exclude_trip_id: Optional[int] = None
    ) -> dict[int, list[datetime]]:
        """Departures of assigned / in-progress trips, grouped by driver."""
        ids = list(driver_ids)
        if not ids:
            return {}
        query = select(
            TripModel.driver_id, TripModel.trip_date, TripModel.departure_time
        ).where(
            TripModel.driver_id.in_(ids),
            TripModel.status.in_(list(SCHEDULED_STATUSES)),
        )
        if exclude_trip_id is not None:
            query = query.where(TripModel.id != exclude_trip_id)
        result = await self.session.execute(query)

        booked: dict[int, list[datetime]] = defaultdict(list)
        for driver_id, trip_date, departure_time in result.all():
            booked[driver_id].append(departure_of(trip_date, departure_time))
        return dict(booked)

    async def update_fields(
        self,
        trip_id: int,
        changes: dict[str, Any],
        expected_status: TripStatus = TripStatus.PENDING,
    ) -> bool:
        unknown = set(changes) - EDITABLE_TRIP_FIELDS
        if unknown:
            raise ValueError(f"Fields not editable: {sorted(unknown)}")
        if not changes:
            return False
        result = await self.session.execute(
            update(TripModel)
            .where(TripModel.id == trip_id, TripModel.status == expected_status)
            .values(**changes)
        )
        return result.rowcount > 0

    async def set_status(
        self,
        trip_id: int,
        expected: TripStatus,
        new_status: TripStatus,
        *,
        driver_id: Optional[int] = None,
    ) -> bool:
        """Compare-and-set on status (and on the driver when given)."""
        query = update(TripModel).where(
            TripModel.id == trip_id, TripModel.status == expected
        )
        if driver_id is not None:
            query = query.where(TripModel.driver_id == driver_id)
        result = await self.session.execute(query.values(status=new_status))
        return result.rowcount > 0

    async def assign_driver_if_pending(self, trip_id: int, driver_id: int) -> bool:
        result = await self.session.execute(
            update(TripModel)
            .where(
                TripModel.id == trip_id,
                TripModel.status == TripStatus.PENDING,
                TripModel.driver_id.is_(None),
            )
            .values(driver_id=driver_id, status=TripStatus.ASSIGNED)
        )
        return result.rowcount > 0

    async def hold_if_open(self, trip_id: int) -> bool:
        """
        Touch the trip only while it is still pending and unassigned.

        Writing the row takes its lock until commit, so a new request cannot
        slip in behind an assignment that already swept the pending ones.
        """
        result = await self.session.execute(
            update(TripModel)
            .where(
                TripModel.id == trip_id,
                TripModel.status == TripStatus.PENDING,
                TripModel.driver_id.is_(None),
            )
            .values(updated_at=func.now())
        )
        return result.rowcount > 0

    async def unassign_driver(
        self, trip_id: int, driver_id: Optional[int] = None
    ) -> bool:
        """``assigned`` -> ``pending`` and clear the driver."""
        query = update(TripModel).where(
            TripModel.id == trip_id, TripModel.status == TripStatus.ASSIGNED
        )
        if driver_id is not None:
            query = query.where(TripModel.driver_id == driver_id)
        result = await self.session.execute(
            query.values(driver_id=None, status=TripStatus.PENDING)
        )
        return result.rowcount > 0

    async def delete_if_pending(self, trip_id: int, company_id: int) -> bool:
        result = await self.session.execute(
            delete(TripModel).where(
                TripModel.id == trip_id,
                TripModel.company_id == company_id,
                TripModel.status == TripStatus.PENDING,
            )
        )
        if result.rowcount == 0:
            return False
        # no-op where the FK cascade already ran
        await self.session.execute(
            delete(TripRequestModel).where(TripRequestModel.trip_id == trip_id)
        )
        return True


class TripRequestRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        *,
        trip_id: int,
        driver_id: int,
        direction: RequestDirection,
        status: RequestStatus = RequestStatus.PENDING,
    ) -> TripRequestModel:
        request = TripRequestModel(
            trip_id=trip_id, driver_id=driver_id, direction=direction, status=status
        )
        self.session.add(request)
        await self.session.flush()
        await self.session.refresh(request)
        return request

    async def get_by_id(self, request_id: int) -> Optional[TripRequestModel]:
        return await self.session.get(TripRequestModel, request_id)

    async def find_by_trip_and_driver(
        self,
        trip_id: int,
        driver_id: int,
        statuses: Optional[Iterable[RequestStatus]] = None,
        direction: Optional[RequestDirection] = None,
    ) -> Optional[TripRequestModel]:
        """Most recent request between the pair, optionally filtered."""
        query = select(TripRequestModel).where(
            TripRequestModel.trip_id == trip_id,
            TripRequestModel.driver_id == driver_id,
        )
        if statuses is not None:
            query = query.where(TripRequestModel.status.in_(list(statuses)))
        if direction is not None:
            query = query.where(TripRequestModel.direction == direction)
        result = await self.session.execute(
            query.order_by(TripRequestModel.id.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def open_trip_ids_for_driver(self, driver_id: int) -> set[int]:
        result = await self.session.execute(
            select(TripRequestModel.trip_id).where(
                TripRequestModel.driver_id == driver_id,
                TripRequestModel.status.in_(list(OPEN_REQUEST_STATUSES)),
            )
        )
        return set(result.scalars().all())

    async def open_driver_ids_for_trip(self, trip_id: int) -> set[int]:
        result = await self.session.execute(
            select(TripRequestModel.driver_id).where(
                TripRequestModel.trip_id == trip_id,
                TripRequestModel.status.in_(list(OPEN_REQUEST_STATUSES)),
            )
        )
        return set(result.scalars().all())

    async def list_for_trip(
        self,
        trip_id: int,
        excluding_id: Optional[int] = None,
        status: Optional[RequestStatus] = None,
    ) -> list[TripRequestModel]:
        query = select(TripRequestModel).where(TripRequestModel.trip_id == trip_id)
        if excluding_id is not None:
            query = query.where(TripRequestModel.id != excluding_id)
        if status is not None:
            query = query.where(TripRequestModel.status == status)
        result = await self.session.execute(query.order_by(TripRequestModel.id))
        return list(result.scalars().all())

    async def list_for_driver(self, driver_id: int) -> list[TripRequestModel]:
        result = await self.session.execute(
            select(TripRequestModel)
            .where(TripRequestModel.driver_id == driver_id)
            .order_by(TripRequestModel.id.desc())
        )
        return list(result.scalars().all())

    async def list_pending_for_company(
        self, company_id: int, direction: Optional[RequestDirection] = None
    ) -> list[TripRequestModel]:
        query = (
            select(TripRequestModel)
            .join(TripModel, TripModel.id == TripRequestModel.trip_id)
            .where(
                TripModel.company_id == company_id,
                TripRequestModel.status == RequestStatus.PENDING,
            )
        )
        if direction is not None:
            query = query.where(TripRequestModel.direction == direction)
        result = await self.session.execute(query.order_by(TripRequestModel.id.desc()))
        return list(result.scalars().all())

    async def set_status(
        self,
        request_id: int,
        new_status: RequestStatus,
        expected: RequestStatus = RequestStatus.PENDING,
    ) -> bool:
        result = await self.session.execute(
            update(TripRequestModel)
            .where(
                TripRequestModel.id == request_id,
                TripRequestModel.status == expected,
            )
            .values(status=new_status)
        )
        return result.rowcount > 0

    async def reject_pending_for_trip(
        self, trip_id: int, excluding_id: Optional[int] = None
    ) -> int:
        """Move every other pending request of the trip to ``rejected``."""
        query = update(TripRequestModel).where(
            TripRequestModel.trip_id == trip_id,
            TripRequestModel.status == RequestStatus.PENDING,
        )
        if excluding_id is not None:
            query = query.where(TripRequestModel.id != excluding_id)
        result = await self.session.execute(
            query.values(status=RequestStatus.REJECTED)
        )
        return result.rowcount

    async def release_accepted_claims(self, trip_id: int, driver_id: int) -> int:
        """Reject the accepted claim that bound *driver_id* to the trip."""
        result = await self.session.execute(
            update(TripRequestModel)
            .where(
                TripRequestModel.trip_id == trip_id,
                TripRequestModel.driver_id == driver_id,
                TripRequestModel.status == RequestStatus.ACCEPTED,
                TripRequestModel.direction != RequestDirection.REASSIGNMENT_APPROVAL,
            )
            .values(status=RequestStatus.REJECTED)
        )
        return result.rowcount

    async def delete(
        self, request_id: int, expected: Optional[RequestStatus] = RequestStatus.PENDING
    ) -> bool:
        query = delete(TripRequestModel).where(TripRequestModel.id == request_id)
        if expected is not None:
            query = query.where(TripRequestModel.status == expected)
        result = await self.session.execute(query)
        return result.rowcount > 0


class DriverRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, driver_id: int) -> Optional[DriverModel]:
        return await self.session.get(DriverModel, driver_id)

    async def is_approved(self, driver_id: int) -> bool:
        result = await self.session.execute(
            select(UserModel.is_approved)
            .join(DriverModel, DriverModel.user_id == UserModel.id)
            .where(DriverModel.id == driver_id)
        )
        return bool(result.scalar())

    async def list_matchable(self) -> list[DriverModel]:
        """Approved drivers that have published an availability window."""
        result = await self.session.execute(
            select(DriverModel)
            .join(UserModel, DriverModel.user_id == UserModel.id)
            .where(
                UserModel.is_approved.is_(True),
                UserModel.role == UserRole.DRIVER,
                DriverModel.current_location.is_not(None),
                DriverModel.available_from.is_not(None),
                DriverModel.available_to.is_not(None),
            )
            .order_by(DriverModel.id)
        )
        return list(result.scalars().all())

    async def update_availability(
        self,
        driver_id: int,
        *,
        current_location: str,
        available_from: datetime,
        available_to: datetime,
        vehicle_capacity: Optional[int] = None,
    ) -> bool:
        values: dict[str, Any] = {
            "current_location": current_location,
            "available_from": available_from,
            "available_to": available_to,
        }
        if vehicle_capacity is not None:
            values["vehicle_capacity"] = vehicle_capacity
        result = await self.session.execute(
            update(DriverModel).where(DriverModel.id == driver_id).values(**values)
        )
        return result.rowcount > 0


class CompanyRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, company_id: int) -> Optional[CompanyModel]:
        return await self.session.get(CompanyModel, company_id)


class RatingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, rating: RatingModel) -> RatingModel:
        self.session.add(rating)
        await self.session.flush()
        return rating

    async def summary_for(self, rated_type: PartyType, rated_id: int) -> tuple[float, int]:
        """(average, count) of the ratings received by one party."""
        result = await self.session.execute(
            select(func.avg(RatingModel.rating), func.count(RatingModel.id)).where(
                RatingModel.rated_type == rated_type,
                RatingModel.rated_id == rated_id,
            )
        )
        average, count = result.one()
        return float(average or 0.0), int(count or 0)


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, *, user_id: int, title: str, message: str) -> NotificationModel:
        notification = NotificationModel(user_id=user_id, title=title, message=message)
        self.session.add(notification)
        await self.session.flush()
        await self.session.refresh(notification)
        return notification

    async def list_for_user(self, user_id: int) -> list[NotificationModel]:
        result = await self.session.execute(
            select(NotificationModel)
            .where(NotificationModel.user_id == user_id)
            .order_by(NotificationModel.id.desc())
        )
        return list(result.scalars().all())

