"""
Shared test fixtures.

Every test gets its own SQLite file database (via aiosqlite) built from the
production models, so tests run without Docker / PostgreSQL / Redis.
SQLite ignores ``FOR UPDATE``; the conditional writes still carry the
correctness guarantees under test.
"""

import itertools
from datetime import date, datetime, time
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from brokerage.api.middleware import limiter
from brokerage.domain.enums import (
    RequestDirection,
    RequestStatus,
    TripStatus,
    UserRole,
)
from brokerage.infrastructure.database import (
    build_engine,
    build_session_factory,
    create_schema,
)
from brokerage.infrastructure.models import (
    CompanyModel,
    DriverModel,
    TripModel,
    TripRequestModel,
    UserModel,
)

TRIP_DAY = date(2030, 5, 1)
SHIFT_START = datetime(2030, 5, 1, 6, 0)
SHIFT_END = datetime(2030, 5, 1, 22, 0)


class RecordingSink:
    """Notification sink that keeps what it was given."""

    def __init__(self):
        self.sent = []

    async def send(self, notification) -> None:
        self.sent.append(notification)

    @property
    def titles(self) -> list[str]:
        return [n.title for n in self.sent]


class Seeder:
    """Inserts parties, trips and requests straight through the ORM."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._seq = itertools.count(1)

    async def _add(self, *objects):
        async with self.session_factory() as session, session.begin():
            session.add_all(objects)
            await session.flush()
            for obj in objects:
                await session.refresh(obj)
        return objects[-1]

    async def _user(self, role: UserRole, approved: bool) -> UserModel:
        n = next(self._seq)
        return await self._add(
            UserModel(
                username=f"{role.value}{n}",
                email=f"{role.value}{n}@example.com",
                role=role,
                is_approved=approved,
            )
        )

    async def company(self, name: str = "Acme Logistics") -> CompanyModel:
        user = await self._user(UserRole.COMPANY, approved=True)
        return await self._add(CompanyModel(user_id=user.id, company_name=name))

    async def driver(
        self,
        *,
        location: Optional[str] = "Tel Aviv",
        capacity: int = 4,
        available_from: Optional[datetime] = SHIFT_START,
        available_to: Optional[datetime] = SHIFT_END,
        approved: bool = True,
        first_name: str = "Dana",
    ) -> DriverModel:
        user = await self._user(UserRole.DRIVER, approved=approved)
        return await self._add(
            DriverModel(
                user_id=user.id,
                first_name=first_name,
                last_name="Levi",
                vehicle_capacity=capacity,
                current_location=location,
                available_from=available_from,
                available_to=available_to,
            )
        )

    async def trip(
        self,
        company: CompanyModel,
        *,
        pickup: str = "Tel Aviv, Center",
        destination: str = "Haifa Port",
        trip_date: date = TRIP_DAY,
        departure: time = time(10, 0),
        capacity: int = 4,
        status: TripStatus = TripStatus.PENDING,
        driver: Optional[DriverModel] = None,
        visa_number: Optional[str] = None,
    ) -> TripModel:
        return await self._add(
            TripModel(
                company_id=company.id,
                driver_id=driver.id if driver else None,
                pickup_location=pickup,
                destination=destination,
                trip_date=trip_date,
                departure_time=departure,
                vehicle_capacity=capacity,
                status=status,
                visa_number=visa_number,
            )
        )

    async def request(
        self,
        trip: TripModel,
        driver: DriverModel,
        direction: RequestDirection = RequestDirection.DRIVER_TO_COMPANY,
        status: RequestStatus = RequestStatus.PENDING,
    ) -> TripRequestModel:
        return await self._add(
            TripRequestModel(
                trip_id=trip.id, driver_id=driver.id, direction=direction, status=status
            )
        )

    async def get(self, model, pk):
        async with self.session_factory() as session:
            return await session.get(model, pk)


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _rate_limit_off():
    enabled = limiter.enabled
    limiter.enabled = False
    yield
    limiter.enabled = enabled


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh schema in a throw-away SQLite file."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'brokerage.db'}")
    await create_schema(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
