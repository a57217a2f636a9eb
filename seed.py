"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations, against an empty database:
    alembic upgrade head
    python seed.py

Creates:
  - 3 companies and 6 drivers (one driver still awaiting approval)
  - 6 trips (mix of pending, assigned, in_progress and completed)
  - 3 trip requests in both directions on the pending trips
"""

import asyncio
from datetime import date, datetime, time, timedelta

from sqlalchemy import func, select

from brokerage.domain.enums import (
    RequestDirection,
    RequestStatus,
    TripStatus,
    UserRole,
)
from brokerage.infrastructure.database import build_engine, build_session_factory
from brokerage.infrastructure.models import (
    CompanyModel,
    DriverModel,
    TripModel,
    TripRequestModel,
    UserModel,
)

COMPANIES = ["Galil Tours", "Coastline Transfers", "Negev Shuttle Co"]

DRIVERS = [
    {"first": "Noa", "last": "Cohen", "location": "Tel Aviv", "capacity": 4, "approved": True},
    {"first": "Yossi", "last": "Mizrahi", "location": "Tel Aviv", "capacity": 8, "approved": True},
    {"first": "Maya", "last": "Peretz", "location": "Haifa", "capacity": 4, "approved": True},
    {"first": "Omer", "last": "Biton", "location": "Jerusalem", "capacity": 16, "approved": True},
    {"first": "Tamar", "last": "Friedman", "location": "Ben Gurion Airport", "capacity": 8, "approved": True},
    {"first": "Eli", "last": "Katz", "location": "Tel Aviv", "capacity": 4, "approved": False},
]


async def seed(session_factory, day: date = None) -> bool:
    """Insert the sample data; returns False if the database is not empty."""
    day = day or date.today() + timedelta(days=1)
    shift_start = datetime.combine(day, time(6, 0))
    shift_end = datetime.combine(day, time(22, 0))

    async with session_factory() as session, session.begin():
        # Check if already seeded
        result = await session.execute(select(func.count()).select_from(UserModel))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return False

        # ── Companies ─────────────────────────────────────────────────
        companies = []
        for n, name in enumerate(COMPANIES, start=1):
            user = UserModel(
                username=f"company{n}",
                email=f"ops{n}@example.com",
                role=UserRole.COMPANY,
                is_approved=True,
            )
            session.add(user)
            await session.flush()
            company = CompanyModel(user_id=user.id, company_name=name)
            session.add(company)
            companies.append(company)
        await session.flush()
        print(f"  Created {len(companies)} companies")

        # ── Drivers ───────────────────────────────────────────────────
        drivers = []
        for n, d in enumerate(DRIVERS, start=1):
            user = UserModel(
                username=f"driver{n}",
                email=f"driver{n}@example.com",
                role=UserRole.DRIVER,
                is_approved=d["approved"],
            )
            session.add(user)
            await session.flush()
            driver = DriverModel(
                user_id=user.id,
                first_name=d["first"],
                last_name=d["last"],
                vehicle_capacity=d["capacity"],
                current_location=d["location"],
                available_from=shift_start,
                available_to=shift_end,
            )
            session.add(driver)
            drivers.append(driver)
        await session.flush()
        print(f"  Created {len(drivers)} drivers")

        # ── Trips ─────────────────────────────────────────────────────
        trips_data = [
            # open work
            {"company": 0, "pickup": "Tel Aviv, Azrieli Center", "destination": "Jerusalem, Old City",
             "departure": time(9, 0), "capacity": 4, "status": TripStatus.PENDING, "driver": None},
            {"company": 1, "pickup": "Haifa, Bat Galim", "destination": "Akko",
             "departure": time(11, 0), "capacity": 4, "status": TripStatus.PENDING, "driver": None},
            {"company": 2, "pickup": "Jerusalem Central Station", "destination": "Eilat",
             "departure": time(7, 30), "capacity": 12, "status": TripStatus.PENDING, "driver": None},
            # already bound
            {"company": 0, "pickup": "Ben Gurion Airport, Terminal 3", "destination": "Herzliya",
             "departure": time(14, 0), "capacity": 6, "status": TripStatus.ASSIGNED, "driver": 4},
            {"company": 1, "pickup": "Tel Aviv Port", "destination": "Caesarea",
             "departure": time(8, 0), "capacity": 8, "status": TripStatus.IN_PROGRESS, "driver": 1},
            {"company": 2, "pickup": "Haifa University", "destination": "Nazareth",
             "departure": time(6, 30), "capacity": 4, "status": TripStatus.COMPLETED, "driver": 2},
        ]
        trips = []
        for n, t in enumerate(trips_data, start=1):
            trip = TripModel(
                company_id=companies[t["company"]].id,
                driver_id=drivers[t["driver"]].id if t["driver"] is not None else None,
                pickup_location=t["pickup"],
                destination=t["destination"],
                trip_date=day,
                departure_time=t["departure"],
                vehicle_capacity=t["capacity"],
                passenger_count=min(t["capacity"], 3),
                visa_number=f"SEED-{n:03d}",
                status=t["status"],
            )
            session.add(trip)
            trips.append(trip)
        await session.flush()
        print(f"  Created {len(trips)} trips")

        # ── Trip requests ─────────────────────────────────────────────
        session.add_all(
            [
                TripRequestModel(
                    trip_id=trips[0].id,
                    driver_id=drivers[0].id,
                    direction=RequestDirection.DRIVER_TO_COMPANY,
                    status=RequestStatus.PENDING,
                ),
                TripRequestModel(
                    trip_id=trips[0].id,
                    driver_id=drivers[1].id,
                    direction=RequestDirection.COMPANY_TO_DRIVER,
                    status=RequestStatus.PENDING,
                ),
                TripRequestModel(
                    trip_id=trips[1].id,
                    driver_id=drivers[2].id,
                    direction=RequestDirection.DRIVER_TO_COMPANY,
                    status=RequestStatus.PENDING,
                ),
            ]
        )
        print("  Created 3 trip requests")

    print("Seeding complete.")
    return True


async def main():
    engine = build_engine()
    try:
        await seed(build_session_factory(engine))
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
