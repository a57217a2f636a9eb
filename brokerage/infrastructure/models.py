"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``users``          -- login accounts; ``is_approved`` is set by an admin
* ``companies``      -- trip owners
* ``drivers``        -- vehicles, availability window and current location
* ``trips``          -- transport jobs with their status lifecycle
* ``trip_requests``  -- directional proposals linking a driver to a trip
* ``ratings``        -- cross-ratings recorded on completion
* ``notifications``  -- messages for the notification inbox

Indexes
-------
* Partial **unique** index on ``trip_requests(trip_id, driver_id)`` where
  the request is pending.
* **B-Tree** on ``trips.status``, ``trips.driver_id``, ``trips.company_id``
  and on ``trip_requests(trip_id, status)`` / ``trip_requests.driver_id``
  for the matcher and the sibling-request cleanup.
"""

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    func,
    text,
)

from .database import Base
from brokerage.domain.enums import (
    PartyType,
    RequestDirection,
    RequestStatus,
    TripStatus,
    UserRole,
)


def _enum(enum_cls, name: str) -> Enum:
    # store the lower-case values, not the member names
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


_party_type = _enum(PartyType, "party_type")


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(80), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(_enum(UserRole, "user_role"), nullable=False)
    is_approved = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CompanyModel(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    company_name = Column(String(200), nullable=False)
    rating = Column(Float, default=0.0, nullable=False)
    rating_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    first_name = Column(String(80), nullable=False)
    last_name = Column(String(80), nullable=False)
    vehicle_capacity = Column(Integer, default=4, nullable=False)
    current_location = Column(String(255), nullable=True)
    available_from = Column(DateTime, nullable=True)
    available_to = Column(DateTime, nullable=True)
    rating = Column(Float, default=0.0, nullable=False)
    rating_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)

    pickup_location = Column(String(255), nullable=False)
    destination = Column(String(255), nullable=False)
    trip_date = Column(Date, nullable=False)
    departure_time = Column(Time, nullable=False)
    passenger_count = Column(Integer, default=1, nullable=False)
    vehicle_capacity = Column(Integer, default=4, nullable=False)
    company_price = Column(Numeric(10, 2), nullable=True)
    driver_price = Column(Numeric(10, 2), nullable=True)
    visa_number = Column(String(64), nullable=True)

    status = Column(
        _enum(TripStatus, "trip_status"), default=TripStatus.PENDING, nullable=False
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("company_id", "visa_number", name="uq_trips_company_visa"),
        Index("idx_trips_status", "status"),
        Index("idx_trips_driver", "driver_id"),
        Index("idx_trips_company", "company_id"),
    )


class TripRequestModel(Base):
    __tablename__ = "trip_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    direction = Column(_enum(RequestDirection, "request_direction"), nullable=False)
    status = Column(
        _enum(RequestStatus, "request_status"),
        default=RequestStatus.PENDING,
        nullable=False,
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_trip_requests_trip_status", "trip_id", "status"),
        Index("idx_trip_requests_driver", "driver_id"),
        # at most one pending request per (trip, driver) pair
        Index(
            "uq_trip_requests_pending_pair",
            "trip_id",
            "driver_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )


class RatingModel(Base):
    __tablename__ = "ratings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False)
    rater_id = Column(Integer, nullable=False)
    rater_type = Column(_party_type, nullable=False)
    rated_id = Column(Integer, nullable=False)
    rated_type = Column(_party_type, nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_ratings_rated", "rated_type", "rated_id"),)


class NotificationModel(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_notifications_user", "user_id"),)
