"""Initial schema: parties, trips, trip requests, ratings and notifications.

Revision ID: 001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


# Created explicitly so ratings can use party_type twice
user_role = postgresql.ENUM(
    "admin", "company", "driver", name="user_role", create_type=False
)
party_type = postgresql.ENUM("company", "driver", name="party_type", create_type=False)
trip_status = postgresql.ENUM(
    "pending",
    "assigned",
    "in_progress",
    "completed",
    "cancelled",
    name="trip_status",
    create_type=False,
)
request_direction = postgresql.ENUM(
    "driver_to_company",
    "company_to_driver",
    "reassignment_approval",
    name="request_direction",
    create_type=False,
)
request_status = postgresql.ENUM(
    "pending", "accepted", "rejected", name="request_status", create_type=False
)

ENUMS = (user_role, party_type, trip_status, request_direction, request_status)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum in ENUMS:
        enum.create(bind, checkfirst=True)

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(80), unique=True, nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column(
            "is_approved", sa.Boolean, server_default=sa.false(), nullable=False
        ),
        _created_at(),
    )

    # ── companies ─────────────────────────────────────────────────────
    op.create_table(
        "companies",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("company_name", sa.String(200), nullable=False),
        sa.Column("rating", sa.Float, server_default="0", nullable=False),
        sa.Column("rating_count", sa.Integer, server_default="0", nullable=False),
        _created_at(),
    )

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("first_name", sa.String(80), nullable=False),
        sa.Column("last_name", sa.String(80), nullable=False),
        sa.Column("vehicle_capacity", sa.Integer, server_default="4", nullable=False),
        sa.Column("current_location", sa.String(255), nullable=True),
        sa.Column("available_from", sa.DateTime, nullable=True),
        sa.Column("available_to", sa.DateTime, nullable=True),
        sa.Column("rating", sa.Float, server_default="0", nullable=False),
        sa.Column("rating_count", sa.Integer, server_default="0", nullable=False),
        _created_at(),
    )

    # ── trips ─────────────────────────────────────────────────────────
    op.create_table(
        "trips",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "company_id", sa.Integer, sa.ForeignKey("companies.id"), nullable=False
        ),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("pickup_location", sa.String(255), nullable=False),
        sa.Column("destination", sa.String(255), nullable=False),
        sa.Column("trip_date", sa.Date, nullable=False),
        sa.Column("departure_time", sa.Time, nullable=False),
        sa.Column("passenger_count", sa.Integer, server_default="1", nullable=False),
        sa.Column("vehicle_capacity", sa.Integer, server_default="4", nullable=False),
        sa.Column("company_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("driver_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("visa_number", sa.String(64), nullable=True),
        sa.Column("status", trip_status, server_default="pending", nullable=False),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("company_id", "visa_number", name="uq_trips_company_visa"),
    )
    op.create_index("idx_trips_status", "trips", ["status"])
    op.create_index("idx_trips_driver", "trips", ["driver_id"])
    op.create_index("idx_trips_company", "trips", ["company_id"])

    # ── trip_requests ─────────────────────────────────────────────────
    op.create_table(
        "trip_requests",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "trip_id",
            sa.Integer,
            sa.ForeignKey("trips.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=False
        ),
        sa.Column("direction", request_direction, nullable=False),
        sa.Column("status", request_status, server_default="pending", nullable=False),
        _created_at(),
        _updated_at(),
    )
    op.create_index(
        "idx_trip_requests_trip_status", "trip_requests", ["trip_id", "status"]
    )
    op.create_index("idx_trip_requests_driver", "trip_requests", ["driver_id"])
    # at most one pending request per (trip, driver) pair
    op.create_index(
        "uq_trip_requests_pending_pair",
        "trip_requests",
        ["trip_id", "driver_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    # ── ratings ───────────────────────────────────────────────────────
    op.create_table(
        "ratings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("trip_id", sa.Integer, sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("rater_id", sa.Integer, nullable=False),
        sa.Column("rater_type", party_type, nullable=False),
        sa.Column("rated_id", sa.Integer, nullable=False),
        sa.Column("rated_type", party_type, nullable=False),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("comment", sa.Text, nullable=True),
        _created_at(),
    )
    op.create_index("idx_ratings_rated", "ratings", ["rated_type", "rated_id"])

    # ── notifications ─────────────────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("is_read", sa.Boolean, server_default=sa.false(), nullable=False),
        _created_at(),
    )
    op.create_index("idx_notifications_user", "notifications", ["user_id"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("ratings")
    op.drop_table("trip_requests")
    op.drop_table("trips")
    op.drop_table("drivers")
    op.drop_table("companies")
    op.drop_table("users")
    bind = op.get_bind()
    for enum in reversed(ENUMS):
        enum.drop(bind, checkfirst=True)
