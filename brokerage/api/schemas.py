"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from brokerage.domain.enums import RequestDirection, RequestStatus, TripStatus


# ── Requests ──────────────────────────────────────────────────────────


class TripCreateRequest(BaseModel):
    pickup_location: str = Field(..., min_length=1, max_length=255)
    destination: str = Field(..., min_length=1, max_length=255)
    trip_date: date
    departure_time: time
    passenger_count: int = Field(1, ge=1)
    vehicle_capacity: int = Field(4, ge=1)
    company_price: Optional[Decimal] = Field(None, ge=0)
    driver_price: Optional[Decimal] = Field(None, ge=0)
    visa_number: Optional[str] = Field(
        None,
        max_length=64,
        description="Company reference number; unique per company.",
    )


class TripUpdateRequest(BaseModel):
    pickup_location: Optional[str] = Field(None, min_length=1, max_length=255)
    destination: Optional[str] = Field(None, min_length=1, max_length=255)
    trip_date: Optional[date] = None
    departure_time: Optional[time] = None
    passenger_count: Optional[int] = Field(None, ge=1)
    vehicle_capacity: Optional[int] = Field(None, ge=1)
    company_price: Optional[Decimal] = Field(None, ge=0)
    driver_price: Optional[Decimal] = Field(None, ge=0)
    visa_number: Optional[str] = Field(None, max_length=64)


class TripRequestCreate(BaseModel):
    driver_id: Optional[int] = Field(
        None, description="Target driver; required when a company sends the request."
    )


class AssignDriverRequest(BaseModel):
    driver_id: int


class CompleteTripRequest(BaseModel):
    rating: Optional[int] = Field(None, description="1-5 rating of the company.")
    comment: Optional[str] = None


class RateDriverRequest(BaseModel):
    rating: int
    comment: Optional[str] = None


class ReassignmentAnswer(BaseModel):
    accept: bool


class AvailabilityUpdate(BaseModel):
    current_location: str = Field(..., min_length=1, max_length=255)
    available_from: datetime
    available_to: datetime
    vehicle_capacity: Optional[int] = Field(None, ge=1)


# ── Responses ─────────────────────────────────────────────────────────


class TripResponse(BaseModel):
    id: int
    company_id: int
    driver_id: Optional[int] = None
    pickup_location: str
    destination: str
    trip_date: date
    departure_time: time
    passenger_count: int
    vehicle_capacity: int
    company_price: Optional[float] = None
    driver_price: Optional[float] = None
    visa_number: Optional[str] = None
    status: TripStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TripRequestResponse(BaseModel):
    id: int
    trip_id: int
    driver_id: int
    direction: RequestDirection
    status: RequestStatus
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DriverResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    vehicle_capacity: int
    current_location: Optional[str] = None
    available_from: Optional[datetime] = None
    available_to: Optional[datetime] = None
    rating: float = 0.0

    model_config = {"from_attributes": True}


class CompletionResponse(BaseModel):
    trip: TripResponse
    rating_saved: bool


class NotificationResponse(BaseModel):
    id: int
    title: str
    message: str
    is_read: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TripCountResponse(BaseModel):
    count: int


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    error_code: str
    message: str
    details: dict[str, Any] = {}
