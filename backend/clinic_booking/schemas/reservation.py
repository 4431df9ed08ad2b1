# backend/clinic_booking/schemas/reservation.py
from datetime import date, datetime, time
from typing import Literal

from pydantic import Field

from ._strict_base import StrictModel, StrictRequestModel


class ReservationCreate(StrictRequestModel):
    resource_key: str = Field(..., min_length=1, max_length=128, description="Practitioner/service at a facility")
    booking_date: date = Field(..., description="Clinic-local appointment date")
    time_slot: time = Field(..., description="Clinic-local slot start")


class ReservationResponse(StrictModel):
    reservation_id: str
    resource_key: str
    booking_date: date
    time_slot: time
    expires_at: datetime


class ReservationDeniedResponse(StrictModel):
    reason: Literal["reserved", "booked"]
    resource_key: str
    booking_date: date
    time_slot: time


class ReservationReleaseResponse(StrictModel):
    reservation_id: str
    released: bool
