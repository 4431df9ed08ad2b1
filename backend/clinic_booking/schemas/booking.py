# backend/clinic_booking/schemas/booking.py
"""
Booking schemas.

Responses never carry token material except the dedicated token
responses, which exist so the subject can redisplay the check-in code.
"""

from datetime import date, datetime, time
from typing import List, Optional

from pydantic import Field

from ..models.booking import Booking
from ._strict_base import StrictModel, StrictRequestModel


class BookingCreate(StrictRequestModel):
    resource_key: str = Field(..., min_length=1, max_length=128)
    booking_date: date = Field(..., description="Clinic-local appointment date")
    time_slot: time = Field(..., description="Clinic-local slot start")
    reservation_id: Optional[str] = Field(
        None, description="Reservation obtained earlier for this slot, if any"
    )


class BookingCancel(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=500)


class BookingResponse(StrictModel):
    id: str
    subject_id: str
    resource_key: str
    booking_date: date
    time_slot: time
    booking_status: str
    checkin_status: str
    created_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    checkin_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    checked_in_by: Optional[str] = None

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls(
            id=str(booking.id),
            subject_id=str(booking.subject_id),
            resource_key=str(booking.resource_key),
            booking_date=booking.booking_date,
            time_slot=booking.time_slot,
            booking_status=str(booking.booking_status),
            checkin_status=str(booking.checkin_status),
            created_at=booking.created_at,
            confirmed_at=booking.confirmed_at,
            cancelled_at=booking.cancelled_at,
            checkin_at=booking.checkin_at,
            completed_at=booking.completed_at,
            cancellation_reason=booking.cancellation_reason,
            checked_in_by=booking.checked_in_by,
        )


class BookingCreateResponse(StrictModel):
    booking: BookingResponse
    token: str


class BookingTokenResponse(StrictModel):
    booking_id: str
    token: str


class AlternativeSlotResponse(StrictModel):
    resource_key: str
    booking_date: date
    time_slot: time


class SlotConflictBody(StrictModel):
    """Extra members of the 409 problem document."""

    scope: str
    alternatives: List[AlternativeSlotResponse]
