# backend/clinic_booking/models/__init__.py
"""
SQLAlchemy models for the clinic booking core.

Importing this package registers every table on ``Base.metadata``.
"""

from .booking import (
    ACTIVE_BOOKING_STATUSES,
    TERMINAL_BOOKING_STATUSES,
    Booking,
    BookingStatus,
    CheckinStatus,
)
from .booking_status_event import BookingStatusEvent
from .slot_reservation import SlotReservation

__all__ = [
    "ACTIVE_BOOKING_STATUSES",
    "TERMINAL_BOOKING_STATUSES",
    "Booking",
    "BookingStatus",
    "BookingStatusEvent",
    "CheckinStatus",
    "SlotReservation",
]
