# backend/clinic_booking/models/booking.py
"""
Booking model for the clinic booking core.

A booking is the durable commitment of one subject (patient) to one slot:
a (resource, date, time) unit where the resource key identifies the
practitioner/service at a facility. Bookings carry two independent status
axes, ``booking_status`` and ``checkin_status``, and are never deleted.

Slot uniqueness: at most one booking per slot may be pending or confirmed.
The partial unique index ``uq_bookings_active_slot`` makes the store enforce
this, so concurrent writers degrade to an integrity error instead of a
double booking.
"""

from datetime import date, datetime, time
from enum import Enum
import logging
from typing import Any, Optional, cast

from sqlalchemy import CheckConstraint, Column, Date, DateTime, Index, String, Text, Time
from sqlalchemy.sql import func

from ..core.timezone_utils import appointment_start_utc
from ..core.ulid_helper import generate_ulid
from ..database import Base

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "pending"  # Awaiting confirmation
    CONFIRMED = "confirmed"
    CANCELLED_BY_SUBJECT = "cancelled_by_subject"
    NO_SHOW = "no_show"  # Terminal, set only by the no-show sweep
    COMPLETED = "completed"


class CheckinStatus(str, Enum):
    """Arrival statuses at the point of service."""

    NOT_ARRIVED = "not_arrived"
    CHECKED_IN = "checked_in"
    MISSED = "missed"  # Set together with NO_SHOW
    COMPLETED = "completed"  # Visit finished


ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)
TERMINAL_BOOKING_STATUSES = (
    BookingStatus.CANCELLED_BY_SUBJECT.value,
    BookingStatus.NO_SHOW.value,
    BookingStatus.COMPLETED.value,
)


def _in_list(values: tuple[str, ...]) -> str:
    return ", ".join(f"'{value}'" for value in values)


class Booking(Base):
    """Self-contained booking record between a subject and a resource slot."""

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)

    subject_id = Column(String(64), nullable=False, index=True)
    resource_key = Column(String(128), nullable=False)
    booking_date = Column(Date, nullable=False, index=True)
    time_slot = Column(Time, nullable=False)

    booking_status = Column(String(32), nullable=False, default=BookingStatus.CONFIRMED.value)
    checkin_status = Column(String(32), nullable=False, default=CheckinStatus.NOT_ARRIVED.value)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    checkin_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    cancellation_reason = Column(Text, nullable=True)
    checked_in_by = Column(String(64), nullable=True)

    # Opaque check-in token, persisted for redisplay
    token_material = Column(Text, nullable=False)

    __table_args__ = (
        CheckConstraint(
            f"booking_status IN ({_in_list(tuple(s.value for s in BookingStatus))})",
            name="ck_bookings_booking_status",
        ),
        CheckConstraint(
            f"checkin_status IN ({_in_list(tuple(s.value for s in CheckinStatus))})",
            name="ck_bookings_checkin_status",
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Booking {self.id}: subject={self.subject_id}, "
            f"resource={self.resource_key}, date={self.booking_date}, "
            f"slot={self.time_slot}, status={self.booking_status}/{self.checkin_status}>"
        )

    @property
    def is_terminal(self) -> bool:
        return self.booking_status in TERMINAL_BOOKING_STATUSES

    def appointment_start_utc(self, tz_name: Optional[str] = None) -> datetime:
        return appointment_start_utc(
            cast(date, self.booking_date), cast(time, self.time_slot), tz_name
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for events and logs (token material excluded)."""
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "resource_key": self.resource_key,
            "booking_date": self.booking_date.isoformat() if self.booking_date else None,
            "time_slot": self.time_slot.strftime("%H:%M") if self.time_slot else None,
            "booking_status": self.booking_status,
            "checkin_status": self.checkin_status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "checkin_at": self.checkin_at.isoformat() if self.checkin_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "cancellation_reason": self.cancellation_reason,
        }


Index(
    "uq_bookings_active_slot",
    Booking.resource_key,
    Booking.booking_date,
    Booking.time_slot,
    unique=True,
    postgresql_where=Booking.booking_status.in_(ACTIVE_BOOKING_STATUSES),
    sqlite_where=Booking.booking_status.in_(ACTIVE_BOOKING_STATUSES),
)


Index(
    "ix_bookings_sweep",
    Booking.booking_status,
    Booking.checkin_status,
    Booking.booking_date,
)


Index(
    "ix_bookings_resource_date",
    Booking.resource_key,
    Booking.booking_date,
)
