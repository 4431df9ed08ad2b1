"""Audit trail of committed booking transitions."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.sql import func

from ..core.ulid_helper import generate_ulid
from ..database import Base


class BookingStatusEvent(Base):
    """One status change on one booking axis."""

    __tablename__ = "booking_status_events"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False)
    field = Column(String(32), nullable=False)  # booking_status | checkin_status
    old_value = Column(String(32), nullable=True)
    new_value = Column(String(32), nullable=False)
    actor = Column(String(64), nullable=False, default="system")
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return (
            f"<BookingStatusEvent booking={self.booking_id} {self.field}: "
            f"{self.old_value}->{self.new_value} by {self.actor}>"
        )


Index("ix_booking_status_events_booking", BookingStatusEvent.booking_id, BookingStatusEvent.created_at)
