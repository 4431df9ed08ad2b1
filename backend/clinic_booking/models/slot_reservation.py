"""Advisory slot reservations (database-backed store)."""

from __future__ import annotations

from sqlalchemy import Column, Date, DateTime, String, Time, UniqueConstraint
from sqlalchemy.sql import func

from ..core.ulid_helper import generate_ulid
from ..database import Base


class SlotReservation(Base):
    """
    Short-lived first refusal on a slot.

    Rows past ``expires_at`` are dead even if still present; the reservation
    store replaces them on the next reserve for the same slot.
    """

    __tablename__ = "slot_reservations"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    resource_key = Column(String(128), nullable=False)
    booking_date = Column(Date, nullable=False)
    time_slot = Column(Time, nullable=False)
    subject_id = Column(String(64), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "resource_key", "booking_date", "time_slot", name="uq_slot_reservations_slot"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<SlotReservation {self.id}: {self.resource_key} {self.booking_date} "
            f"{self.time_slot} until {self.expires_at}>"
        )
