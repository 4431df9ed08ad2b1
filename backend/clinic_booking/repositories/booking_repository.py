# backend/clinic_booking/repositories/booking_repository.py
"""
Booking Repository for the clinic booking core.

This is the persistence gateway for bookings. Every write that can affect
slot uniqueness is a conditional write:

- inserts rely on the partial unique index ``uq_bookings_active_slot`` and
  surface an IntegrityError when the slot is taken;
- status changes are ``UPDATE ... WHERE <expected current state>`` and report
  how many rows they touched, so a lost race shows up as rowcount 0 instead
  of an overwritten row.
"""

from datetime import date, datetime, time
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from ..models.booking import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus, CheckinStatus
from ..models.booking_status_event import BookingStatusEvent
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

SlotKey = Tuple[date, time]


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    # ------------------------------------------------------------------
    # Conditional writes
    # ------------------------------------------------------------------

    def insert_if_slot_free(self, booking: Booking) -> bool:
        """
        Insert ``booking`` unless its slot already holds an active booking.

        The existence check and the unique index together form the
        check-then-write unit: the check short-circuits the common case and
        the index rejects the racing writer.

        Returns:
            True when the row was written, False when the slot was taken
        """
        with self.guarded("insert"):
            if self.active_booking_exists(booking.resource_key, booking.booking_date, booking.time_slot):
                return False
            try:
                self.add(booking)
            except IntegrityError:
                self.db.rollback()
                self.logger.info(
                    "Slot taken concurrently for %s %s %s",
                    booking.resource_key,
                    booking.booking_date,
                    booking.time_slot,
                )
                return False
            return True

    def conditional_update(
        self,
        booking_id: str,
        expected: Dict[str, Iterable[str]],
        values: Dict[str, Any],
    ) -> int:
        """
        Apply ``values`` only if every column in ``expected`` holds one of the given values.

        Returns:
            Number of rows changed (0 or 1)
        """
        conditions = [Booking.id == booking_id]
        for column_name, allowed in expected.items():
            conditions.append(getattr(Booking, column_name).in_(list(allowed)))
        stmt = (
            update(Booking)
            .where(and_(*conditions))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self.guarded("update"):
            result = self.db.execute(stmt)
            return int(result.rowcount or 0)

    def confirm_if_slot_free(self, booking_id: str, values: Dict[str, Any]) -> int:
        """
        Flip a pending booking to confirmed unless another booking already holds the slot confirmed.

        Returns:
            Number of rows changed (0 or 1)
        """
        other = aliased(Booking)
        slot_confirmed_elsewhere = (
            select(other.id)
            .where(
                other.resource_key == Booking.resource_key,
                other.booking_date == Booking.booking_date,
                other.time_slot == Booking.time_slot,
                other.id != Booking.id,
                other.booking_status == BookingStatus.CONFIRMED.value,
            )
            .correlate(Booking.__table__)
            .exists()
        )
        stmt = (
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.booking_status == BookingStatus.PENDING.value,
                ~slot_confirmed_elsewhere,
            )
            .values(booking_status=BookingStatus.CONFIRMED.value, **values)
            .execution_options(synchronize_session=False)
        )
        with self.guarded("confirm"):
            try:
                result = self.db.execute(stmt)
            except IntegrityError:
                self.db.rollback()
                return 0
            return int(result.rowcount or 0)

    def add_status_event(
        self,
        booking_id: str,
        field: str,
        old_value: Optional[str],
        new_value: str,
        actor: str,
        created_at: datetime,
        reason: Optional[str] = None,
    ) -> BookingStatusEvent:
        event = BookingStatusEvent(
            booking_id=booking_id,
            field=field,
            old_value=old_value,
            new_value=new_value,
            actor=actor,
            reason=reason,
            created_at=created_at,
        )
        with self.guarded("record_event"):
            self.db.add(event)
            self.db.flush()
        return event

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def active_booking_exists(
        self,
        resource_key: str,
        booking_date: date,
        time_slot: time,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        with self.guarded("check_slot"):
            query = self.db.query(Booking.id).filter(
                Booking.resource_key == resource_key,
                Booking.booking_date == booking_date,
                Booking.time_slot == time_slot,
                Booking.booking_status.in_(ACTIVE_BOOKING_STATUSES),
            )
            if exclude_booking_id:
                query = query.filter(Booking.id != exclude_booking_id)
            return query.first() is not None

    def active_slots_between(self, resource_key: str, start_date: date, end_date: date) -> Set[SlotKey]:
        """All (date, slot) pairs holding an active booking in [start_date, end_date]."""
        with self.guarded("list_active_slots"):
            rows = (
                self.db.query(Booking.booking_date, Booking.time_slot)
                .filter(
                    Booking.resource_key == resource_key,
                    Booking.booking_date >= start_date,
                    Booking.booking_date <= end_date,
                    Booking.booking_status.in_(ACTIVE_BOOKING_STATUSES),
                )
                .all()
            )
        return {(row[0], row[1]) for row in rows}

    def get_no_show_candidates(self, up_to_date: date, limit: int) -> List[Booking]:
        """
        Confirmed, not-arrived bookings dated on or before ``up_to_date``.

        The date bound is coarse; callers apply the exact grace deadline per
        booking.
        """
        with self.guarded("list_no_show_candidates"):
            return (
                self._build_query()
                .filter(
                    Booking.booking_status == BookingStatus.CONFIRMED.value,
                    Booking.checkin_status == CheckinStatus.NOT_ARRIVED.value,
                    Booking.booking_date <= up_to_date,
                )
                .order_by(Booking.booking_date, Booking.time_slot, Booking.id)
                .limit(limit)
                .all()
            )

    def get_pending_created_before(self, created_before: datetime, limit: int) -> List[Booking]:
        with self.guarded("list_pending"):
            return (
                self._build_query()
                .filter(
                    Booking.booking_status == BookingStatus.PENDING.value,
                    Booking.created_at <= created_before,
                )
                .order_by(Booking.created_at, Booking.id)
                .limit(limit)
                .all()
            )

    def find_for_subject_on_date(
        self,
        subject_id: str,
        booking_date: date,
        resource_key: Optional[str] = None,
    ) -> List[Booking]:
        """Bookings a subject holds on a date that could still be checked in or already were."""
        with self.guarded("manual_lookup"):
            query = self._build_query().filter(
                Booking.subject_id == subject_id,
                Booking.booking_date == booking_date,
                Booking.booking_status == BookingStatus.CONFIRMED.value,
            )
            if resource_key:
                query = query.filter(Booking.resource_key == resource_key)
            return query.order_by(Booking.time_slot).all()

    def get_status_events(self, booking_id: str) -> List[BookingStatusEvent]:
        with self.guarded("list_events"):
            return (
                self.db.query(BookingStatusEvent)
                .filter(BookingStatusEvent.booking_id == booking_id)
                .order_by(BookingStatusEvent.created_at, BookingStatusEvent.id)
                .all()
            )
