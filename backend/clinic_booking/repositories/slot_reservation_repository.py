# backend/clinic_booking/repositories/slot_reservation_repository.py
"""
Slot reservation repository.

Reservations share the booking store but are advisory: a row whose
``expires_at`` has passed is treated as absent by every read, and the
unique slot constraint is made reusable by deleting the dead row in the
same transaction as the replacement insert.
"""

from datetime import date, datetime, time
import logging
from typing import List, Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.slot_reservation import SlotReservation
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class SlotReservationRepository(BaseRepository[SlotReservation]):
    def __init__(self, db: Session):
        super().__init__(db, SlotReservation)

    def get_live(self, reservation_id: str, now: datetime) -> Optional[SlotReservation]:
        with self.guarded("get"):
            return (
                self._build_query()
                .filter(SlotReservation.id == reservation_id, SlotReservation.expires_at > now)
                .first()
            )

    def get_live_for_slot(
        self, resource_key: str, booking_date: date, time_slot: time, now: datetime
    ) -> Optional[SlotReservation]:
        with self.guarded("get_for_slot"):
            return (
                self._build_query()
                .filter(
                    SlotReservation.resource_key == resource_key,
                    SlotReservation.booking_date == booking_date,
                    SlotReservation.time_slot == time_slot,
                    SlotReservation.expires_at > now,
                )
                .first()
            )

    def insert_replacing_expired(self, reservation: SlotReservation, now: datetime) -> bool:
        """
        Insert ``reservation`` unless a live reservation holds its slot.

        Returns:
            True when written, False when a live reservation won
        """
        purge = (
            delete(SlotReservation)
            .where(
                SlotReservation.resource_key == reservation.resource_key,
                SlotReservation.booking_date == reservation.booking_date,
                SlotReservation.time_slot == reservation.time_slot,
                SlotReservation.expires_at <= now,
            )
            .execution_options(synchronize_session=False)
        )
        with self.guarded("reserve"):
            self.db.execute(purge)
            try:
                self.add(reservation)
            except IntegrityError:
                self.db.rollback()
                return False
            return True

    def delete_live_by_id(self, reservation_id: str, now: datetime) -> int:
        """Expired rows are left for the purge in ``insert_replacing_expired``."""
        stmt = (
            delete(SlotReservation)
            .where(SlotReservation.id == reservation_id, SlotReservation.expires_at > now)
            .execution_options(synchronize_session=False)
        )
        with self.guarded("release"):
            return int(self.db.execute(stmt).rowcount or 0)

    def live_between(
        self, resource_key: str, start_date: date, end_date: date, now: datetime
    ) -> List[SlotReservation]:
        with self.guarded("list_live"):
            return (
                self._build_query()
                .filter(
                    SlotReservation.resource_key == resource_key,
                    SlotReservation.booking_date >= start_date,
                    SlotReservation.booking_date <= end_date,
                    SlotReservation.expires_at > now,
                )
                .all()
            )
