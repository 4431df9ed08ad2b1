# backend/clinic_booking/services/slot_reservation_manager.py
"""
Slot reservation manager.

Gives a subject first refusal on a slot for a short window while the
booking form is completed. Reservations are advisory only: booking creation
re-checks slot uniqueness at the store regardless of what is held here.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time, timedelta
import logging
from typing import List, Optional, Set, Tuple, Union

from sqlalchemy.orm import Session

from ..core.clinic_schedule import ClinicSchedule
from ..core.config import settings
from ..core.redis_client import get_sync_redis
from ..core.timezone_utils import Clock
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .reservation_stores import (
    DatabaseReservationStore,
    RedisReservationStore,
    Reservation,
    ReservationStore,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReservationDenied:
    """The slot is already reserved by someone else or holds an active booking."""

    reason: str  # "reserved" | "booked"
    resource_key: str
    booking_date: date
    time_slot: time


ReserveResult = Union[Reservation, ReservationDenied]


def build_reservation_store(db: Session) -> ReservationStore:
    if settings.reservation_backend == "redis":
        return RedisReservationStore(get_sync_redis())
    return DatabaseReservationStore(db)


class SlotReservationManager(BaseService):
    """Creates, inspects and releases TTL-bound slot reservations."""

    def __init__(
        self,
        db: Session,
        store: Optional[ReservationStore] = None,
        ttl: Optional[timedelta] = None,
        schedule: Optional[ClinicSchedule] = None,
        now_fn: Optional[Clock] = None,
    ):
        super().__init__(db, now_fn)
        self.store = store or build_reservation_store(db)
        self.ttl = ttl or timedelta(seconds=settings.reservation_ttl_seconds)
        self.schedule = schedule or ClinicSchedule.from_settings()
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    @BaseService.measure_operation("reserve")
    def reserve(
        self, resource_key: str, booking_date: date, time_slot: time, subject_id: str
    ) -> ReserveResult:
        """
        Reserve a slot for ``subject_id``.

        Returns:
            Reservation with its expiry, or ReservationDenied

        Raises:
            ValidationException: slot is not bookable at all
        """
        now = self.now()
        self.schedule.validate_candidate(booking_date, time_slot, now)

        with self.transaction():
            if self.booking_repository.active_booking_exists(resource_key, booking_date, time_slot):
                prometheus_metrics.record_reservation("denied_booked")
                return ReservationDenied("booked", resource_key, booking_date, time_slot)

            reservation = self.store.try_reserve(
                resource_key, booking_date, time_slot, subject_id, now, self.ttl
            )

        if reservation is None:
            prometheus_metrics.record_reservation("denied_reserved")
            return ReservationDenied("reserved", resource_key, booking_date, time_slot)

        prometheus_metrics.record_reservation("granted")
        logger.info(
            "Reserved slot %s %s %s until %s",
            resource_key,
            booking_date,
            time_slot,
            reservation.expires_at.isoformat(),
            extra={"reservation_id": reservation.reservation_id},
        )
        return reservation

    @BaseService.measure_operation("release")
    def release(self, reservation_id: str) -> bool:
        """Release early. Unknown or expired reservations are a no-op (False)."""
        with self.transaction():
            released = self.store.release(reservation_id, self.now())
        if released:
            prometheus_metrics.record_reservation("released")
        return released

    def get(self, reservation_id: str) -> Optional[Reservation]:
        """The live reservation with this id, if any."""
        return self.store.get(reservation_id, self.now())

    def holder_of(self, resource_key: str, booking_date: date, time_slot: time) -> Optional[Reservation]:
        """The live reservation on a slot, if any."""
        return self.store.get_for_slot(resource_key, booking_date, time_slot, self.now())

    def is_held(self, resource_key: str, booking_date: date, time_slot: time) -> bool:
        """True if a live reservation or an active booking occupies the slot."""
        if self.booking_repository.active_booking_exists(resource_key, booking_date, time_slot):
            return True
        return self.holder_of(resource_key, booking_date, time_slot) is not None

    def held_slots(
        self, resource_key: str, start_date: date, end_date: date
    ) -> Set[Tuple[date, time]]:
        """(date, slot) pairs with a live reservation between the two dates, inclusive."""
        live = self.store.live_between(resource_key, start_date, end_date, self.now())
        return {(reservation.booking_date, reservation.time_slot) for reservation in live}

    def availability(self, resource_key: str, day: date) -> List[Tuple[time, bool]]:
        """Every remaining slot on ``day`` with whether it can still be reserved."""
        now = self.now()
        taken = self.booking_repository.active_slots_between(resource_key, day, day)
        taken |= self.held_slots(resource_key, day, day)
        return [(slot, (day, slot) not in taken) for slot in self.schedule.upcoming_slots(day, now)]
