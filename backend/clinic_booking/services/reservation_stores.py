# backend/clinic_booking/services/reservation_stores.py
"""
Storage backends for advisory slot reservations.

Both stores decide liveness by comparing ``expires_at`` with the caller's
clock. A store-side TTL (Redis PX) only reclaims memory; it never decides
whether a reservation still holds.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
import json
import logging
from typing import List, Optional, Protocol

from redis import Redis
from redis.exceptions import WatchError
from sqlalchemy.orm import Session

from ..core.redis_client import redis_guard
from ..core.timezone_utils import ensure_utc
from ..core.ulid_helper import generate_ulid
from ..models.slot_reservation import SlotReservation
from ..repositories.factory import RepositoryFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reservation:
    reservation_id: str
    resource_key: str
    booking_date: date
    time_slot: time
    subject_id: str
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        return ensure_utc(self.expires_at) > ensure_utc(now)

    def covers(self, resource_key: str, booking_date: date, time_slot: time) -> bool:
        return (
            self.resource_key == resource_key
            and self.booking_date == booking_date
            and self.time_slot == time_slot
        )


class ReservationStore(Protocol):
    def try_reserve(
        self,
        resource_key: str,
        booking_date: date,
        time_slot: time,
        subject_id: str,
        now: datetime,
        ttl: timedelta,
    ) -> Optional[Reservation]:
        """Create a reservation, or return None when a live one holds the slot."""
        ...

    def get(self, reservation_id: str, now: datetime) -> Optional[Reservation]: ...

    def get_for_slot(
        self, resource_key: str, booking_date: date, time_slot: time, now: datetime
    ) -> Optional[Reservation]: ...

    def release(self, reservation_id: str, now: datetime) -> bool: ...

    def live_between(
        self, resource_key: str, start_date: date, end_date: date, now: datetime
    ) -> List[Reservation]: ...


def _from_row(row: SlotReservation) -> Reservation:
    return Reservation(
        reservation_id=str(row.id),
        resource_key=str(row.resource_key),
        booking_date=row.booking_date,  # type: ignore[arg-type]
        time_slot=row.time_slot,  # type: ignore[arg-type]
        subject_id=str(row.subject_id),
        expires_at=ensure_utc(row.expires_at),  # type: ignore[arg-type]
    )


class DatabaseReservationStore:
    """Reservations in the ``slot_reservations`` table; the caller owns the transaction."""

    def __init__(self, db: Session):
        self.repository = RepositoryFactory.create_slot_reservation_repository(db)

    def try_reserve(
        self,
        resource_key: str,
        booking_date: date,
        time_slot: time,
        subject_id: str,
        now: datetime,
        ttl: timedelta,
    ) -> Optional[Reservation]:
        row = SlotReservation(
            id=generate_ulid(),
            resource_key=resource_key,
            booking_date=booking_date,
            time_slot=time_slot,
            subject_id=subject_id,
            expires_at=now + ttl,
            created_at=now,
        )
        if not self.repository.insert_replacing_expired(row, now):
            return None
        return _from_row(row)

    def get(self, reservation_id: str, now: datetime) -> Optional[Reservation]:
        row = self.repository.get_live(reservation_id, now)
        return _from_row(row) if row else None

    def get_for_slot(
        self, resource_key: str, booking_date: date, time_slot: time, now: datetime
    ) -> Optional[Reservation]:
        row = self.repository.get_live_for_slot(resource_key, booking_date, time_slot, now)
        return _from_row(row) if row else None

    def release(self, reservation_id: str, now: datetime) -> bool:
        return self.repository.delete_live_by_id(reservation_id, now) > 0

    def live_between(
        self, resource_key: str, start_date: date, end_date: date, now: datetime
    ) -> List[Reservation]:
        rows = self.repository.live_between(resource_key, start_date, end_date, now)
        return [_from_row(row) for row in rows]


class RedisReservationStore:
    """
    Reservations as Redis keys.

    ``<prefix>:slot:<resource>:<date>:<time>`` holds the reservation JSON and
    is written with ``SET NX PX``; ``<prefix>:id:<reservation_id>`` points
    back at the slot key so release works by id.
    """

    def __init__(self, client: Redis, prefix: str = "clinic:reservation"):
        self.client = client
        self.prefix = prefix

    def _slot_key(self, resource_key: str, booking_date: date, time_slot: time) -> str:
        return f"{self.prefix}:slot:{resource_key}:{booking_date.isoformat()}:{time_slot.strftime('%H:%M')}"

    def _id_key(self, reservation_id: str) -> str:
        return f"{self.prefix}:id:{reservation_id}"

    @staticmethod
    def _serialize(reservation: Reservation) -> str:
        return json.dumps(
            {
                "id": reservation.reservation_id,
                "resource_key": reservation.resource_key,
                "booking_date": reservation.booking_date.isoformat(),
                "time_slot": reservation.time_slot.strftime("%H:%M:%S"),
                "subject_id": reservation.subject_id,
                "expires_at": reservation.expires_at.isoformat(),
            },
            separators=(",", ":"),
        )

    @staticmethod
    def _deserialize(raw: Optional[str]) -> Optional[Reservation]:
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return Reservation(
                reservation_id=data["id"],
                resource_key=data["resource_key"],
                booking_date=date.fromisoformat(data["booking_date"]),
                time_slot=time.fromisoformat(data["time_slot"]),
                subject_id=data["subject_id"],
                expires_at=ensure_utc(datetime.fromisoformat(data["expires_at"])),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Discarding unreadable reservation entry")
            return None

    def _evict_if_unchanged(self, slot_key: str, raw: str) -> None:
        """Delete a dead entry unless another writer replaced it meanwhile."""
        with self.client.pipeline() as pipe:
            try:
                pipe.watch(slot_key)
                if pipe.get(slot_key) != raw:
                    pipe.unwatch()
                    return
                pipe.multi()
                pipe.delete(slot_key)
                pipe.execute()
            except WatchError:
                return

    def try_reserve(
        self,
        resource_key: str,
        booking_date: date,
        time_slot: time,
        subject_id: str,
        now: datetime,
        ttl: timedelta,
    ) -> Optional[Reservation]:
        reservation = Reservation(
            reservation_id=generate_ulid(),
            resource_key=resource_key,
            booking_date=booking_date,
            time_slot=time_slot,
            subject_id=subject_id,
            expires_at=now + ttl,
        )
        slot_key = self._slot_key(resource_key, booking_date, time_slot)
        ttl_ms = max(int(ttl.total_seconds() * 1000), 1)
        payload = self._serialize(reservation)

        with redis_guard("reserve"):
            if not self.client.set(slot_key, payload, nx=True, px=ttl_ms):
                raw = self.client.get(slot_key)
                existing = self._deserialize(raw)
                if existing is not None and existing.is_live(now):
                    return None
                if raw is not None:
                    self._evict_if_unchanged(slot_key, raw)
                if not self.client.set(slot_key, payload, nx=True, px=ttl_ms):
                    return None
            self.client.set(self._id_key(reservation.reservation_id), slot_key, px=ttl_ms)
        return reservation

    def get(self, reservation_id: str, now: datetime) -> Optional[Reservation]:
        with redis_guard("get"):
            slot_key = self.client.get(self._id_key(reservation_id))
            if not slot_key:
                return None
            reservation = self._deserialize(self.client.get(slot_key))
        if reservation is None or reservation.reservation_id != reservation_id:
            return None
        return reservation if reservation.is_live(now) else None

    def get_for_slot(
        self, resource_key: str, booking_date: date, time_slot: time, now: datetime
    ) -> Optional[Reservation]:
        with redis_guard("get_for_slot"):
            raw = self.client.get(self._slot_key(resource_key, booking_date, time_slot))
        reservation = self._deserialize(raw)
        return reservation if reservation is not None and reservation.is_live(now) else None

    def release(self, reservation_id: str, now: datetime) -> bool:
        with redis_guard("release"):
            id_key = self._id_key(reservation_id)
            slot_key = self.client.get(id_key)
            if not slot_key:
                return False
            current = self._deserialize(self.client.get(slot_key))
            released = False
            if current is not None and current.reservation_id == reservation_id:
                deleted = bool(self.client.delete(slot_key))
                released = deleted and current.is_live(now)
            self.client.delete(id_key)
        return released

    def live_between(
        self, resource_key: str, start_date: date, end_date: date, now: datetime
    ) -> List[Reservation]:
        live: List[Reservation] = []
        with redis_guard("list_live"):
            for key in self.client.scan_iter(match=f"{self.prefix}:slot:{resource_key}:*"):
                reservation = self._deserialize(self.client.get(key))
                if (
                    reservation is not None
                    and reservation.resource_key == resource_key
                    and start_date <= reservation.booking_date <= end_date
                    and reservation.is_live(now)
                ):
                    live.append(reservation)
        return live
