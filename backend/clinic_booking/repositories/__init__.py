"""Repository layer: the persistence gateway over SQLAlchemy sessions."""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .factory import RepositoryFactory
from .slot_reservation_repository import SlotReservationRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "RepositoryFactory",
    "SlotReservationRepository",
]
