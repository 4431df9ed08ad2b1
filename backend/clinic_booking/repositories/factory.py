"""
Repository Factory for the clinic booking core.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from sqlalchemy.orm import Session

from .booking_repository import BookingRepository
from .slot_reservation_repository import SlotReservationRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_booking_repository(db: Session) -> BookingRepository:
        """Create repository for booking operations."""
        return BookingRepository(db)

    @staticmethod
    def create_slot_reservation_repository(db: Session) -> SlotReservationRepository:
        """Create repository for database-backed slot reservations."""
        return SlotReservationRepository(db)
