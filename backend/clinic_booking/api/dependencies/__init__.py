# backend/clinic_booking/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import get_subject_id, require_staff
from .database import get_db
from .services import (
    get_booking_lifecycle,
    get_booking_orchestrator,
    get_checkin_gateway,
    get_clock,
    get_deferred_queue,
    get_no_show_sweep,
    get_notification_dispatcher,
    get_slot_reservation_manager,
    get_token_codec,
)

__all__ = [
    # Auth
    "get_subject_id",
    "require_staff",
    # Database
    "get_db",
    # Services
    "get_booking_lifecycle",
    "get_booking_orchestrator",
    "get_checkin_gateway",
    "get_clock",
    "get_deferred_queue",
    "get_no_show_sweep",
    "get_notification_dispatcher",
    "get_slot_reservation_manager",
    "get_token_codec",
]
