# backend/clinic_booking/routes/v1/__init__.py
"""
API v1 Routes

Versioned API endpoints under /api/v1.
"""

from . import admin, bookings, checkin, reservations, slots

__all__ = [
    "admin",
    "bookings",
    "checkin",
    "reservations",
    "slots",
]
