"""Clinic appointment booking core: reservations, lifecycle, check-in and no-show reconciliation."""

__version__ = "1.0.0"
