# backend/clinic_booking/schemas/__init__.py
"""Request and response models for the HTTP API."""
