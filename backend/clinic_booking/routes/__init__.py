# backend/clinic_booking/routes/__init__.py
"""HTTP routes."""
