# backend/clinic_booking/api/__init__.py
