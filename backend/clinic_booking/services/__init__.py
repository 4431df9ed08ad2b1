# backend/clinic_booking/services/__init__.py
