# backend/clinic_booking/monitoring/__init__.py
