# backend/clinic_booking/tasks/__init__.py
