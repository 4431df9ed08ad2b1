# backend/clinic_booking/schemas/slots.py
from datetime import date, time
from typing import List

from ._strict_base import StrictModel


class SlotAvailability(StrictModel):
    time_slot: time
    available: bool


class SlotListResponse(StrictModel):
    resource_key: str
    booking_date: date
    slots: List[SlotAvailability]
