# backend/clinic_booking/routes/v1/slots.py
"""
Slot availability - API v1

Endpoints:
    GET / - Remaining slots for a resource on a date, with availability
"""

import asyncio
from datetime import date

from fastapi import APIRouter, Depends, Query

from ...api.dependencies import get_slot_reservation_manager
from ...schemas.slots import SlotAvailability, SlotListResponse
from ...services.slot_reservation_manager import SlotReservationManager

router = APIRouter(tags=["slots-v1"])


@router.get("", response_model=SlotListResponse)
async def list_slots(
    resource_key: str = Query(..., min_length=1, max_length=128),
    booking_date: date = Query(..., description="Clinic-local date"),
    manager: SlotReservationManager = Depends(get_slot_reservation_manager),
) -> SlotListResponse:
    slots = await asyncio.to_thread(manager.availability, resource_key, booking_date)
    return SlotListResponse(
        resource_key=resource_key,
        booking_date=booking_date,
        slots=[SlotAvailability(time_slot=slot, available=free) for slot, free in slots],
    )
