# backend/clinic_booking/routes/v1/reservations.py
"""
Slot reservation routes - API v1

Endpoints:
    POST / - Reserve a slot for the calling subject
    DELETE /{reservation_id} - Release a reservation early
"""

import asyncio
import logging
from typing import Union

from fastapi import APIRouter, Body, Depends, Path, Request, status
from fastapi.responses import JSONResponse

from ...api.dependencies import get_slot_reservation_manager, get_subject_id
from ...core.exceptions import ForbiddenException
from ...errors import problem, problem_response
from ...schemas.reservation import (
    ReservationCreate,
    ReservationReleaseResponse,
    ReservationResponse,
)
from ...services.slot_reservation_manager import ReservationDenied, SlotReservationManager

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["reservations-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


@router.post(
    "",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Slot already reserved or booked"}},
)
async def reserve_slot(
    request: Request,
    payload: ReservationCreate = Body(...),
    subject_id: str = Depends(get_subject_id),
    manager: SlotReservationManager = Depends(get_slot_reservation_manager),
) -> Union[ReservationResponse, JSONResponse]:
    """Hold a slot for the caller while the booking form is completed."""
    result = await asyncio.to_thread(
        manager.reserve,
        payload.resource_key,
        payload.booking_date,
        payload.time_slot,
        subject_id,
    )
    if isinstance(result, ReservationDenied):
        body = problem(
            status=status.HTTP_409_CONFLICT,
            detail="This time slot is not available",
            instance=request.url.path,
            code="SLOT_UNAVAILABLE",
            extras={
                "reason": result.reason,
                "resource_key": result.resource_key,
                "booking_date": result.booking_date,
                "time_slot": result.time_slot,
            },
        )
        return problem_response(body)
    return ReservationResponse(
        reservation_id=result.reservation_id,
        resource_key=result.resource_key,
        booking_date=result.booking_date,
        time_slot=result.time_slot,
        expires_at=result.expires_at,
    )


@router.delete(
    "/{reservation_id}",
    response_model=ReservationReleaseResponse,
)
async def release_reservation(
    reservation_id: str = Path(..., description="Reservation ULID", pattern=ULID_PATH_PATTERN),
    subject_id: str = Depends(get_subject_id),
    manager: SlotReservationManager = Depends(get_slot_reservation_manager),
) -> ReservationReleaseResponse:
    """Release a reservation. Releasing an expired or unknown reservation is a no-op."""
    reservation = await asyncio.to_thread(manager.get, reservation_id)
    if reservation is not None and reservation.subject_id != subject_id:
        raise ForbiddenException(
            "You can only release your own reservations", code="RESERVATION_NOT_OWNED"
        )
    released = False
    if reservation is not None:
        released = await asyncio.to_thread(manager.release, reservation_id)
    return ReservationReleaseResponse(reservation_id=reservation_id, released=released)
