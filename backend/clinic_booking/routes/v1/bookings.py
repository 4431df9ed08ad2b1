# backend/clinic_booking/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to BookingOrchestrator and BookingLifecycle.

Endpoints:
    POST / - Submit a booking (201 booked, 409 conflict with alternatives, 503 unavailable)
    GET /{booking_id} - Booking details (owner only)
    GET /{booking_id}/token - Redisplay the check-in token (owner only)
    POST /{booking_id}/cancel - Cancel on behalf of the subject
    POST /{booking_id}/confirm - Confirm a pending booking (staff)
    POST /{booking_id}/complete - Close out a checked-in visit (staff)
"""

import asyncio
import logging
from typing import Optional, Union

from fastapi import APIRouter, Body, Depends, Path, Request, status
from fastapi.responses import JSONResponse

from ...api.dependencies import (
    get_booking_lifecycle,
    get_booking_orchestrator,
    get_subject_id,
    require_staff,
)
from ...errors import problem, problem_response
from ...schemas.booking import (
    AlternativeSlotResponse,
    BookingCancel,
    BookingCreate,
    BookingCreateResponse,
    BookingResponse,
    BookingTokenResponse,
    SlotConflictBody,
)
from ...services.booking_lifecycle import BookingCandidate, BookingLifecycle
from ...services.booking_orchestrator import (
    BookingOrchestrator,
    BookingSubmission,
    SlotConflictResult,
)

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


@router.post(
    "",
    response_model=BookingCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"description": "Slot taken; alternatives attached"},
        503: {"description": "Booking store unavailable"},
    },
)
async def submit_booking(
    request: Request,
    payload: BookingCreate = Body(...),
    subject_id: str = Depends(get_subject_id),
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
) -> Union[BookingCreateResponse, JSONResponse]:
    """Book a slot, consuming the caller's reservation when one is supplied."""
    candidate = BookingCandidate(
        subject_id=subject_id,
        resource_key=payload.resource_key,
        booking_date=payload.booking_date,
        time_slot=payload.time_slot,
    )
    result = await asyncio.to_thread(
        orchestrator.submit_booking, candidate, payload.reservation_id
    )

    if isinstance(result, BookingSubmission):
        return BookingCreateResponse(
            booking=BookingResponse.from_booking(result.booking), token=result.token
        )

    if isinstance(result, SlotConflictResult):
        conflict = SlotConflictBody(
            scope=result.scope,
            alternatives=[
                AlternativeSlotResponse(
                    resource_key=slot.resource_key,
                    booking_date=slot.booking_date,
                    time_slot=slot.time_slot,
                )
                for slot in result.alternatives
            ],
        )
        body = problem(
            status=status.HTTP_409_CONFLICT,
            detail=(
                "This time slot is no longer available"
                if result.has_alternatives
                else "This time slot is no longer available and no alternatives were found"
            ),
            instance=request.url.path,
            code="SLOT_CONFLICT",
            extras=conflict.model_dump(mode="json"),
        )
        return problem_response(body)

    body = problem(
        status=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=result.message,
        instance=request.url.path,
        code="INFRASTRUCTURE_UNAVAILABLE",
        extras={"attempts": result.attempts, "deferral_id": result.deferral_id},
    )
    return problem_response(body, headers={"Retry-After": "2"})


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    responses={404: {"description": "Booking not found"}},
)
async def get_booking(
    booking_id: str = Path(
        ...,
        description="Booking ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    subject_id: str = Depends(get_subject_id),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingResponse:
    booking = await asyncio.to_thread(lifecycle.get, booking_id, subject_id)
    return BookingResponse.from_booking(booking)


@router.get(
    "/{booking_id}/token",
    response_model=BookingTokenResponse,
    responses={404: {"description": "Booking not found"}},
)
async def get_booking_token(
    booking_id: str = Path(
        ...,
        description="Booking ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    subject_id: str = Depends(get_subject_id),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingTokenResponse:
    """Token for the app to redisplay as a QR code; re-issued when close to expiry."""
    token = await asyncio.to_thread(lifecycle.current_token, booking_id, subject_id)
    return BookingTokenResponse(booking_id=booking_id, token=token)


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingResponse,
    responses={404: {"description": "Booking not found"}, 422: {"description": "Not cancellable"}},
)
async def cancel_booking(
    booking_id: str = Path(
        ...,
        description="Booking ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    cancel_data: Optional[BookingCancel] = Body(None),
    subject_id: str = Depends(get_subject_id),
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
) -> BookingResponse:
    """Cancel a booking."""
    booking = await asyncio.to_thread(
        orchestrator.cancel,
        booking_id,
        cancel_data.reason if cancel_data else None,
        subject_id,
    )
    return BookingResponse.from_booking(booking)


@router.post(
    "/{booking_id}/confirm",
    response_model=BookingResponse,
    responses={409: {"description": "Slot taken"}, 422: {"description": "Not pending"}},
)
async def confirm_booking(
    booking_id: str = Path(
        ...,
        description="Booking ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    staff_id: str = Depends(require_staff),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingResponse:
    booking = await asyncio.to_thread(lifecycle.confirm, booking_id)
    logger.info("Booking %s confirmed by %s", booking_id, staff_id)
    return BookingResponse.from_booking(booking)


@router.post(
    "/{booking_id}/complete",
    response_model=BookingResponse,
    responses={422: {"description": "Booking not checked in"}},
)
async def complete_booking(
    booking_id: str = Path(
        ...,
        description="Booking ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    staff_id: str = Depends(require_staff),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> BookingResponse:
    """Mark a checked-in visit as completed."""
    booking = await asyncio.to_thread(lifecycle.complete, booking_id)
    logger.info("Booking %s completed by %s", booking_id, staff_id)
    return BookingResponse.from_booking(booking)
