# backend/clinic_booking/routes/v1/checkin.py
"""
Front-desk check-in routes - API v1

Endpoints:
    POST /token - Check in by presenting a check-in token
    POST /manual - Check in by subject identity and date (fallback)

Both are staff endpoints. Outcomes map to status codes: 200 for
checked_in/already_checked_in, 422 for invalid_token/not_eligible,
404 for not_found and 409 for ambiguous lookups.
"""

import asyncio
import logging

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import JSONResponse

from ...api.dependencies import get_checkin_gateway, require_staff
from ...core.exceptions import HTTP_422_UNPROCESSABLE
from ...schemas.booking import BookingResponse
from ...schemas.checkin import CheckInResponse, ManualCheckInRequest, TokenCheckInRequest
from ...services.checkin_gateway import CheckInGateway, CheckInOutcome, CheckInResult

logger = logging.getLogger(__name__)

router = APIRouter(tags=["checkin-v1"])

_STATUS_BY_OUTCOME = {
    CheckInOutcome.CHECKED_IN: status.HTTP_200_OK,
    CheckInOutcome.ALREADY_CHECKED_IN: status.HTTP_200_OK,
    CheckInOutcome.INVALID_TOKEN: HTTP_422_UNPROCESSABLE,
    CheckInOutcome.NOT_ELIGIBLE: HTTP_422_UNPROCESSABLE,
    CheckInOutcome.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    CheckInOutcome.AMBIGUOUS: status.HTTP_409_CONFLICT,
}


def _to_response(result: CheckInResult) -> JSONResponse:
    body = CheckInResponse(
        outcome=result.outcome.value,
        booking=BookingResponse.from_booking(result.booking) if result.booking else None,
        reason=result.reason,
        manual_lookup_advised=result.manual_lookup_advised,
        candidates=[BookingResponse.from_booking(booking) for booking in result.candidates],
    )
    return JSONResponse(
        body.model_dump(mode="json"), status_code=_STATUS_BY_OUTCOME[result.outcome]
    )


@router.post("/token", response_model=CheckInResponse)
async def check_in_with_token(
    payload: TokenCheckInRequest = Body(...),
    staff_id: str = Depends(require_staff),
    gateway: CheckInGateway = Depends(get_checkin_gateway),
) -> JSONResponse:
    result = await asyncio.to_thread(gateway.check_in_with_token, payload.token, staff_id)
    return _to_response(result)


@router.post("/manual", response_model=CheckInResponse)
async def check_in_manual(
    payload: ManualCheckInRequest = Body(...),
    staff_id: str = Depends(require_staff),
    gateway: CheckInGateway = Depends(get_checkin_gateway),
) -> JSONResponse:
    """Fallback when the token cannot be used; bypasses the token codec."""
    result = await asyncio.to_thread(
        gateway.check_in_manual,
        payload.subject_id,
        payload.booking_date,
        payload.resource_key,
        staff_id,
    )
    return _to_response(result)
