# backend/clinic_booking/schemas/checkin.py
from datetime import date
from typing import List, Optional

from pydantic import Field

from ._strict_base import StrictModel, StrictRequestModel
from .booking import BookingResponse


class TokenCheckInRequest(StrictRequestModel):
    token: str = Field(..., min_length=1, max_length=4096)


class ManualCheckInRequest(StrictRequestModel):
    subject_id: str = Field(..., min_length=1, max_length=64)
    booking_date: Optional[date] = Field(None, description="Defaults to today in the clinic timezone")
    resource_key: Optional[str] = Field(None, max_length=128)


class CheckInResponse(StrictModel):
    outcome: str
    booking: Optional[BookingResponse] = None
    reason: Optional[str] = None
    manual_lookup_advised: bool = False
    candidates: List[BookingResponse] = Field(default_factory=list)
