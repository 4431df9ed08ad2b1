# backend/clinic_booking/schemas/admin.py
from typing import List

from ._strict_base import StrictModel


class ReconciliationFailureResponse(StrictModel):
    booking_id: str
    error_type: str
    message: str


class NoShowSweepResponse(StrictModel):
    processed_count: int
    skipped_count: int
    failures: List[ReconciliationFailureResponse]
