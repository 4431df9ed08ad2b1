# backend/clinic_booking/routes/v1/admin.py
"""
Staff operations - API v1

Endpoints:
    POST /no-show-sweep - Run the no-show reconciliation sweep now
"""

import asyncio
import logging

from fastapi import APIRouter, Depends

from ...api.dependencies import get_no_show_sweep, require_staff
from ...schemas.admin import NoShowSweepResponse, ReconciliationFailureResponse
from ...services.no_show_sweep import NoShowSweep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin-v1"])


@router.post("/no-show-sweep", response_model=NoShowSweepResponse)
async def run_no_show_sweep(
    staff_id: str = Depends(require_staff),
    sweep: NoShowSweep = Depends(get_no_show_sweep),
) -> NoShowSweepResponse:
    """On-demand sweep; the scheduler runs the same job hourly."""
    logger.info("Manual no-show sweep requested by %s", staff_id)
    report = await asyncio.to_thread(sweep.run)
    return NoShowSweepResponse(
        processed_count=report.processed_count,
        skipped_count=report.skipped_count,
        failures=[
            ReconciliationFailureResponse(**failure.to_dict()) for failure in report.failures
        ],
    )
