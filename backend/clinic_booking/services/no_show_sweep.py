# backend/clinic_booking/services/no_show_sweep.py
"""
No-show reconciliation sweep.

Runs on a fixed interval from the scheduler and never schedules itself.
Each booking is transitioned in its own transaction, so one failure is
recorded and skipped without touching the rest of the batch. Running the
sweep twice, or two sweeps at once, changes nothing the first did not.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import InvalidTransitionException, ReconciliationFailure
from ..core.timezone_utils import Clock, clinic_today
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService
from .booking_lifecycle import BookingLifecycle

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    processed_count: int = 0
    skipped_count: int = 0
    failures: List[ReconciliationFailure] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed_count": self.processed_count,
            "skipped_count": self.skipped_count,
            "failures": [failure.to_dict() for failure in self.failures],
        }


class NoShowSweep(BaseService):
    def __init__(
        self,
        db: Session,
        lifecycle: BookingLifecycle,
        batch_size: Optional[int] = None,
        now_fn: Optional[Clock] = None,
    ):
        super().__init__(db, now_fn or lifecycle.now_fn)
        self.lifecycle = lifecycle
        self.batch_size = batch_size or settings.no_show_sweep_batch_size

    @property
    def grace(self) -> timedelta:
        return self.lifecycle.no_show_grace

    @BaseService.measure_operation("run_no_show_sweep")
    def run(self) -> SweepReport:
        """
        Mark every overdue, unattended confirmed booking as a no-show.

        ``processed_count`` counts bookings this run changed. ``skipped_count``
        counts candidates another actor got to first (already marked, or
        checked in meanwhile).
        """
        now = self.now()
        cutoff = now - self.grace
        candidates = self.lifecycle.repository.get_no_show_candidates(
            clinic_today(cutoff, self.lifecycle.tz_name), self.batch_size
        )
        report = SweepReport()

        for booking in candidates:
            booking_id = str(booking.id)
            if self.lifecycle.appointment_start(booking) > cutoff:
                continue
            try:
                result = self.lifecycle.attempt_mark_no_show(booking_id)
            except InvalidTransitionException as exc:
                report.skipped_count += 1
                logger.info(
                    "Skipping booking %s in no-show sweep: %s",
                    booking_id,
                    exc.message,
                    extra={"booking_id": booking_id},
                )
                continue
            except Exception as exc:
                failure = ReconciliationFailure(booking_id, type(exc).__name__, str(exc))
                report.failures.append(failure)
                logger.error(
                    "No-show sweep failed for booking %s: %s",
                    booking_id,
                    exc,
                    extra={"booking_id": booking_id, "error_type": failure.error_type},
                )
                continue

            if result.changed:
                report.processed_count += 1
            else:
                report.skipped_count += 1

        prometheus_metrics.record_sweep("marked", report.processed_count)
        prometheus_metrics.record_sweep("skipped", report.skipped_count)
        prometheus_metrics.record_sweep("failed", len(report.failures))
        logger.info(
            "No-show sweep finished: %d marked, %d skipped, %d failed",
            report.processed_count,
            report.skipped_count,
            len(report.failures),
        )
        return report
