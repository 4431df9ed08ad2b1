# backend/clinic_booking/services/booking_orchestrator.py
"""
Booking orchestrator.

Turns a slot request into either a booking with its check-in token or a
structured conflict with alternatives. Transient infrastructure failures
are retried with backoff; a taken slot is never retried because the same
write cannot succeed twice.

Results are returned as typed values so the API layer can render specific
guidance:

- BookingSubmission: the booking and its token
- SlotConflictResult: the slot is taken; carries alternatives and their scope
- InfrastructureFailure: the store stayed unavailable through every retry
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time, timedelta
import logging
import time as time_module
from typing import Callable, List, Optional, Tuple, TypeVar, Union

from sqlalchemy.orm import Session

from ..core.clinic_schedule import ClinicSchedule
from ..core.config import settings
from ..core.exceptions import (
    InfrastructureException,
    ReconciliationFailure,
    SlotConflictException,
)
from ..core.timezone_utils import Clock
from ..models.booking import Booking
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService
from .booking_lifecycle import ACTOR_SYSTEM, BookingCandidate, BookingLifecycle
from .conflict_resolver import (
    SCOPE_NONE,
    AlternativeSlot,
    lookahead_window,
    retry_with_backoff,
    suggest_alternatives,
)
from .deferred_submission_queue import (
    DeferredSubmission,
    DeferredSubmissionQueue,
    new_deferral_id,
)
from .reservation_stores import Reservation
from .slot_reservation_manager import SlotReservationManager

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BookingSubmission:
    booking: Booking
    token: str


@dataclass(frozen=True)
class SlotConflictResult:
    resource_key: str
    booking_date: date
    time_slot: time
    alternatives: Tuple[AlternativeSlot, ...]
    scope: str  # same_day | lookahead | none

    @property
    def has_alternatives(self) -> bool:
        return self.scope != SCOPE_NONE


@dataclass(frozen=True)
class InfrastructureFailure:
    message: str
    attempts: int
    deferral_id: Optional[str] = None


SubmitResult = Union[BookingSubmission, SlotConflictResult, InfrastructureFailure]


@dataclass
class AutoConfirmReport:
    confirmed_count: int = 0
    conflict_count: int = 0
    failures: List[ReconciliationFailure] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "confirmed_count": self.confirmed_count,
            "conflict_count": self.conflict_count,
            "failures": [failure.to_dict() for failure in self.failures],
        }


class BookingOrchestrator(BaseService):
    """Submits bookings, resolves conflicts and drives the retry policy."""

    def __init__(
        self,
        db: Session,
        lifecycle: BookingLifecycle,
        reservations: SlotReservationManager,
        schedule: Optional[ClinicSchedule] = None,
        deferred_queue: Optional[DeferredSubmissionQueue] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_alternatives: Optional[int] = None,
        lookahead_days: Optional[int] = None,
        sleep: Callable[[float], None] = time_module.sleep,
        now_fn: Optional[Clock] = None,
    ):
        super().__init__(db, now_fn or lifecycle.now_fn)
        self.lifecycle = lifecycle
        self.reservations = reservations
        self.schedule = schedule or ClinicSchedule.from_settings()
        self.deferred_queue = deferred_queue
        self.max_attempts = max_attempts or settings.booking_retry_max_attempts
        self.base_delay = (
            base_delay if base_delay is not None else settings.booking_retry_base_delay
        )
        self.max_alternatives = (
            max_alternatives if max_alternatives is not None else settings.max_alternatives
        )
        self.lookahead_days = (
            lookahead_days if lookahead_days is not None else settings.alternative_lookahead_days
        )
        self.sleep = sleep

    def _retry(self, op_name: str, func: Callable[[], T]) -> T:
        return retry_with_backoff(
            op_name,
            func,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            sleep=self.sleep,
            on_retry=lambda _attempt, _exc: prometheus_metrics.record_retry(op_name),
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    @BaseService.measure_operation("submit_booking")
    def submit_booking(
        self,
        candidate: BookingCandidate,
        reservation_id: Optional[str] = None,
        defer_on_failure: bool = True,
    ) -> SubmitResult:
        """
        Book ``candidate``, optionally consuming the caller's reservation.

        A missing or expired reservation is tolerated. A live reservation
        held by another subject on the same slot is a conflict.

        Raises:
            ValidationException: the slot is not bookable (past, too far ahead, off-grid)
        """
        self.schedule.validate_candidate(candidate.booking_date, candidate.time_slot, self.now())

        try:
            booking = self._retry("submit_booking", lambda: self._create(candidate))
        except SlotConflictException:
            return self._conflict_result(candidate)
        except InfrastructureException as exc:
            return self._infrastructure_failure(candidate, reservation_id, exc, defer_on_failure)

        self._release_reservation(reservation_id, candidate)
        prometheus_metrics.record_submission("booked")
        return BookingSubmission(booking=booking, token=str(booking.token_material))

    def _create(self, candidate: BookingCandidate) -> Booking:
        holder = self.reservations.holder_of(
            candidate.resource_key, candidate.booking_date, candidate.time_slot
        )
        if holder is not None and holder.subject_id != candidate.subject_id:
            raise SlotConflictException(
                candidate.resource_key,
                candidate.booking_date,
                candidate.time_slot,
                message="This time slot is currently reserved by another patient",
            )
        return self.lifecycle.create(candidate)

    def _release_reservation(self, reservation_id: Optional[str], candidate: BookingCandidate) -> None:
        """Best-effort: a reservation left behind simply expires."""
        if not reservation_id:
            return
        try:
            reservation: Optional[Reservation] = self.reservations.get(reservation_id)
            if reservation is None or reservation.subject_id != candidate.subject_id:
                return
            # A hold on another slot stays with its owner.
            if not reservation.covers(
                candidate.resource_key, candidate.booking_date, candidate.time_slot
            ):
                return
            self.reservations.release(reservation_id)
        except InfrastructureException as exc:
            self.logger.warning(
                "Could not release reservation %s after booking: %s", reservation_id, exc
            )

    def _conflict_result(self, candidate: BookingCandidate) -> Union[SlotConflictResult, InfrastructureFailure]:
        try:
            result = self._retry("suggest_alternatives", lambda: self.alternatives_for(candidate))
        except InfrastructureException as exc:
            prometheus_metrics.record_submission("infrastructure_error")
            return InfrastructureFailure(message=exc.message, attempts=self.max_attempts)

        prometheus_metrics.record_submission(
            "conflict" if result.has_alternatives else "no_alternatives"
        )
        self.logger.info(
            "Slot conflict for %s %s %s; offering %d alternatives (%s)",
            candidate.resource_key,
            candidate.booking_date,
            candidate.time_slot,
            len(result.alternatives),
            result.scope,
        )
        return result

    def alternatives_for(self, candidate: BookingCandidate) -> SlotConflictResult:
        """Open slots to offer instead of the candidate's slot, as of now."""
        start, end = lookahead_window(candidate.booking_date, self.lookahead_days)
        occupied = self.lifecycle.repository.active_slots_between(
            candidate.resource_key, start, end
        )
        occupied |= self.reservations.held_slots(candidate.resource_key, start, end)
        suggestions = suggest_alternatives(
            self.schedule,
            candidate.resource_key,
            candidate.booking_date,
            candidate.time_slot,
            occupied,
            self.now(),
            max_results=self.max_alternatives,
            lookahead_days=self.lookahead_days,
        )
        return SlotConflictResult(
            resource_key=candidate.resource_key,
            booking_date=candidate.booking_date,
            time_slot=candidate.time_slot,
            alternatives=suggestions.slots,
            scope=suggestions.scope,
        )

    def _infrastructure_failure(
        self,
        candidate: BookingCandidate,
        reservation_id: Optional[str],
        exc: InfrastructureException,
        defer: bool,
    ) -> InfrastructureFailure:
        prometheus_metrics.record_submission("infrastructure_error")
        self.logger.error(
            "Booking submission failed after %d attempts: %s", self.max_attempts, exc.message
        )
        deferral_id: Optional[str] = None
        if defer and self.deferred_queue is not None:
            submission = DeferredSubmission(
                deferral_id=new_deferral_id(),
                subject_id=candidate.subject_id,
                resource_key=candidate.resource_key,
                booking_date=candidate.booking_date,
                time_slot=candidate.time_slot,
                deferred_at=self.now(),
                reservation_id=reservation_id,
            )
            try:
                deferral_id = self.deferred_queue.push(submission).deferral_id
            except InfrastructureException as queue_exc:
                self.logger.error("Deferred queue unavailable too: %s", queue_exc.message)
        return InfrastructureFailure(
            message=exc.message, attempts=self.max_attempts, deferral_id=deferral_id
        )

    # ------------------------------------------------------------------
    # Other entry points
    # ------------------------------------------------------------------

    @BaseService.measure_operation("cancel")
    def cancel(
        self, booking_id: str, reason: Optional[str] = None, subject_id: Optional[str] = None
    ) -> Booking:
        """
        Cancel a booking on the subject's behalf, retrying transient failures.

        Raises:
            InvalidTransitionException: booking can no longer be cancelled
        """
        result = self._retry(
            "cancel",
            lambda: self.lifecycle.cancel_by_subject(booking_id, reason, subject_id=subject_id),
        )
        return result

    @BaseService.measure_operation("auto_confirm_pending")
    def auto_confirm_pending(
        self, older_than: Optional[timedelta] = None, limit: int = 500
    ) -> AutoConfirmReport:
        """Confirm pending bookings created more than ``older_than`` ago."""
        age = (
            older_than
            if older_than is not None
            else timedelta(minutes=settings.auto_confirm_after_minutes)
        )
        report = AutoConfirmReport()
        pending = self.lifecycle.repository.get_pending_created_before(self.now() - age, limit)
        for booking in pending:
            booking_id = str(booking.id)
            try:
                self.lifecycle.confirm(booking_id, actor=ACTOR_SYSTEM)
                report.confirmed_count += 1
            except SlotConflictException:
                report.conflict_count += 1
                self.logger.info("Pending booking %s lost its slot; left pending", booking_id)
            except Exception as exc:
                report.failures.append(
                    ReconciliationFailure(booking_id, type(exc).__name__, str(exc))
                )
                self.logger.error(
                    "Auto-confirm failed for booking %s: %s",
                    booking_id,
                    exc,
                    extra={"booking_id": booking_id, "error_type": type(exc).__name__},
                )
        return report
