# backend/clinic_booking/tasks/booking_tasks.py
"""
Periodic reconciliation and notification delivery tasks.

Each task opens its own short-lived session and builds the services it
needs; none of them keeps state between runs.
"""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import Any, Callable, Dict, ParamSpec, Protocol, TypeVar, cast

from celery.result import AsyncResult
import httpx
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import ValidationException
from ..database import get_db_session
from ..services.booking_lifecycle import BookingCandidate, BookingLifecycle
from ..services.booking_orchestrator import (
    BookingOrchestrator,
    BookingSubmission,
    InfrastructureFailure,
)
from ..services.checkin_token_codec import CheckinTokenCodec
from ..services.deferred_submission_queue import DeferredSubmissionQueue
from ..services.no_show_sweep import NoShowSweep
from ..services.slot_reservation_manager import SlotReservationManager
from .celery_app import celery_app

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R", covariant=True)


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    delay: "Callable[..., AsyncResult[Any]]"
    apply_async: "Callable[..., AsyncResult[Any]]"


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""

    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, **task_kwargs),
    )


def _build_lifecycle(db: Session) -> BookingLifecycle:
    return BookingLifecycle(db, CheckinTokenCodec.from_settings())


def _build_orchestrator(db: Session) -> BookingOrchestrator:
    return BookingOrchestrator(db, _build_lifecycle(db), SlotReservationManager(db))


@typed_task(name="clinic_booking.tasks.booking_tasks.run_no_show_sweep")
def run_no_show_sweep() -> Dict[str, Any]:
    """Mark overdue unattended bookings as no-shows."""
    with get_db_session() as db:
        report = NoShowSweep(db, _build_lifecycle(db)).run()
    return report.to_dict()


@typed_task(name="clinic_booking.tasks.booking_tasks.confirm_pending_bookings")
def confirm_pending_bookings() -> Dict[str, Any]:
    """Confirm pending bookings that have waited past the auto-confirm delay."""
    if settings.initial_booking_status != "pending":
        return {"status": "skipped", "reason": "bookings_start_confirmed"}

    with get_db_session() as db:
        report = _build_orchestrator(db).auto_confirm_pending()
    logger.info(
        "Auto-confirmed %d pending bookings (%d conflicts, %d failures)",
        report.confirmed_count,
        report.conflict_count,
        len(report.failures),
    )
    return report.to_dict()


@typed_task(name="clinic_booking.tasks.booking_tasks.reconcile_deferred_submissions")
def reconcile_deferred_submissions(max_attempts: int = 5) -> Dict[str, Any]:
    """
    Replay submissions deferred while the store was unreachable.

    Each entry is processed at most once per run. Entries that fail again on
    infrastructure are pushed back with an incremented attempt count until
    ``max_attempts`` is reached, after which they are dropped and logged.
    """
    queue = DeferredSubmissionQueue.from_settings()
    summary = {"booked": 0, "conflicts": 0, "requeued": 0, "dropped": 0}

    pending = queue.size()
    with get_db_session() as db:
        orchestrator = _build_orchestrator(db)
        for _ in range(pending):
            submission = queue.pop()
            if submission is None:
                continue

            candidate = BookingCandidate(
                subject_id=submission.subject_id,
                resource_key=submission.resource_key,
                booking_date=submission.booking_date,
                time_slot=submission.time_slot,
            )
            try:
                result = orchestrator.submit_booking(
                    candidate, submission.reservation_id, defer_on_failure=False
                )
            except ValidationException as exc:
                summary["dropped"] += 1
                logger.warning(
                    "Dropping deferred submission %s: %s",
                    submission.deferral_id,
                    exc.message,
                    extra={"deferral_id": submission.deferral_id},
                )
                continue

            if isinstance(result, InfrastructureFailure):
                attempts = submission.attempts + 1
                if attempts >= max_attempts:
                    summary["dropped"] += 1
                    logger.error(
                        "Giving up on deferred submission %s after %d attempts",
                        submission.deferral_id,
                        attempts,
                        extra={"deferral_id": submission.deferral_id},
                    )
                    continue
                queue.push(replace(submission, attempts=attempts))
                summary["requeued"] += 1
            elif isinstance(result, BookingSubmission):
                summary["booked"] += 1
            else:
                summary["conflicts"] += 1
                logger.info(
                    "Deferred submission %s lost its slot",
                    submission.deferral_id,
                    extra={"deferral_id": submission.deferral_id},
                )

    return summary


@typed_task(
    bind=True,
    max_retries=3,
    name="clinic_booking.tasks.booking_tasks.dispatch_booking_notification",
)
def dispatch_booking_notification(self: Any, event_payload: Dict[str, Any]) -> Dict[str, Any]:
    """POST a booking event to the configured webhook."""
    url = settings.notification_webhook_url
    if not url:
        logger.debug("No notification webhook configured; dropping %s", event_payload.get("event"))
        return {"status": "skipped", "reason": "no_webhook"}

    try:
        response = httpx.post(
            url, json=event_payload, timeout=settings.notification_timeout_seconds
        )
        response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning(
            "Booking notification delivery failed: %s",
            exc,
            extra={"event": event_payload.get("event")},
        )
        raise self.retry(exc=exc, countdown=30)

    return {"status": "delivered", "status_code": response.status_code}
