# backend/clinic_booking/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected. The clock and the
notification dispatcher are dependencies too, so tests can pin time and
capture notifications by overriding them.
"""

import logging
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from ...core.config import settings
from ...core.timezone_utils import Clock, utc_now
from ...services.booking_lifecycle import BookingLifecycle
from ...services.booking_orchestrator import BookingOrchestrator
from ...services.checkin_gateway import CheckInGateway
from ...services.checkin_token_codec import CheckinTokenCodec
from ...services.deferred_submission_queue import DeferredSubmissionQueue
from ...services.no_show_sweep import NoShowSweep
from ...services.notification_dispatcher import NotificationDispatcher, default_dispatcher
from ...services.slot_reservation_manager import SlotReservationManager
from .database import get_db

logger = logging.getLogger(__name__)


def get_clock() -> Clock:
    return utc_now


def get_notification_dispatcher() -> NotificationDispatcher:
    return default_dispatcher()


def get_deferred_queue() -> Optional[DeferredSubmissionQueue]:
    if not settings.deferred_queue_enabled:
        return None
    return DeferredSubmissionQueue.from_settings()


def get_token_codec(clock: Clock = Depends(get_clock)) -> CheckinTokenCodec:
    """Codec built from configured keys; raises ServiceException when keys are missing."""
    return CheckinTokenCodec.from_settings(now_fn=clock)


def get_slot_reservation_manager(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> SlotReservationManager:
    return SlotReservationManager(db, now_fn=clock)


def get_booking_lifecycle(
    db: Session = Depends(get_db),
    codec: CheckinTokenCodec = Depends(get_token_codec),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    clock: Clock = Depends(get_clock),
) -> BookingLifecycle:
    """
    Get booking lifecycle service instance with all dependencies.

    Args:
        db: Database session
        codec: Check-in token codec used when bookings are created
        dispatcher: Fire-and-forget notification channel
        clock: Source of the current time

    Returns:
        BookingLifecycle instance
    """
    return BookingLifecycle(db, codec, dispatcher=dispatcher, now_fn=clock)


def get_booking_orchestrator(
    db: Session = Depends(get_db),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
    reservations: SlotReservationManager = Depends(get_slot_reservation_manager),
    deferred_queue: Optional[DeferredSubmissionQueue] = Depends(get_deferred_queue),
) -> BookingOrchestrator:
    return BookingOrchestrator(db, lifecycle, reservations, deferred_queue=deferred_queue)


def get_checkin_gateway(
    db: Session = Depends(get_db),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
    codec: CheckinTokenCodec = Depends(get_token_codec),
) -> CheckInGateway:
    return CheckInGateway(db, lifecycle, codec)


def get_no_show_sweep(
    db: Session = Depends(get_db),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
) -> NoShowSweep:
    return NoShowSweep(db, lifecycle)
