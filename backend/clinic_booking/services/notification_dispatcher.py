# backend/clinic_booking/services/notification_dispatcher.py
"""
Fire-and-forget notifications on booking transitions.

Dispatch happens after the transition has committed. A failure to hand the
event off is logged and dropped; it never rolls back or blocks the change.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

from ..core.config import settings
from ..models.booking import Booking

logger = logging.getLogger(__name__)

BOOKING_CONFIRMED = "booking.confirmed"
BOOKING_CANCELLED = "booking.cancelled"
BOOKING_NO_SHOW = "booking.no_show"
BOOKING_CHECKED_IN = "booking.checked_in"
BOOKING_COMPLETED = "booking.completed"


class NotificationDispatcher(Protocol):
    def notify(self, event: str, booking: Booking) -> None: ...


def build_event(event: str, booking: Booking) -> Dict[str, Any]:
    return {"event": event, "booking": booking.to_dict()}


class LoggingNotificationDispatcher:
    """Used when no delivery channel is configured."""

    def notify(self, event: str, booking: Booking) -> None:
        logger.info(
            "Booking notification %s for %s",
            event,
            booking.id,
            extra={"event": event, "booking_id": booking.id},
        )


class CeleryNotificationDispatcher:
    """Queues the delivery task; the worker POSTs to the webhook."""

    def notify(self, event: str, booking: Booking) -> None:
        # Imported lazily: the task module imports the service layer.
        from ..tasks.booking_tasks import dispatch_booking_notification

        try:
            dispatch_booking_notification.delay(build_event(event, booking))
        except Exception as exc:
            logger.warning(
                "Failed to queue booking notification",
                extra={
                    "event": event,
                    "booking_id": booking.id,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )


def default_dispatcher(webhook_url: Optional[str] = None) -> NotificationDispatcher:
    if webhook_url or settings.notification_webhook_url:
        return CeleryNotificationDispatcher()
    return LoggingNotificationDispatcher()
