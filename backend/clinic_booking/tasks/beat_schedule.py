# backend/clinic_booking/tasks/beat_schedule.py
"""
Celery Beat schedule for the booking reconciliation jobs.

The no-show sweep runs on a fixed interval. Auto-confirmation only matters
when bookings start out pending, and deferred reconciliation only when the
fallback queue is enabled, so each is added conditionally.
"""

from datetime import timedelta
from typing import Any, Dict, Optional

from celery.schedules import crontab

from ..core.config import Settings, settings


def _interval(minutes: int) -> Any:
    """Crontab when the interval divides an hour evenly, otherwise a plain timedelta."""
    if minutes == 60:
        return crontab(minute=0)
    if minutes < 60 and 60 % minutes == 0:
        return crontab(minute=f"*/{minutes}")
    return timedelta(minutes=minutes)


def get_beat_schedule(config: Optional[Settings] = None) -> Dict[str, Dict[str, Any]]:
    config = config or settings

    schedule: Dict[str, Dict[str, Any]] = {
        "no-show-sweep": {
            "task": "clinic_booking.tasks.booking_tasks.run_no_show_sweep",
            "schedule": _interval(config.no_show_sweep_interval_minutes),
            "options": {"queue": "reconciliation", "priority": 5},
        },
    }

    if config.initial_booking_status == "pending":
        schedule["auto-confirm-pending-bookings"] = {
            "task": "clinic_booking.tasks.booking_tasks.confirm_pending_bookings",
            "schedule": crontab(minute="*/5"),
            "options": {"queue": "reconciliation", "priority": 4},
        }

    if config.deferred_queue_enabled:
        schedule["reconcile-deferred-submissions"] = {
            "task": "clinic_booking.tasks.booking_tasks.reconcile_deferred_submissions",
            "schedule": crontab(minute="*/2"),
            "options": {"queue": "reconciliation", "priority": 6},
        }

    return schedule
