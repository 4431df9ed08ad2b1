from datetime import timedelta

from celery.schedules import crontab

from clinic_booking.core.config import settings
from clinic_booking.tasks.beat_schedule import get_beat_schedule


def _config(**overrides):
    return settings.model_copy(update=overrides)


def test_default_schedule_only_sweeps() -> None:
    schedule = get_beat_schedule(
        _config(initial_booking_status="confirmed", deferred_queue_enabled=False)
    )

    assert list(schedule) == ["no-show-sweep"]
    entry = schedule["no-show-sweep"]
    assert entry["task"] == "clinic_booking.tasks.booking_tasks.run_no_show_sweep"
    assert entry["schedule"] == crontab(minute=0)
    assert entry["options"]["queue"] == "reconciliation"


def test_pending_policy_adds_auto_confirm() -> None:
    schedule = get_beat_schedule(_config(initial_booking_status="pending"))

    assert (
        schedule["auto-confirm-pending-bookings"]["task"]
        == "clinic_booking.tasks.booking_tasks.confirm_pending_bookings"
    )


def test_deferred_queue_adds_reconciliation() -> None:
    schedule = get_beat_schedule(_config(deferred_queue_enabled=True))

    assert "reconcile-deferred-submissions" in schedule


def test_sweep_interval_shapes() -> None:
    every_quarter = get_beat_schedule(_config(no_show_sweep_interval_minutes=15))
    odd = get_beat_schedule(_config(no_show_sweep_interval_minutes=45))

    assert every_quarter["no-show-sweep"]["schedule"] == crontab(minute="*/15")
    assert odd["no-show-sweep"]["schedule"] == timedelta(minutes=45)
