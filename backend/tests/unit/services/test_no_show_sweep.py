from datetime import date, time

from clinic_booking.models.booking import BookingStatus, CheckinStatus
from clinic_booking.services.no_show_sweep import NoShowSweep


def test_overdue_unattended_booking_is_marked(lifecycle, clock, dispatcher, make_candidate) -> None:
    booking = lifecycle.create(make_candidate(time_slot=time(16, 0)))
    clock.advance(hours=2, minutes=1)  # 16:00 start, 60 minute grace

    report = NoShowSweep(lifecycle.db, lifecycle).run()

    assert report.processed_count == 1
    assert report.failures == []
    refreshed = lifecycle.get(booking.id)
    assert refreshed.booking_status == BookingStatus.NO_SHOW.value
    assert refreshed.checkin_status == CheckinStatus.MISSED.value
    assert "booking.no_show" in dispatcher.names()


def test_second_run_changes_nothing(lifecycle, clock, make_candidate) -> None:
    lifecycle.create(make_candidate())
    clock.advance(hours=3)
    sweep = NoShowSweep(lifecycle.db, lifecycle)
    sweep.run()

    report = sweep.run()

    assert report.processed_count == 0
    assert report.failures == []


def test_bookings_inside_grace_are_left_alone(lifecycle, clock, make_candidate) -> None:
    early = lifecycle.create(make_candidate(subject_id="patient-1", time_slot=time(16, 0)))
    later = lifecycle.create(make_candidate(subject_id="patient-2", time_slot=time(17, 0)))
    clock.advance(hours=2, minutes=30)  # 17:30 local: 16:00 is overdue, 17:00 still in grace

    report = NoShowSweep(lifecycle.db, lifecycle).run()

    assert report.processed_count == 1
    assert lifecycle.get(early.id).booking_status == BookingStatus.NO_SHOW.value
    assert lifecycle.get(later.id).booking_status == BookingStatus.CONFIRMED.value


def test_checked_in_and_cancelled_bookings_are_never_touched(lifecycle, clock, make_candidate) -> None:
    arrived = lifecycle.create(make_candidate(subject_id="patient-1", time_slot=time(16, 0)))
    lifecycle.check_in(arrived.id)
    cancelled = lifecycle.create(make_candidate(subject_id="patient-2", time_slot=time(16, 30)))
    lifecycle.cancel_by_subject(cancelled.id)
    clock.advance(days=1)

    report = NoShowSweep(lifecycle.db, lifecycle).run()

    assert report.processed_count == 0
    assert lifecycle.get(arrived.id).checkin_status == CheckinStatus.CHECKED_IN.value
    assert lifecycle.get(cancelled.id).booking_status == BookingStatus.CANCELLED_BY_SUBJECT.value


def test_one_failure_does_not_stop_the_batch(lifecycle, clock, make_candidate, monkeypatch) -> None:
    first = lifecycle.create(make_candidate(subject_id="patient-1", time_slot=time(16, 0)))
    second = lifecycle.create(make_candidate(subject_id="patient-2", time_slot=time(16, 30)))
    clock.advance(hours=3)

    real_attempt = lifecycle.attempt_mark_no_show

    def flaky(booking_id: str):
        if booking_id == first.id:
            raise RuntimeError("lock timeout")
        return real_attempt(booking_id)

    monkeypatch.setattr(lifecycle, "attempt_mark_no_show", flaky)

    report = NoShowSweep(lifecycle.db, lifecycle).run()

    assert report.processed_count == 1
    assert len(report.failures) == 1
    assert report.failures[0].booking_id == first.id
    assert report.failures[0].error_type == "RuntimeError"
    assert report.to_dict()["failures"][0]["message"] == "lock timeout"
    assert lifecycle.get(first.id).booking_status == BookingStatus.CONFIRMED.value
    assert lifecycle.get(second.id).booking_status == BookingStatus.NO_SHOW.value


def test_booking_checked_in_meanwhile_counts_as_skipped(lifecycle, clock, make_candidate, monkeypatch) -> None:
    booking = lifecycle.create(make_candidate())
    clock.advance(hours=3)
    real_attempt = lifecycle.attempt_mark_no_show

    def racing_check_in(booking_id: str):
        # Staff check the subject in between candidate selection and the update.
        clock.advance(hours=-3)
        lifecycle.check_in(booking_id)
        clock.advance(hours=3)
        return real_attempt(booking_id)

    monkeypatch.setattr(lifecycle, "attempt_mark_no_show", racing_check_in)

    report = NoShowSweep(lifecycle.db, lifecycle).run()

    assert report.processed_count == 0
    assert report.skipped_count == 1
    assert lifecycle.get(booking.id).checkin_status == CheckinStatus.CHECKED_IN.value


def test_batch_size_bounds_a_run(lifecycle, clock, make_candidate) -> None:
    for index, slot in enumerate([time(16, 0), time(16, 30), time(17, 0)]):
        lifecycle.create(make_candidate(subject_id=f"patient-{index}", time_slot=slot, booking_date=date(2026, 3, 2)))
    clock.advance(days=1)

    sweep = NoShowSweep(lifecycle.db, lifecycle, batch_size=2)

    assert sweep.run().processed_count == 2
    assert sweep.run().processed_count == 1
