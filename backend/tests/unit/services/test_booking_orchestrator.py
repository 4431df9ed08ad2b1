from __future__ import annotations

from datetime import date, time, timedelta
from unittest.mock import MagicMock, Mock

import pytest

from clinic_booking.core.exceptions import (
    InfrastructureException,
    SlotConflictException,
    ValidationException,
)
from clinic_booking.models.booking import BookingStatus
from clinic_booking.services.booking_lifecycle import BookingLifecycle
from clinic_booking.services.booking_orchestrator import (
    BookingOrchestrator,
    BookingSubmission,
    InfrastructureFailure,
    SlotConflictResult,
)
from clinic_booking.services.conflict_resolver import SCOPE_LOOKAHEAD, SCOPE_NONE, SCOPE_SAME_DAY
from clinic_booking.services.reservation_stores import Reservation
from tests.conftest import RESOURCE, TODAY

WEEKDAY_SLOTS = [time(16, 0), time(16, 30), time(17, 0), time(17, 30), time(18, 0), time(18, 30)]


def _unavailable() -> InfrastructureException:
    return InfrastructureException("store down", code="INFRASTRUCTURE_UNAVAILABLE")


class TestSubmit:
    def test_books_free_slot_and_returns_token(self, orchestrator, codec, make_candidate) -> None:
        result = orchestrator.submit_booking(make_candidate())

        assert isinstance(result, BookingSubmission)
        assert result.booking.booking_status == BookingStatus.CONFIRMED.value
        assert codec.verify(codec.parse(result.token), result.booking)

    def test_consumes_own_reservation(self, orchestrator, reservations, make_candidate) -> None:
        reservation = reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-1")

        result = orchestrator.submit_booking(make_candidate(), reservation.reservation_id)

        assert isinstance(result, BookingSubmission)
        assert reservations.get(reservation.reservation_id) is None

    def test_own_reservation_for_another_slot_is_kept(self, orchestrator, reservations, make_candidate) -> None:
        reservation = reservations.reserve(RESOURCE, TODAY, time(17, 0), "patient-1")

        result = orchestrator.submit_booking(make_candidate(time_slot=time(16, 0)), reservation.reservation_id)

        assert isinstance(result, BookingSubmission)
        assert reservations.get(reservation.reservation_id) is not None

    def test_expired_reservation_is_tolerated(self, orchestrator, reservations, clock, make_candidate) -> None:
        reservation = reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-1")
        clock.advance(minutes=10)

        result = orchestrator.submit_booking(make_candidate(), reservation.reservation_id)

        assert isinstance(result, BookingSubmission)

    def test_slot_reserved_by_someone_else_is_a_conflict(self, orchestrator, reservations, make_candidate) -> None:
        reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-2")

        result = orchestrator.submit_booking(make_candidate(subject_id="patient-1"))

        assert isinstance(result, SlotConflictResult)

    def test_rejects_unbookable_slot(self, orchestrator, make_candidate) -> None:
        with pytest.raises(ValidationException):
            orchestrator.submit_booking(make_candidate(booking_date=date(2026, 3, 1)))


class TestConflicts:
    def test_conflict_offers_same_day_alternatives(self, orchestrator, lifecycle, reservations, make_candidate) -> None:
        lifecycle.create(make_candidate(subject_id="patient-9", time_slot=time(16, 0)))
        lifecycle.create(make_candidate(subject_id="patient-8", time_slot=time(16, 30)))
        reservations.reserve(RESOURCE, TODAY, time(17, 0), "patient-7")

        result = orchestrator.submit_booking(make_candidate(subject_id="patient-1"))

        assert isinstance(result, SlotConflictResult)
        assert result.scope == SCOPE_SAME_DAY
        assert result.has_alternatives
        offered = [slot.time_slot for slot in result.alternatives]
        assert offered == [time(17, 30), time(18, 0), time(18, 30)]

    def test_conflict_looks_ahead_when_day_is_full(self, db, lifecycle, reservations, schedule, make_candidate) -> None:
        for index, slot in enumerate(WEEKDAY_SLOTS):
            lifecycle.create(make_candidate(subject_id=f"patient-{index + 10}", time_slot=slot))
        orchestrator = BookingOrchestrator(
            db, lifecycle, reservations, schedule=schedule, lookahead_days=2, max_alternatives=2, sleep=Mock()
        )

        result = orchestrator.submit_booking(make_candidate(subject_id="patient-1"))

        assert isinstance(result, SlotConflictResult)
        assert result.scope == SCOPE_LOOKAHEAD
        assert [(s.booking_date, s.time_slot) for s in result.alternatives] == [
            (date(2026, 3, 3), time(16, 0)),
            (date(2026, 3, 3), time(16, 30)),
        ]

    def test_conflict_without_alternatives(self, db, lifecycle, reservations, schedule, make_candidate) -> None:
        for index, slot in enumerate(WEEKDAY_SLOTS):
            lifecycle.create(make_candidate(subject_id=f"patient-{index + 10}", time_slot=slot))
        orchestrator = BookingOrchestrator(
            db, lifecycle, reservations, schedule=schedule, lookahead_days=0, sleep=Mock()
        )

        result = orchestrator.submit_booking(make_candidate(subject_id="patient-1"))

        assert isinstance(result, SlotConflictResult)
        assert result.scope == SCOPE_NONE
        assert result.alternatives == ()
        assert not result.has_alternatives

    def test_conflict_is_not_retried(self, orchestrator, lifecycle, sleeps, make_candidate, monkeypatch) -> None:
        create = Mock(side_effect=SlotConflictException(RESOURCE, TODAY, time(16, 0)))
        monkeypatch.setattr(lifecycle, "create", create)

        result = orchestrator.submit_booking(make_candidate())

        assert isinstance(result, SlotConflictResult)
        assert create.call_count == 1
        assert sleeps == []


class TestRetries:
    def test_transient_failures_are_retried_with_backoff(
        self, orchestrator, lifecycle, sleeps, make_candidate, monkeypatch
    ) -> None:
        real_create = lifecycle.create
        create = Mock(side_effect=[_unavailable(), _unavailable(), real_create])

        def flaky(candidate):
            outcome = create(candidate)
            return outcome(candidate) if callable(outcome) else outcome

        monkeypatch.setattr(lifecycle, "create", flaky)

        result = orchestrator.submit_booking(make_candidate())

        assert isinstance(result, BookingSubmission)
        assert create.call_count == 3
        assert len(sleeps) == 2
        assert 0.1 <= sleeps[0] <= 0.15
        assert 0.2 <= sleeps[1] <= 0.25

    def test_exhausted_retries_report_infrastructure_failure(
        self, orchestrator, lifecycle, sleeps, make_candidate, monkeypatch
    ) -> None:
        monkeypatch.setattr(lifecycle, "create", Mock(side_effect=_unavailable()))

        result = orchestrator.submit_booking(make_candidate())

        assert isinstance(result, InfrastructureFailure)
        assert result.attempts == 3
        assert result.deferral_id is None
        assert len(sleeps) == 2

    def test_exhausted_retries_defer_when_queue_configured(
        self, db, lifecycle, reservations, schedule, make_candidate, monkeypatch
    ) -> None:
        queue = MagicMock()
        queue.push.side_effect = lambda submission: submission
        orchestrator = BookingOrchestrator(
            db, lifecycle, reservations, schedule=schedule, deferred_queue=queue, sleep=Mock()
        )
        monkeypatch.setattr(lifecycle, "create", Mock(side_effect=_unavailable()))

        result = orchestrator.submit_booking(make_candidate(), reservation_id="01HRESERVATIONXXXXXXXXXXXX")

        assert isinstance(result, InfrastructureFailure)
        assert result.deferral_id is not None
        submission = queue.push.call_args.args[0]
        assert submission.status == "needs_reconciliation"
        assert submission.subject_id == "patient-1"
        assert submission.reservation_id == "01HRESERVATIONXXXXXXXXXXXX"

    def test_deferral_can_be_disabled_per_call(
        self, db, lifecycle, reservations, schedule, make_candidate, monkeypatch
    ) -> None:
        queue = MagicMock()
        orchestrator = BookingOrchestrator(
            db, lifecycle, reservations, schedule=schedule, deferred_queue=queue, sleep=Mock()
        )
        monkeypatch.setattr(lifecycle, "create", Mock(side_effect=_unavailable()))

        result = orchestrator.submit_booking(make_candidate(), defer_on_failure=False)

        assert isinstance(result, InfrastructureFailure)
        queue.push.assert_not_called()

    def test_reservation_store_outage_is_retried(
        self, orchestrator, reservations, sleeps, make_candidate, monkeypatch
    ) -> None:
        holder_of = Mock(side_effect=[_unavailable(), None])
        monkeypatch.setattr(reservations, "holder_of", holder_of)

        result = orchestrator.submit_booking(make_candidate())

        assert isinstance(result, BookingSubmission)
        assert len(sleeps) == 1


class TestCancelAndAutoConfirm:
    def test_cancel_goes_through_lifecycle(self, orchestrator, make_candidate) -> None:
        booking = orchestrator.submit_booking(make_candidate()).booking

        cancelled = orchestrator.cancel(booking.id, "schedule clash", subject_id="patient-1")

        assert cancelled.booking_status == BookingStatus.CANCELLED_BY_SUBJECT.value

    def test_auto_confirm_promotes_old_pending_bookings(
        self, db, codec, dispatcher, clock, reservations, schedule, make_candidate
    ) -> None:
        lifecycle = BookingLifecycle(
            db, codec, dispatcher=dispatcher, initial_status="pending", now_fn=clock
        )
        orchestrator = BookingOrchestrator(db, lifecycle, reservations, schedule=schedule, sleep=Mock())
        old = lifecycle.create(make_candidate(subject_id="patient-1", time_slot=time(17, 0)))
        clock.advance(minutes=15)
        fresh = lifecycle.create(make_candidate(subject_id="patient-2", time_slot=time(17, 30)))

        report = orchestrator.auto_confirm_pending(older_than=timedelta(minutes=10))

        assert report.confirmed_count == 1
        assert report.to_dict()["failures"] == []
        assert lifecycle.get(old.id).booking_status == BookingStatus.CONFIRMED.value
        assert lifecycle.get(fresh.id).booking_status == BookingStatus.PENDING.value


def test_foreign_reservation_is_left_in_place(orchestrator, reservations, make_candidate) -> None:
    reservation = reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-2")
    assert isinstance(reservation, Reservation)

    result = orchestrator.submit_booking(make_candidate(subject_id="patient-1"), reservation.reservation_id)

    assert isinstance(result, SlotConflictResult)
    assert reservations.get(reservation.reservation_id) is not None
