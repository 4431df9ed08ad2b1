from datetime import date, time, timedelta

import pytest

from clinic_booking.core.exceptions import ValidationException
from clinic_booking.services.reservation_stores import Reservation
from clinic_booking.services.slot_reservation_manager import ReservationDenied
from tests.conftest import RESOURCE, START, TODAY


class TestReserve:
    def test_grants_reservation_with_ttl(self, reservations) -> None:
        result = reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-1")

        assert isinstance(result, Reservation)
        assert result.subject_id == "patient-1"
        assert result.expires_at == START + timedelta(seconds=300)

    def test_second_subject_is_denied_while_live(self, reservations) -> None:
        reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-1")

        result = reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-2")

        assert isinstance(result, ReservationDenied)
        assert result.reason == "reserved"

    def test_expired_reservation_frees_the_slot(self, reservations, clock) -> None:
        first = reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-1")

        clock.advance(seconds=301)
        second = reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-2")

        assert isinstance(second, Reservation)
        assert second.subject_id == "patient-2"
        assert reservations.get(first.reservation_id) is None

    def test_booked_slot_is_denied(self, reservations, lifecycle, make_candidate) -> None:
        lifecycle.create(make_candidate())

        result = reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-2")

        assert isinstance(result, ReservationDenied)
        assert result.reason == "booked"

    def test_other_slots_are_independent(self, reservations) -> None:
        reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-1")

        assert isinstance(reservations.reserve(RESOURCE, TODAY, time(16, 30), "patient-2"), Reservation)
        assert isinstance(reservations.reserve("dr-tran@district-3", TODAY, time(16, 0), "patient-2"), Reservation)

    def test_rejects_slot_in_the_past(self, reservations) -> None:
        with pytest.raises(ValidationException):
            reservations.reserve(RESOURCE, date(2026, 3, 1), time(16, 0), "patient-1")


class TestRelease:
    def test_release_frees_slot_early(self, reservations) -> None:
        reservation = reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-1")

        assert reservations.release(reservation.reservation_id) is True
        assert reservations.is_held(RESOURCE, TODAY, time(16, 0)) is False
        assert isinstance(reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-2"), Reservation)

    def test_release_unknown_is_noop(self, reservations) -> None:
        assert reservations.release("01HZZZZZZZZZZZZZZZZZZZZZZZ") is False

    def test_release_twice_is_noop(self, reservations) -> None:
        reservation = reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-1")
        reservations.release(reservation.reservation_id)

        assert reservations.release(reservation.reservation_id) is False

    def test_release_after_expiry_is_noop(self, reservations, clock) -> None:
        reservation = reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-1")
        clock.advance(minutes=6)

        assert reservations.release(reservation.reservation_id) is False
        assert isinstance(reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-2"), Reservation)


class TestQueries:
    def test_holder_of_reports_live_holder(self, reservations, clock) -> None:
        reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-1")

        holder = reservations.holder_of(RESOURCE, TODAY, time(16, 0))
        assert holder is not None and holder.subject_id == "patient-1"

        clock.advance(minutes=6)
        assert reservations.holder_of(RESOURCE, TODAY, time(16, 0)) is None

    def test_held_slots_lists_live_reservations_in_range(self, reservations) -> None:
        reservations.reserve(RESOURCE, TODAY, time(16, 0), "patient-1")
        reservations.reserve(RESOURCE, date(2026, 3, 3), time(17, 0), "patient-2")
        reservations.reserve(RESOURCE, date(2026, 3, 10), time(17, 0), "patient-3")

        held = reservations.held_slots(RESOURCE, TODAY, date(2026, 3, 3))

        assert held == {(TODAY, time(16, 0)), (date(2026, 3, 3), time(17, 0))}

    def test_availability_marks_booked_and_reserved(self, reservations, lifecycle, make_candidate) -> None:
        lifecycle.create(make_candidate(time_slot=time(16, 0)))
        reservations.reserve(RESOURCE, TODAY, time(17, 0), "patient-2")

        availability = dict(reservations.availability(RESOURCE, TODAY))

        assert availability[time(16, 0)] is False
        assert availability[time(17, 0)] is False
        assert availability[time(16, 30)] is True
        assert len(availability) == 6
