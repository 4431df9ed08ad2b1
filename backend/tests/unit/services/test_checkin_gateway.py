from __future__ import annotations

from datetime import date, time

import pytest

from clinic_booking.models.booking import CheckinStatus
from clinic_booking.services.checkin_gateway import CheckInGateway, CheckInOutcome
from tests.conftest import RESOURCE

WEDNESDAY = date(2026, 3, 4)


@pytest.fixture
def gateway(db, lifecycle, codec) -> CheckInGateway:
    return CheckInGateway(db, lifecycle, codec)


class TestTokenPath:
    def test_valid_token_checks_in(self, gateway, lifecycle, make_candidate) -> None:
        booking = lifecycle.create(make_candidate())

        result = gateway.check_in_with_token(booking.token_material, staff_id="desk-1")

        assert result.outcome == CheckInOutcome.CHECKED_IN
        assert result.succeeded
        assert result.booking.checkin_status == CheckinStatus.CHECKED_IN.value
        assert result.booking.checked_in_by == "desk-1"

    def test_second_scan_reports_already_checked_in(self, gateway, lifecycle, make_candidate) -> None:
        booking = lifecycle.create(make_candidate())
        gateway.check_in_with_token(booking.token_material)

        result = gateway.check_in_with_token(booking.token_material)

        assert result.outcome == CheckInOutcome.ALREADY_CHECKED_IN
        assert result.succeeded

    def test_tampered_token_advises_manual_lookup(self, gateway, lifecycle, make_candidate) -> None:
        booking = lifecycle.create(make_candidate())
        token = booking.token_material
        middle = len(token) // 2
        swapped = "A" if token[middle] != "A" else "B"
        tampered = token[:middle] + swapped + token[middle + 1:]

        result = gateway.check_in_with_token(tampered)

        assert result.outcome == CheckInOutcome.INVALID_TOKEN
        assert result.manual_lookup_advised
        assert result.booking is None
        assert lifecycle.get(booking.id).checkin_status == CheckinStatus.NOT_ARRIVED.value

    def test_expired_token_is_rejected(self, gateway, lifecycle, clock, make_candidate) -> None:
        booking = lifecycle.create(make_candidate(booking_date=WEDNESDAY))
        clock.advance(hours=25)

        result = gateway.check_in_with_token(booking.token_material)

        assert result.outcome == CheckInOutcome.INVALID_TOKEN
        assert result.reason == "expired"

    def test_token_for_cancelled_booking_is_not_eligible(self, gateway, lifecycle, make_candidate) -> None:
        booking = lifecycle.create(make_candidate())
        lifecycle.cancel_by_subject(booking.id)

        result = gateway.check_in_with_token(booking.token_material)

        assert result.outcome == CheckInOutcome.NOT_ELIGIBLE
        assert not result.succeeded

    def test_garbage_is_invalid(self, gateway) -> None:
        result = gateway.check_in_with_token("not-a-token")

        assert result.outcome == CheckInOutcome.INVALID_TOKEN
        assert result.reason == "malformed"


class TestManualPath:
    def test_manual_lookup_checks_in_todays_booking(self, gateway, lifecycle, make_candidate) -> None:
        booking = lifecycle.create(make_candidate(subject_id="patient-1"))

        result = gateway.check_in_manual("patient-1", staff_id="desk-3")

        assert result.outcome == CheckInOutcome.CHECKED_IN
        assert result.booking.id == booking.id
        assert result.booking.checked_in_by == "desk-3"

    def test_manual_lookup_works_after_token_failure(self, gateway, lifecycle, make_candidate) -> None:
        lifecycle.create(make_candidate(subject_id="patient-1"))

        assert gateway.check_in_with_token("ct1.AAAA").manual_lookup_advised
        result = gateway.check_in_manual("patient-1")

        assert result.outcome == CheckInOutcome.CHECKED_IN

    def test_no_booking_today(self, gateway, lifecycle, make_candidate) -> None:
        lifecycle.create(make_candidate(subject_id="patient-1", booking_date=WEDNESDAY))

        result = gateway.check_in_manual("patient-1")

        assert result.outcome == CheckInOutcome.NOT_FOUND

    def test_two_bookings_today_are_ambiguous(self, gateway, lifecycle, make_candidate) -> None:
        lifecycle.create(make_candidate(subject_id="patient-1", time_slot=time(16, 0)))
        lifecycle.create(
            make_candidate(subject_id="patient-1", time_slot=time(16, 0), resource_key="dr-le@district-7")
        )

        result = gateway.check_in_manual("patient-1")

        assert result.outcome == CheckInOutcome.AMBIGUOUS
        assert len(result.candidates) == 2

    def test_resource_key_narrows_ambiguous_lookup(self, gateway, lifecycle, make_candidate) -> None:
        lifecycle.create(make_candidate(subject_id="patient-1", time_slot=time(16, 0)))
        lifecycle.create(
            make_candidate(subject_id="patient-1", time_slot=time(16, 0), resource_key="dr-le@district-7")
        )

        result = gateway.check_in_manual("patient-1", resource_key=RESOURCE)

        assert result.outcome == CheckInOutcome.CHECKED_IN
        assert result.booking.resource_key == RESOURCE

    def test_manual_repeat_is_idempotent(self, gateway, lifecycle, make_candidate) -> None:
        lifecycle.create(make_candidate(subject_id="patient-1"))
        gateway.check_in_manual("patient-1")

        result = gateway.check_in_manual("patient-1")

        assert result.outcome == CheckInOutcome.ALREADY_CHECKED_IN
