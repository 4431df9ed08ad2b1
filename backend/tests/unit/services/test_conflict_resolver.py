from datetime import date, time
from unittest.mock import Mock

import pytest

from clinic_booking.core.exceptions import InfrastructureException, SlotConflictException
from clinic_booking.services.conflict_resolver import (
    SCOPE_LOOKAHEAD,
    SCOPE_NONE,
    SCOPE_SAME_DAY,
    backoff_delay,
    retry_with_backoff,
    suggest_alternatives,
)
from tests.conftest import RESOURCE, START, TODAY

WEEKDAY_SLOTS = [time(16, 0), time(16, 30), time(17, 0), time(17, 30), time(18, 0), time(18, 30)]


def _unavailable() -> InfrastructureException:
    return InfrastructureException("store down", code="INFRASTRUCTURE_UNAVAILABLE")


class TestBackoff:
    @pytest.mark.parametrize("attempt,floor", [(1, 0.1), (2, 0.2), (3, 0.4)])
    def test_delay_doubles_with_bounded_jitter(self, attempt: int, floor: float) -> None:
        for _ in range(20):
            delay = backoff_delay(attempt, 0.1)
            assert floor <= delay <= floor + 0.05

    def test_retries_transient_errors_until_success(self) -> None:
        sleeps = []
        func = Mock(side_effect=[_unavailable(), _unavailable(), "booked"])

        result = retry_with_backoff("submit", func, max_attempts=3, base_delay=0.1, sleep=sleeps.append)

        assert result == "booked"
        assert func.call_count == 3
        assert len(sleeps) == 2
        assert sleeps[0] < sleeps[1]

    def test_gives_up_after_max_attempts(self) -> None:
        sleeps = []
        on_retry = Mock()
        func = Mock(side_effect=_unavailable())

        with pytest.raises(InfrastructureException):
            retry_with_backoff(
                "submit", func, max_attempts=3, sleep=sleeps.append, on_retry=on_retry
            )

        assert func.call_count == 3
        assert len(sleeps) == 2
        assert on_retry.call_count == 2

    def test_conflicts_are_never_retried(self) -> None:
        sleeps = []
        func = Mock(side_effect=SlotConflictException(RESOURCE, TODAY, time(16, 0)))

        with pytest.raises(SlotConflictException):
            retry_with_backoff("submit", func, max_attempts=5, sleep=sleeps.append)

        assert func.call_count == 1
        assert sleeps == []


class TestSuggestAlternatives:
    def test_same_day_first_and_excludes_conflict_and_occupied(self, schedule) -> None:
        occupied = {(TODAY, time(16, 30)), (TODAY, time(17, 30))}

        result = suggest_alternatives(
            schedule, RESOURCE, TODAY, time(16, 0), occupied, START, max_results=5
        )

        assert result.scope == SCOPE_SAME_DAY
        offered = [slot.time_slot for slot in result.slots]
        assert offered == [time(17, 0), time(18, 0), time(18, 30)]
        assert all(slot.booking_date == TODAY for slot in result.slots)
        assert all(slot.resource_key == RESOURCE for slot in result.slots)

    def test_respects_max_results(self, schedule) -> None:
        result = suggest_alternatives(
            schedule, RESOURCE, TODAY, time(16, 0), set(), START, max_results=2
        )

        assert [slot.time_slot for slot in result.slots] == [time(16, 30), time(17, 0)]

    def test_falls_back_to_following_days(self, schedule) -> None:
        occupied = {(TODAY, slot) for slot in WEEKDAY_SLOTS}

        result = suggest_alternatives(
            schedule, RESOURCE, TODAY, time(16, 0), occupied, START, max_results=3, lookahead_days=2
        )

        assert result.scope == SCOPE_LOOKAHEAD
        assert [(slot.booking_date, slot.time_slot) for slot in result.slots] == [
            (date(2026, 3, 3), time(16, 0)),
            (date(2026, 3, 3), time(16, 30)),
            (date(2026, 3, 3), time(17, 0)),
        ]

    def test_reports_none_when_everything_is_taken(self, schedule) -> None:
        occupied = {(TODAY, slot) for slot in WEEKDAY_SLOTS}

        result = suggest_alternatives(
            schedule, RESOURCE, TODAY, time(16, 0), occupied, START, lookahead_days=0
        )

        assert result.scope == SCOPE_NONE
        assert result.slots == ()
        assert result.exhausted is True

    def test_never_offers_past_the_advance_window(self, schedule) -> None:
        last_day = date(2026, 4, 1)  # TODAY + 30 days
        occupied = {(last_day, slot) for slot in WEEKDAY_SLOTS}

        result = suggest_alternatives(
            schedule, RESOURCE, last_day, time(16, 0), occupied, START, lookahead_days=7
        )

        assert result.scope == SCOPE_NONE
