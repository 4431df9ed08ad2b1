# backend/clinic_booking/services/conflict_resolver.py
"""
Conflict resolution helpers.

Plain functions with no persistence of their own: the orchestrator supplies
occupancy and the clock. Two concerns live here:

- retrying an operation through transient infrastructure failures with
  capped exponential backoff (business conflicts pass straight through);
- proposing alternative slots after a slot conflict.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
import logging
import random
import time as time_module
from typing import Callable, Iterable, List, Optional, Set, Tuple, Type, TypeVar

from ..core.clinic_schedule import ClinicSchedule
from ..core.exceptions import InfrastructureException
from ..core.timezone_utils import clinic_today

logger = logging.getLogger(__name__)

T = TypeVar("T")
SlotKey = Tuple[date, time]

SCOPE_SAME_DAY = "same_day"
SCOPE_LOOKAHEAD = "lookahead"
SCOPE_NONE = "none"


@dataclass(frozen=True)
class AlternativeSlot:
    resource_key: str
    booking_date: date
    time_slot: time


@dataclass(frozen=True)
class AlternativeSuggestions:
    slots: Tuple[AlternativeSlot, ...]
    scope: str  # same_day | lookahead | none

    @property
    def exhausted(self) -> bool:
        return self.scope == SCOPE_NONE


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay before retry number ``attempt`` (1-based): base * 2^(attempt-1) plus jitter."""
    return base_delay * (2 ** (attempt - 1)) + random.uniform(0, base_delay / 2)


def retry_with_backoff(
    op_name: str,
    func: Callable[[], T],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.1,
    retry_on: Tuple[Type[BaseException], ...] = (InfrastructureException,),
    sleep: Callable[[float], None] = time_module.sleep,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """
    Run ``func``, retrying only the exception types in ``retry_on``.

    Anything else, including SlotConflictException, propagates on the first
    attempt. After ``max_attempts`` the last transient error is re-raised.
    """
    attempt = 1
    while True:
        try:
            return func()
        except retry_on as exc:
            if attempt >= max_attempts:
                raise
            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                "Transient failure detected, retrying",
                extra={
                    "event": "booking_retry",
                    "op": op_name,
                    "attempt": attempt,
                    "delay": delay,
                    "error": str(exc),
                },
            )
            if on_retry is not None:
                on_retry(attempt, exc)
            sleep(delay)
            attempt += 1


def open_slots_on(
    schedule: ClinicSchedule,
    day: date,
    now: datetime,
    occupied: Set[SlotKey],
    excluded: Set[SlotKey],
) -> List[time]:
    return [
        slot
        for slot in schedule.upcoming_slots(day, now)
        if (day, slot) not in occupied and (day, slot) not in excluded
    ]


def suggest_alternatives(
    schedule: ClinicSchedule,
    resource_key: str,
    conflict_date: date,
    conflict_slot: time,
    occupied: Iterable[SlotKey],
    now: datetime,
    max_results: int = 5,
    lookahead_days: int = 7,
) -> AlternativeSuggestions:
    """
    Open slots to offer instead of ``(conflict_date, conflict_slot)``.

    Same-day slots come first. Only when the conflicting day has none left
    are the following ``lookahead_days`` days searched. The conflicting slot
    and every slot in ``occupied`` are never offered.
    """
    occupied_set = set(occupied)
    excluded = {(conflict_date, conflict_slot)}
    last_bookable = clinic_today(now, schedule.tz_name) + timedelta(days=schedule.advance_booking_days)

    def collect(day: date) -> List[AlternativeSlot]:
        if day > last_bookable:
            return []
        return [
            AlternativeSlot(resource_key, day, slot)
            for slot in open_slots_on(schedule, day, now, occupied_set, excluded)
        ]

    if max_results <= 0:
        return AlternativeSuggestions((), SCOPE_NONE)

    same_day = collect(conflict_date)
    if same_day:
        return AlternativeSuggestions(tuple(same_day[:max_results]), SCOPE_SAME_DAY)

    found: List[AlternativeSlot] = []
    for offset in range(1, lookahead_days + 1):
        found.extend(collect(conflict_date + timedelta(days=offset)))
        if len(found) >= max_results:
            break
    if found:
        return AlternativeSuggestions(tuple(found[:max_results]), SCOPE_LOOKAHEAD)
    return AlternativeSuggestions((), SCOPE_NONE)


def lookahead_window(conflict_date: date, lookahead_days: int) -> Tuple[date, date]:
    """Inclusive date range the suggestion search may touch."""
    return conflict_date, conflict_date + timedelta(days=lookahead_days)
