"""
Clinic working hours and the slot grid.

Weekdays and weekends have separate opening hours; weekends may carry a
break during which no slot starts. Slots are fixed-length and aligned to the
opening time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from .config import Settings, settings
from .exceptions import ValidationException
from .timezone_utils import appointment_start_utc, clinic_today


@dataclass(frozen=True)
class ClinicSchedule:
    slot_minutes: int
    weekday_open: time
    weekday_close: time
    weekend_open: time
    weekend_close: time
    weekend_break_start: Optional[time] = None
    weekend_break_end: Optional[time] = None
    advance_booking_days: int = 30
    tz_name: Optional[str] = None

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "ClinicSchedule":
        return cls(
            slot_minutes=config.slot_minutes,
            weekday_open=config.weekday_open,
            weekday_close=config.weekday_close,
            weekend_open=config.weekend_open,
            weekend_close=config.weekend_close,
            weekend_break_start=config.weekend_break_start,
            weekend_break_end=config.weekend_break_end,
            advance_booking_days=config.advance_booking_days,
            tz_name=config.clinic_timezone,
        )

    def slots_for(self, day: date) -> List[time]:
        """All slot start times on ``day`` in clinic-local time, ascending."""
        is_weekend = day.weekday() >= 5
        open_at = self.weekend_open if is_weekend else self.weekday_open
        close_at = self.weekend_close if is_weekend else self.weekday_close
        break_start = self.weekend_break_start if is_weekend else None
        break_end = self.weekend_break_end if is_weekend else None

        step = timedelta(minutes=self.slot_minutes)
        cursor = datetime.combine(day, open_at)
        close_dt = datetime.combine(day, close_at)
        slots: List[time] = []
        while cursor + step <= close_dt:
            slot_start = cursor.time()
            slot_end = cursor + step
            in_break = (
                break_start is not None
                and break_end is not None
                and cursor < datetime.combine(day, break_end)
                and slot_end > datetime.combine(day, break_start)
            )
            if not in_break:
                slots.append(slot_start)
            cursor += step
        return slots

    def is_on_grid(self, day: date, time_slot: time) -> bool:
        return time_slot.replace(microsecond=0) in self.slots_for(day)

    def upcoming_slots(self, day: date, now: datetime) -> List[time]:
        """Slots on ``day`` whose start is still in the future at ``now``."""
        return [
            slot
            for slot in self.slots_for(day)
            if appointment_start_utc(day, slot, self.tz_name) > now
        ]

    def validate_candidate(self, day: date, time_slot: time, now: datetime) -> None:
        """
        Ensure a requested slot can be booked at ``now``.

        Raises:
            ValidationException: slot in the past, too far ahead, or off the grid
        """
        today = clinic_today(now, self.tz_name)
        if day < today or appointment_start_utc(day, time_slot, self.tz_name) <= now:
            raise ValidationException(
                "Cannot book an appointment in the past",
                code="SLOT_IN_PAST",
                details={"booking_date": day.isoformat(), "time_slot": time_slot.isoformat()},
            )
        if day > today + timedelta(days=self.advance_booking_days):
            raise ValidationException(
                f"Appointments can be booked at most {self.advance_booking_days} days ahead",
                code="SLOT_TOO_FAR_AHEAD",
                details={"advance_booking_days": self.advance_booking_days},
            )
        if not self.is_on_grid(day, time_slot):
            raise ValidationException(
                "Requested time is outside clinic working hours",
                code="SLOT_OUTSIDE_HOURS",
                details={"booking_date": day.isoformat(), "time_slot": time_slot.isoformat()},
            )
