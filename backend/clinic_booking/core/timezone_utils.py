"""
Timezone utilities for the clinic booking core.

Appointments are stored as a clinic-local date plus a clinic-local slot
time; everything that compares against "now" converts through here.
"""

from datetime import date, datetime, time, timezone
from typing import Callable, Optional

import pytz

from .config import settings

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def get_clinic_timezone(tz_name: Optional[str] = None) -> pytz.BaseTzInfo:
    return pytz.timezone(tz_name or settings.clinic_timezone)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def clinic_today(now: datetime, tz_name: Optional[str] = None) -> date:
    """The clinic-local calendar date at instant ``now``."""
    return ensure_utc(now).astimezone(get_clinic_timezone(tz_name)).date()


def appointment_start_utc(
    booking_date: date, time_slot: time, tz_name: Optional[str] = None
) -> datetime:
    """
    Convert a clinic-local appointment date and slot to an aware UTC datetime.

    Args:
        booking_date: Clinic-local appointment date
        time_slot: Clinic-local slot start
        tz_name: Optional timezone override

    Returns:
        Appointment start in UTC
    """
    tz = get_clinic_timezone(tz_name)
    local = tz.localize(datetime.combine(booking_date, time_slot))
    return local.astimezone(timezone.utc)
