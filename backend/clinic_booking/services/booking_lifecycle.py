# backend/clinic_booking/services/booking_lifecycle.py
"""
Booking lifecycle service.

Owns both status axes of a booking:

    booking_status:  pending -> confirmed -> completed
                     {pending, confirmed} -> cancelled_by_subject
                     confirmed -> no_show            (sweep only)
    checkin_status:  not_arrived -> checked_in -> completed
                     not_arrived -> missed           (with no_show)

Every transition is a conditional UPDATE guarded by the states it may
start from. If the guard matches no row the booking is re-read: reaching
the target state anyway (another request got there first) returns the
booking unchanged, anything else is an InvalidTransitionException. Each
committed change appends a BookingStatusEvent in the same commit, and the
notification dispatcher is told about it only after the commit.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
import logging
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    BusinessRuleException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    SlotConflictException,
    TokenInvalidException,
)
from ..core.timezone_utils import Clock, clinic_today, ensure_utc
from ..core.ulid_helper import generate_ulid
from ..models.booking import (
    ACTIVE_BOOKING_STATUSES,
    Booking,
    BookingStatus,
    CheckinStatus,
)
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .checkin_token_codec import CheckinTokenCodec
from .notification_dispatcher import (
    BOOKING_CANCELLED,
    BOOKING_CHECKED_IN,
    BOOKING_COMPLETED,
    BOOKING_CONFIRMED,
    BOOKING_NO_SHOW,
    NotificationDispatcher,
    default_dispatcher,
)

logger = logging.getLogger(__name__)

ACTOR_SUBJECT = "subject"
ACTOR_STAFF = "staff"
ACTOR_SYSTEM = "system"

# A stored token this close to expiry is re-issued when redisplayed.
TOKEN_REFRESH_MARGIN = timedelta(hours=1)


@dataclass(frozen=True)
class BookingCandidate:
    """A request for one slot, before it becomes a booking."""

    subject_id: str
    resource_key: str
    booking_date: date
    time_slot: time


@dataclass(frozen=True)
class TransitionResult:
    booking: Booking
    changed: bool


class BookingLifecycle(BaseService):
    """State machine for booking and check-in statuses."""

    def __init__(
        self,
        db: Session,
        codec: CheckinTokenCodec,
        dispatcher: Optional[NotificationDispatcher] = None,
        initial_status: Optional[str] = None,
        no_show_grace: Optional[timedelta] = None,
        cancellation_notice: Optional[timedelta] = None,
        tz_name: Optional[str] = None,
        now_fn: Optional[Clock] = None,
    ):
        super().__init__(db, now_fn)
        self.codec = codec
        self.dispatcher = dispatcher or default_dispatcher()
        self.initial_status = BookingStatus(initial_status or settings.initial_booking_status)
        if self.initial_status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise ValueError(f"Unsupported initial booking status: {self.initial_status.value}")
        self.no_show_grace = (
            no_show_grace
            if no_show_grace is not None
            else timedelta(minutes=settings.no_show_grace_minutes)
        )
        self.cancellation_notice = (
            cancellation_notice
            if cancellation_notice is not None
            else timedelta(hours=settings.cancellation_notice_hours)
        )
        self.tz_name = tz_name or settings.clinic_timezone
        self.repository = RepositoryFactory.create_booking_repository(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, booking_id: str, subject_id: Optional[str] = None) -> Booking:
        """
        Load a booking, optionally enforcing that ``subject_id`` owns it.

        Raises:
            NotFoundException: no such booking
            ForbiddenException: booking belongs to another subject
        """
        booking = self.repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(
                "Booking not found", code="BOOKING_NOT_FOUND", details={"booking_id": booking_id}
            )
        if subject_id is not None and booking.subject_id != subject_id:
            raise ForbiddenException(
                "You can only access your own bookings",
                code="BOOKING_NOT_OWNED",
                details={"booking_id": booking_id},
            )
        return booking

    def appointment_start(self, booking: Booking) -> datetime:
        return booking.appointment_start_utc(self.tz_name)

    @BaseService.measure_operation("current_token")
    def current_token(self, booking_id: str, subject_id: Optional[str] = None) -> str:
        """
        Token to display for a booking.

        The stored token is returned while it has more than
        TOKEN_REFRESH_MARGIN of validity left. Otherwise a fresh one is
        issued and swapped in with a conditional update, so two concurrent
        redisplays agree on a single stored token. Terminal bookings keep
        their stored token.

        Raises:
            NotFoundException: no such booking
            ForbiddenException: booking belongs to another subject
        """
        with self.transaction():
            booking = self.get(booking_id, subject_id)
            stored = str(booking.token_material or "")
            if booking.is_terminal or not self._token_needs_refresh(stored):
                return stored

            fresh = self.codec.issue(booking)
            swapped = self.repository.conditional_update(
                booking_id,
                {"token_material": (stored,)},
                {"token_material": fresh, "updated_at": self.now()},
            )
            if not swapped:
                return str(self.get(booking_id).token_material)

        self.logger.info("Re-issued check-in token for booking %s", booking_id)
        return fresh

    def _token_needs_refresh(self, token: str) -> bool:
        try:
            payload = self.codec.parse(token)
        except TokenInvalidException:
            # Unreadable under the current keys, e.g. after key rotation.
            return True
        return payload.expires_at_dt - ensure_utc(self.now()) <= TOKEN_REFRESH_MARGIN

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @BaseService.measure_operation("create")
    def create(self, candidate: BookingCandidate) -> Booking:
        """
        Persist a new booking in the configured initial status.

        The token is issued before the insert so the row is written complete
        in a single conditional insert.

        Raises:
            SlotConflictException: the slot already holds an active booking
        """
        now = self.now()
        status = self.initial_status.value
        booking = Booking(
            id=generate_ulid(),
            subject_id=candidate.subject_id,
            resource_key=candidate.resource_key,
            booking_date=candidate.booking_date,
            time_slot=candidate.time_slot,
            booking_status=status,
            checkin_status=CheckinStatus.NOT_ARRIVED.value,
            created_at=now,
            confirmed_at=now if status == BookingStatus.CONFIRMED.value else None,
        )
        booking.token_material = self.codec.issue(booking)

        with self.transaction():
            if not self.repository.insert_if_slot_free(booking):
                raise SlotConflictException(
                    candidate.resource_key, candidate.booking_date, candidate.time_slot
                )
            self.repository.add_status_event(
                booking.id, "booking_status", None, status, ACTOR_SUBJECT, now
            )

        self.logger.info(
            "Created booking %s (%s) for %s %s %s",
            booking.id,
            status,
            candidate.resource_key,
            candidate.booking_date,
            candidate.time_slot,
        )
        if status == BookingStatus.CONFIRMED.value:
            self._notify(BOOKING_CONFIRMED, booking)
        return booking

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @BaseService.measure_operation("confirm")
    def confirm(self, booking_id: str, actor: str = ACTOR_STAFF) -> Booking:
        """
        Move a pending booking to confirmed.

        The update only matches while no other booking holds the slot
        confirmed, so a concurrent confirmation surfaces as a conflict.

        Raises:
            SlotConflictException: another booking owns the slot
            InvalidTransitionException: booking is not pending
        """
        now = self.now()
        with self.transaction():
            booking = self.get(booking_id)
            if booking.booking_status == BookingStatus.CONFIRMED.value:
                return booking
            if booking.booking_status != BookingStatus.PENDING.value:
                raise self._invalid(booking, "confirm")

            changed = self.repository.confirm_if_slot_free(
                booking_id, {"confirmed_at": now, "updated_at": now}
            )
            if not changed:
                current = self.get(booking_id)
                if current.booking_status == BookingStatus.CONFIRMED.value:
                    return current
                if current.booking_status != BookingStatus.PENDING.value:
                    raise self._invalid(current, "confirm")
                raise SlotConflictException(
                    str(current.resource_key), current.booking_date, current.time_slot
                )

            self.repository.add_status_event(
                booking_id,
                "booking_status",
                BookingStatus.PENDING.value,
                BookingStatus.CONFIRMED.value,
                actor,
                now,
            )
            booking = self.get(booking_id)

        self._notify(BOOKING_CONFIRMED, booking)
        return booking

    @BaseService.measure_operation("cancel_by_subject")
    def cancel_by_subject(
        self, booking_id: str, reason: Optional[str] = None, subject_id: Optional[str] = None
    ) -> Booking:
        """
        Cancel on behalf of the subject.

        Raises:
            InvalidTransitionException: checked in already, or booking is terminal
            BusinessRuleException: inside the cancellation notice window
            ForbiddenException: ``subject_id`` given and not the owner
        """

        def notice_window(booking: Booking) -> None:
            if self.cancellation_notice <= timedelta(0):
                return
            if self.appointment_start(booking) - self.now() < self.cancellation_notice:
                hours = int(self.cancellation_notice.total_seconds() // 3600)
                raise BusinessRuleException(
                    f"Bookings can only be cancelled at least {hours} hours in advance",
                    code="CANCELLATION_WINDOW_CLOSED",
                    details={"booking_id": booking.id, "notice_hours": hours},
                )

        result = self._transition(
            booking_id,
            action="cancel",
            expected={
                "booking_status": ACTIVE_BOOKING_STATUSES,
                "checkin_status": (CheckinStatus.NOT_ARRIVED.value,),
            },
            target={"booking_status": BookingStatus.CANCELLED_BY_SUBJECT.value},
            stamp=("cancelled_at",),
            values={"cancellation_reason": reason},
            actor=ACTOR_SUBJECT,
            reason=reason,
            subject_id=subject_id,
            guard=notice_window,
        )
        if result.changed:
            self._notify(BOOKING_CANCELLED, result.booking)
        return result.booking

    def mark_no_show(self, booking_id: str) -> Booking:
        """Force a lapsed confirmed booking to no_show/missed. Sweep use only."""
        return self.attempt_mark_no_show(booking_id).booking

    @BaseService.measure_operation("mark_no_show")
    def attempt_mark_no_show(self, booking_id: str) -> TransitionResult:
        """
        Mark a no-show and report whether this call made the change.

        Raises:
            InvalidTransitionException: not confirmed/not_arrived, or grace period not over
        """

        def grace_elapsed(booking: Booking) -> None:
            if self.appointment_start(booking) + self.no_show_grace > self.now():
                raise self._invalid(
                    booking,
                    "mark_no_show",
                    "Appointment grace period has not elapsed yet",
                )

        result = self._transition(
            booking_id,
            action="mark_no_show",
            expected={
                "booking_status": (BookingStatus.CONFIRMED.value,),
                "checkin_status": (CheckinStatus.NOT_ARRIVED.value,),
            },
            target={
                "booking_status": BookingStatus.NO_SHOW.value,
                "checkin_status": CheckinStatus.MISSED.value,
            },
            stamp=("cancelled_at",),
            values={"cancellation_reason": "No-show: appointment time passed without check-in"},
            actor=ACTOR_SYSTEM,
            reason="no_show_sweep",
            guard=grace_elapsed,
        )
        if result.changed:
            self._notify(BOOKING_NO_SHOW, result.booking)
        return result

    def check_in(self, booking_id: str, checked_in_by: Optional[str] = None) -> Booking:
        """Check in a confirmed booking; an already checked-in booking is returned unchanged."""
        return self.attempt_check_in(booking_id, checked_in_by).booking

    @BaseService.measure_operation("check_in")
    def attempt_check_in(
        self, booking_id: str, checked_in_by: Optional[str] = None
    ) -> TransitionResult:
        """
        Check in and report whether this call made the change.

        Raises:
            InvalidTransitionException: booking not confirmed, or its date has passed
        """

        def not_past(booking: Booking) -> None:
            if booking.booking_date < clinic_today(self.now(), self.tz_name):
                raise self._invalid(
                    booking, "check_in", "Appointment date has passed; check-in not allowed"
                )

        result = self._transition(
            booking_id,
            action="check_in",
            expected={
                "booking_status": (BookingStatus.CONFIRMED.value,),
                "checkin_status": (CheckinStatus.NOT_ARRIVED.value,),
            },
            target={"checkin_status": CheckinStatus.CHECKED_IN.value},
            stamp=("checkin_at",),
            values={"checked_in_by": checked_in_by or "self"},
            actor=ACTOR_STAFF if checked_in_by else ACTOR_SUBJECT,
            guard=not_past,
        )
        if result.changed:
            self._notify(BOOKING_CHECKED_IN, result.booking)
        return result

    @BaseService.measure_operation("complete")
    def complete(self, booking_id: str) -> Booking:
        """
        Close out a visit: confirmed + checked_in becomes completed on both axes.

        Raises:
            InvalidTransitionException: booking was never checked in
        """
        result = self._transition(
            booking_id,
            action="complete",
            expected={
                "booking_status": (BookingStatus.CONFIRMED.value,),
                "checkin_status": (CheckinStatus.CHECKED_IN.value,),
            },
            target={
                "booking_status": BookingStatus.COMPLETED.value,
                "checkin_status": CheckinStatus.COMPLETED.value,
            },
            stamp=("completed_at",),
            values={},
            actor=ACTOR_STAFF,
        )
        if result.changed:
            self._notify(BOOKING_COMPLETED, result.booking)
        return result.booking

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition(
        self,
        booking_id: str,
        action: str,
        expected: Dict[str, Iterable[str]],
        target: Dict[str, str],
        stamp: Tuple[str, ...],
        values: Dict[str, Any],
        actor: str,
        reason: Optional[str] = None,
        subject_id: Optional[str] = None,
        guard: Optional[Callable[[Booking], None]] = None,
    ) -> TransitionResult:
        now = self.now()
        with self.transaction():
            booking = self.get(booking_id, subject_id)
            if self._has_reached(booking, target):
                return TransitionResult(booking, False)
            if not self._matches(booking, expected):
                raise self._invalid(booking, action)
            if guard is not None:
                guard(booking)

            previous = {field: getattr(booking, field) for field in target}
            update_values: Dict[str, Any] = {**target, **values, "updated_at": now}
            for field in stamp:
                update_values[field] = now

            if not self.repository.conditional_update(booking_id, expected, update_values):
                current = self.get(booking_id)
                if self._has_reached(current, target):
                    return TransitionResult(current, False)
                raise self._invalid(current, action)

            for field, new_value in target.items():
                if previous[field] != new_value:
                    self.repository.add_status_event(
                        booking_id, field, previous[field], new_value, actor, now, reason
                    )
            booking = self.get(booking_id)

        self.logger.info(
            "Booking %s: %s -> %s/%s",
            booking_id,
            action,
            booking.booking_status,
            booking.checkin_status,
        )
        return TransitionResult(booking, True)

    @staticmethod
    def _has_reached(booking: Booking, target: Dict[str, str]) -> bool:
        return all(getattr(booking, field) == value for field, value in target.items())

    @staticmethod
    def _matches(booking: Booking, expected: Dict[str, Iterable[str]]) -> bool:
        return all(getattr(booking, field) in tuple(allowed) for field, allowed in expected.items())

    @staticmethod
    def _invalid(
        booking: Booking, action: str, message: Optional[str] = None
    ) -> InvalidTransitionException:
        return InvalidTransitionException(
            str(booking.id),
            action,
            str(booking.booking_status),
            str(booking.checkin_status),
            message=message,
        )

    def _notify(self, event: str, booking: Booking) -> None:
        try:
            self.dispatcher.notify(event, booking)
        except Exception as exc:
            self.logger.warning(
                "Notification dispatch failed for %s: %s",
                booking.id,
                exc,
                extra={"event": event, "booking_id": booking.id},
            )
