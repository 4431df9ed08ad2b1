# backend/clinic_booking/services/checkin_gateway.py
"""
Point-of-service check-in.

Two paths lead to the same idempotent transition:

- token: parse and verify the presented check-in token, then check in the
  booking it names. Any token problem yields ``invalid_token`` and the desk
  falls back to manual lookup; it never silently succeeds.
- manual: staff look the subject up by identity and date, bypassing the
  codec entirely.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from ..core.exceptions import InvalidTransitionException, TokenInvalidException
from ..core.timezone_utils import Clock, clinic_today
from ..models.booking import Booking, CheckinStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService
from .booking_lifecycle import BookingLifecycle
from .checkin_token_codec import CheckinTokenCodec

logger = logging.getLogger(__name__)


class CheckInOutcome(str, Enum):
    CHECKED_IN = "checked_in"
    ALREADY_CHECKED_IN = "already_checked_in"
    INVALID_TOKEN = "invalid_token"
    NOT_ELIGIBLE = "not_eligible"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class CheckInResult:
    outcome: CheckInOutcome
    booking: Optional[Booking] = None
    reason: Optional[str] = None
    candidates: Tuple[Booking, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.outcome in (CheckInOutcome.CHECKED_IN, CheckInOutcome.ALREADY_CHECKED_IN)

    @property
    def manual_lookup_advised(self) -> bool:
        return self.outcome == CheckInOutcome.INVALID_TOKEN


class CheckInGateway(BaseService):
    def __init__(
        self,
        db: Session,
        lifecycle: BookingLifecycle,
        codec: CheckinTokenCodec,
        now_fn: Optional[Clock] = None,
    ):
        super().__init__(db, now_fn or lifecycle.now_fn)
        self.lifecycle = lifecycle
        self.codec = codec

    @BaseService.measure_operation("check_in_token")
    def check_in_with_token(self, token: str, staff_id: Optional[str] = None) -> CheckInResult:
        try:
            payload = self.codec.parse(token)
        except TokenInvalidException as exc:
            return self._invalid_token(exc.reason)

        booking = self.lifecycle.repository.get_by_id(payload.booking_id)
        if booking is None:
            return self._invalid_token("unknown_booking")

        reason = self.codec.check(payload, booking)
        if reason is not None:
            return self._invalid_token(reason, booking_id=payload.booking_id)

        return self._check_in(booking, "token", staff_id)

    @BaseService.measure_operation("check_in_manual")
    def check_in_manual(
        self,
        subject_id: str,
        booking_date: Optional[date] = None,
        resource_key: Optional[str] = None,
        staff_id: Optional[str] = None,
    ) -> CheckInResult:
        """Look up the subject's confirmed booking on ``booking_date`` (default: clinic today)."""
        day = booking_date or clinic_today(self.now(), self.lifecycle.tz_name)
        found = self.lifecycle.repository.find_for_subject_on_date(subject_id, day, resource_key)
        eligible = tuple(
            booking
            for booking in found
            if booking.checkin_status
            in (CheckinStatus.NOT_ARRIVED.value, CheckinStatus.CHECKED_IN.value)
        )
        if not eligible:
            prometheus_metrics.record_checkin("manual", CheckInOutcome.NOT_FOUND.value)
            return CheckInResult(CheckInOutcome.NOT_FOUND, reason="no_confirmed_booking")
        if len(eligible) > 1:
            prometheus_metrics.record_checkin("manual", CheckInOutcome.AMBIGUOUS.value)
            return CheckInResult(
                CheckInOutcome.AMBIGUOUS, reason="multiple_bookings", candidates=eligible
            )
        return self._check_in(eligible[0], "manual", staff_id)

    def _check_in(self, booking: Booking, path: str, staff_id: Optional[str]) -> CheckInResult:
        booking_id = str(booking.id)
        try:
            result = self.lifecycle.attempt_check_in(booking_id, checked_in_by=staff_id)
        except InvalidTransitionException as exc:
            prometheus_metrics.record_checkin(path, CheckInOutcome.NOT_ELIGIBLE.value)
            return CheckInResult(
                CheckInOutcome.NOT_ELIGIBLE,
                booking=self.lifecycle.get(booking_id),
                reason=exc.message,
            )

        outcome = CheckInOutcome.CHECKED_IN if result.changed else CheckInOutcome.ALREADY_CHECKED_IN
        prometheus_metrics.record_checkin(path, outcome.value)
        logger.info(
            "Check-in via %s for booking %s: %s",
            path,
            booking_id,
            outcome.value,
            extra={"booking_id": booking_id, "staff_id": staff_id},
        )
        return CheckInResult(outcome, booking=result.booking)

    def _invalid_token(self, reason: str, booking_id: Optional[str] = None) -> CheckInResult:
        prometheus_metrics.record_checkin("token", CheckInOutcome.INVALID_TOKEN.value)
        logger.info(
            "Rejected check-in token: %s",
            reason,
            extra={"reason": reason, "booking_id": booking_id},
        )
        return CheckInResult(CheckInOutcome.INVALID_TOKEN, reason=reason)
