"""
Concurrency tests for slot uniqueness.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import time
import threading

from sqlalchemy.orm import Session, sessionmaker

from clinic_booking.core.exceptions import SlotConflictException
from clinic_booking.models.booking import Booking
from clinic_booking.services.booking_lifecycle import BookingLifecycle
from clinic_booking.services.booking_orchestrator import (
    BookingOrchestrator,
    BookingSubmission,
    SlotConflictResult,
)
from clinic_booking.services.checkin_token_codec import CheckinTokenCodec
from clinic_booking.services.reservation_stores import DatabaseReservationStore
from clinic_booking.services.slot_reservation_manager import ReservationDenied, SlotReservationManager
from tests.conftest import RESOURCE, TODAY, RecordingDispatcher


def _race(worker_count: int, work) -> list:
    barrier = threading.Barrier(worker_count)

    def _run(index: int):
        barrier.wait(timeout=5)
        return work(index)

    with ThreadPoolExecutor(max_workers=worker_count) as executor:
        return list(executor.map(_run, range(worker_count)))


def test_concurrent_creates_yield_exactly_one_booking(
    db: Session, session_factory: sessionmaker, codec: CheckinTokenCodec, clock, make_candidate
) -> None:
    def _worker(index: int) -> str:
        session = session_factory()
        try:
            lifecycle = BookingLifecycle(
                session, codec, dispatcher=RecordingDispatcher(), now_fn=clock
            )
            try:
                lifecycle.create(make_candidate(subject_id=f"patient-{index}"))
            except SlotConflictException:
                return "conflict"
            return "booked"
        finally:
            session.close()

    results = _race(5, _worker)

    assert results.count("booked") == 1
    assert results.count("conflict") == 4

    active = (
        db.query(Booking)
        .filter(
            Booking.resource_key == RESOURCE,
            Booking.booking_date == TODAY,
            Booking.time_slot == time(16, 0),
        )
        .all()
    )
    assert len(active) == 1


def test_concurrent_reservations_yield_one_holder(
    session_factory: sessionmaker, clock, schedule
) -> None:
    def _worker(index: int) -> bool:
        session = session_factory()
        try:
            manager = SlotReservationManager(
                session, store=DatabaseReservationStore(session), schedule=schedule, now_fn=clock
            )
            result = manager.reserve(RESOURCE, TODAY, time(16, 0), f"patient-{index}")
            return not isinstance(result, ReservationDenied)
        finally:
            session.close()

    results = _race(4, _worker)

    assert results.count(True) == 1


def test_concurrent_submissions_yield_one_booking_and_alternatives(
    session_factory: sessionmaker, codec: CheckinTokenCodec, clock, schedule, make_candidate
) -> None:
    def _worker(index: int):
        session = session_factory()
        try:
            lifecycle = BookingLifecycle(
                session, codec, dispatcher=RecordingDispatcher(), now_fn=clock
            )
            reservations = SlotReservationManager(
                session, store=DatabaseReservationStore(session), schedule=schedule, now_fn=clock
            )
            orchestrator = BookingOrchestrator(session, lifecycle, reservations, schedule=schedule)
            return orchestrator.submit_booking(make_candidate(subject_id=f"patient-{index}"))
        finally:
            session.close()

    results = _race(6, _worker)

    booked = [result for result in results if isinstance(result, BookingSubmission)]
    conflicts = [result for result in results if isinstance(result, SlotConflictResult)]
    assert len(booked) == 1
    assert len(conflicts) == 5
    for conflict in conflicts:
        assert conflict.has_alternatives
        offered = {(slot.resource_key, slot.booking_date, slot.time_slot) for slot in conflict.alternatives}
        assert (RESOURCE, TODAY, time(16, 0)) not in offered
