"""
Shared fixtures for the clinic booking test suite.

Environment is pinned before any ``clinic_booking`` import so Settings picks
up deterministic token keys and an in-memory default database.
"""

import base64
from datetime import date, datetime, time, timedelta, timezone
import os
from typing import Any, Callable, Iterator, List, Tuple

os.environ["CI"] = "1"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CHECKIN_TOKEN_SIGNING_KEY"] = "test-signing-key"
os.environ["CHECKIN_TOKEN_ENCRYPTION_KEY"] = (
    base64.urlsafe_b64encode(b"k" * 32).decode("utf-8").rstrip("=")
)
os.environ["INITIAL_BOOKING_STATUS"] = "confirmed"
os.environ["RESERVATION_BACKEND"] = "database"
os.environ.pop("ADMIN_API_KEY", None)
os.environ.pop("NOTIFICATION_WEBHOOK_URL", None)

from fastapi.testclient import TestClient  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

from clinic_booking.api.dependencies.database import get_db  # noqa: E402
from clinic_booking.api.dependencies.services import (  # noqa: E402
    get_clock,
    get_deferred_queue,
    get_notification_dispatcher,
    get_token_codec,
)
from clinic_booking.core.clinic_schedule import ClinicSchedule  # noqa: E402
from clinic_booking.database import Base, build_engine  # noqa: E402
import clinic_booking.models  # noqa: E402,F401
from clinic_booking.models.booking import Booking  # noqa: E402
from clinic_booking.services.booking_lifecycle import (  # noqa: E402
    BookingCandidate,
    BookingLifecycle,
)
from clinic_booking.services.booking_orchestrator import BookingOrchestrator  # noqa: E402
from clinic_booking.services.checkin_token_codec import CheckinTokenCodec  # noqa: E402
from clinic_booking.services.reservation_stores import DatabaseReservationStore  # noqa: E402
from clinic_booking.services.slot_reservation_manager import SlotReservationManager  # noqa: E402

# Monday 2026-03-02, 15:00 in the clinic (UTC+7). Weekday slots run 16:00-18:30.
START = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
TODAY = date(2026, 3, 2)
RESOURCE = "dr-nguyen@district-1"
SIGNING_KEY = b"test-signing-key"
ENCRYPTION_KEY = b"k" * 32


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: Any) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value


class RecordingDispatcher:
    def __init__(self) -> None:
        self.events: List[Tuple[str, str]] = []

    def notify(self, event: str, booking: Booking) -> None:
        self.events.append((event, str(booking.id)))

    def names(self) -> List[str]:
        return [event for event, _ in self.events]


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def engine(tmp_path):
    built = build_engine(f"sqlite:///{tmp_path / 'clinic_booking_test.db'}")
    Base.metadata.create_all(built)
    yield built
    Base.metadata.drop_all(built)
    built.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def codec(clock) -> CheckinTokenCodec:
    return CheckinTokenCodec(SIGNING_KEY, ENCRYPTION_KEY, now_fn=clock)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def schedule() -> ClinicSchedule:
    return ClinicSchedule.from_settings()


@pytest.fixture
def lifecycle(db, codec, dispatcher, clock) -> BookingLifecycle:
    return BookingLifecycle(db, codec, dispatcher=dispatcher, now_fn=clock)


@pytest.fixture
def reservations(db, clock, schedule) -> SlotReservationManager:
    return SlotReservationManager(
        db, store=DatabaseReservationStore(db), schedule=schedule, now_fn=clock
    )


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def orchestrator(db, lifecycle, reservations, schedule, sleeps) -> BookingOrchestrator:
    return BookingOrchestrator(
        db, lifecycle, reservations, schedule=schedule, sleep=sleeps.append
    )


@pytest.fixture
def make_candidate() -> Callable[..., BookingCandidate]:
    def _make(
        subject_id: str = "patient-1",
        booking_date: date = TODAY,
        time_slot: time = time(16, 0),
        resource_key: str = RESOURCE,
    ) -> BookingCandidate:
        return BookingCandidate(
            subject_id=subject_id,
            resource_key=resource_key,
            booking_date=booking_date,
            time_slot=time_slot,
        )

    return _make


@pytest.fixture
def client(session_factory, clock, dispatcher, codec) -> Iterator[TestClient]:
    from clinic_booking.main import app

    def _get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_deferred_queue] = lambda: None
    app.dependency_overrides[get_token_codec] = lambda: codec
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
