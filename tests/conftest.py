"""
Pytest configuration and fixtures for the reservation tracker tests.

The application reads its settings at import time, so the environment is
pointed at a throwaway SQLite database before anything from libtrack is
imported.
"""
import os
import tempfile
from datetime import datetime, timedelta

_db_fd, _db_path = tempfile.mkstemp(suffix=".db")
os.environ["DATABASE_URL"] = f"sqlite:///{_db_path}"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["MQTT_ENABLED"] = "false"

import pytest
import pytz
from fastapi.testclient import TestClient

from libtrack.database import Base, engine, SessionLocal
from libtrack.main import app
from libtrack.models import (
    Book, Reservation, User,
    BOOK_ALLOCATED, RESERVATION_CONFIRMED, RESERVATION_PENDING,
)
from libtrack.services.auth import create_access_token, get_password_hash
from libtrack.services.ledger import ReservationLedger
from libtrack.services.stores import BookStore, ReservationStore
from libtrack.utils.timezone import now_utc


class FakeClock:
    """Controllable clock for expiry math."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 5, 1, 12, 0, 0, tzinfo=pytz.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def publish(self, event, payload):
        self.events.append((event, payload))

    def names(self):
        return [event for event, _ in self.events]


@pytest.fixture(scope='function')
def db():
    """Fresh schema and a session for each test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recorder():
    return RecordingNotifier()


@pytest.fixture
def ledger(db, clock, recorder):
    return ReservationLedger(
        ReservationStore(db),
        BookStore(db),
        clock=clock,
        notifier=recorder,
        max_age=timedelta(hours=24),
    )


def _make_user(db, username, role):
    user = User(
        username=username,
        name=username.title(),
        password_hash=get_password_hash("password123"),
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin(db):
    return _make_user(db, "admin", "admin")


@pytest.fixture
def staff(db):
    return _make_user(db, "librarian", "staff")


@pytest.fixture
def make_book(db):
    """Factory for catalog books."""
    counter = {"n": 0}

    def _make(sr_no="auto", name=None, status="Available", department="Science", author="Author"):
        counter["n"] += 1
        book = Book(
            sr_no=str(counter["n"]) if sr_no == "auto" else sr_no,
            name=name or f"Book {counter['n']}",
            author=author,
            department=department,
            status=status,
        )
        db.add(book)
        db.commit()
        db.refresh(book)
        return book

    return _make


@pytest.fixture
def make_reservation(db):
    """Factory for reservations; created_at defaults to the real current time."""

    def _make(book, reserver_id="S100", status=RESERVATION_PENDING, created_at=None,
              reserver_name="Alice", reserver_role="student", link=None):
        reservation = Reservation(
            reserver_name=reserver_name,
            reserver_id=reserver_id,
            reserver_role=reserver_role,
            book_name=book.name,
            book_sr_no=book.sr_no,
            book_id=book.book_id if (link if link is not None else status == RESERVATION_CONFIRMED) else None,
            status=status,
            created_at=created_at or now_utc(),
        )
        db.add(reservation)
        db.commit()
        db.refresh(reservation)
        return reservation

    return _make


@pytest.fixture
def client(db):
    with TestClient(app) as test_client:
        yield test_client


def _headers(user):
    token = create_access_token({"sub": str(user.user_id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin):
    return _headers(admin)


@pytest.fixture
def staff_headers(staff):
    return _headers(staff)


def assert_books_consistent(db):
    """Every book is Allocated iff a confirmed reservation references it."""
    db.expire_all()
    confirmed = db.query(Reservation).filter(Reservation.status == RESERVATION_CONFIRMED).all()
    held_ids = {r.book_id for r in confirmed if r.book_id}
    held_sr = {r.book_sr_no for r in confirmed}
    for book in db.query(Book).all():
        held = book.book_id in held_ids or book.sr_no in held_sr
        assert (book.status == BOOK_ALLOCATED) == held, f"book {book.sr_no} is {book.status}"


@pytest.fixture
def check_consistency(db):
    return lambda: assert_books_consistent(db)
