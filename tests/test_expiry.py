"""
Tests for pending-reservation expiry: the sweep, time remaining and the
background sweeper thread.
"""
import time
import pytest
from datetime import datetime, timedelta
import pytz
from libtrack.config import settings
from libtrack.database import SessionLocal
from libtrack.models import Reservation
from libtrack.services.ledger import TimeRemaining, time_remaining
from libtrack.services.sweeper import ExpirySweeper
from libtrack.utils.timezone import now_utc

MAX_AGE = timedelta(hours=24)


@pytest.mark.unit
class TestSweepExpired:

    def test_sweep_removes_only_stale_pending(self, ledger, db, make_book, make_reservation, clock, recorder):
        book = make_book(sr_no="1")
        stale = make_reservation(book, reserver_id="S1", created_at=clock() - timedelta(hours=25))
        fresh = make_reservation(book, reserver_id="S2", created_at=clock() - timedelta(hours=1))
        old_confirmed = make_reservation(book, reserver_id="S3", status="confirmed",
                                         created_at=clock() - timedelta(hours=500))
        old_completed = make_reservation(book, reserver_id="S4", status="completed",
                                         created_at=clock() - timedelta(hours=500))

        stale_id = stale.id

        removed = ledger.sweep_expired()

        assert removed == 1
        db.expire_all()
        assert db.get(Reservation, stale_id) is None
        assert db.get(Reservation, fresh.id) is not None
        assert db.get(Reservation, old_confirmed.id).status == "confirmed"
        assert db.get(Reservation, old_completed.id).status == "completed"
        assert recorder.names() == ["reservation.expired"]

    def test_sweep_is_idempotent(self, ledger, db, make_book, make_reservation, clock, recorder):
        book = make_book(sr_no="1")
        make_reservation(book, created_at=clock() - timedelta(hours=30))

        assert ledger.sweep_expired() == 1
        assert ledger.sweep_expired() == 0
        assert db.query(Reservation).count() == 0
        # Nothing is announced when nothing was removed
        assert recorder.names() == ["reservation.expired"]

    def test_sweep_honours_explicit_max_age(self, ledger, db, make_book, make_reservation, clock):
        book = make_book(sr_no="1")
        make_reservation(book, created_at=clock() - timedelta(hours=3))

        assert ledger.sweep_expired(max_age=timedelta(hours=4)) == 0
        assert ledger.sweep_expired(max_age=timedelta(hours=2)) == 1

    def test_sweep_after_clock_advances(self, ledger, db, make_book, make_reservation, clock):
        book = make_book(sr_no="1")
        make_reservation(book, created_at=clock())

        assert ledger.sweep_expired() == 0
        clock.advance(hours=24, seconds=1)
        assert ledger.sweep_expired() == 1


@pytest.mark.unit
class TestTimeRemaining:

    def test_not_expired(self):
        now = datetime(2024, 5, 2, 12, 0, 0, tzinfo=pytz.utc)
        created = now - timedelta(hours=23, minutes=10)

        remaining = time_remaining(created, now, MAX_AGE)

        assert remaining.expired is False
        assert remaining.hours == 0
        assert remaining.minutes in (49, 50)
        assert 0 <= remaining.seconds <= 59

    def test_expired(self):
        now = datetime(2024, 5, 2, 12, 0, 0, tzinfo=pytz.utc)

        remaining = time_remaining(now - timedelta(hours=25), now, MAX_AGE)

        assert remaining == TimeRemaining(expired=True)
        assert remaining.to_dict() == {"expired": True}

    def test_exact_boundary_is_expired(self):
        now = datetime(2024, 5, 2, 12, 0, 0, tzinfo=pytz.utc)
        assert time_remaining(now - MAX_AGE, now, MAX_AGE).expired is True

    def test_hours_do_not_roll_into_days(self):
        now = datetime(2024, 5, 2, 12, 0, 0, tzinfo=pytz.utc)
        remaining = time_remaining(now - timedelta(minutes=30), now, timedelta(hours=43))

        assert remaining.to_dict() == {"expired": False, "hours": 42, "minutes": 30, "seconds": 0}

    def test_naive_created_at_is_treated_as_utc(self):
        now = datetime(2024, 5, 2, 12, 0, 0, tzinfo=pytz.utc)
        created = datetime(2024, 5, 2, 11, 0, 0)

        remaining = time_remaining(created, now, MAX_AGE)

        assert (remaining.hours, remaining.minutes, remaining.seconds) == (23, 0, 0)

    def test_ledger_uses_its_clock(self, ledger, make_book, make_reservation, clock):
        book = make_book(sr_no="1")
        reservation = make_reservation(book, created_at=clock() - timedelta(hours=23, minutes=10))

        remaining = ledger.time_remaining(reservation)

        assert (remaining.hours, remaining.minutes, remaining.seconds) == (0, 50, 0)
        clock.advance(hours=1)
        assert ledger.time_remaining(reservation).expired is True


@pytest.mark.unit
class TestExpirySweeper:

    def test_run_once_uses_its_own_session(self, db, make_book, make_reservation):
        book = make_book(sr_no="1")
        make_reservation(book, reserver_id="S1", created_at=now_utc() - timedelta(hours=25))
        make_reservation(book, reserver_id="S2", created_at=now_utc() - timedelta(hours=1))
        sweeper = ExpirySweeper(interval=60, max_age=MAX_AGE, session_factory=SessionLocal)

        assert sweeper.run_once() == 1
        assert sweeper.last_removed == 1
        assert sweeper.runs == 1
        assert db.query(Reservation).count() == 1

    def test_start_sweeps_immediately_then_stops(self, db, make_book, make_reservation, monkeypatch):
        monkeypatch.setattr(settings, "sweeper_enabled", True)
        book = make_book(sr_no="1")
        make_reservation(book, created_at=now_utc() - timedelta(hours=48))
        sweeper = ExpirySweeper(interval=3600, max_age=MAX_AGE, session_factory=SessionLocal)

        sweeper.start()
        try:
            deadline = time.time() + 5
            while sweeper.runs == 0 and time.time() < deadline:
                time.sleep(0.05)
            assert sweeper.is_running()
        finally:
            sweeper.stop()

        assert sweeper.runs == 1
        assert sweeper.last_removed == 1
        assert not sweeper.is_running()

    def test_start_is_noop_when_disabled(self, monkeypatch):
        monkeypatch.setattr(settings, "sweeper_enabled", False)
        sweeper = ExpirySweeper(interval=3600, max_age=MAX_AGE)

        sweeper.start()

        assert not sweeper.is_running()
        assert sweeper.runs == 0
