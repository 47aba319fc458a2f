import logging
import threading
from datetime import timedelta
from typing import Callable, Optional
from sqlalchemy.orm import Session
from libtrack.config import settings
from libtrack.database import SessionLocal
from libtrack.services.ledger import ReservationLedger, default_max_age
from libtrack.services.notifier import notifier
from libtrack.services.stores import BookStore, ReservationStore

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Background thread that purges stale pending reservations.
    Sweeps once on start and then every interval seconds until stopped."""

    def __init__(
        self,
        interval: Optional[float] = None,
        max_age: Optional[timedelta] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.interval = interval if interval is not None else settings.reservation_sweep_interval_seconds
        self.max_age = max_age if max_age is not None else default_max_age()
        self.session_factory = session_factory
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_removed = 0
        self.runs = 0

    def run_once(self) -> int:
        """Run a single sweep in its own session. Returns the number of reservations removed."""
        db = self.session_factory()
        try:
            ledger = ReservationLedger(
                ReservationStore(db),
                BookStore(db),
                notifier=notifier,
                max_age=self.max_age,
            )
            removed = ledger.sweep_expired()
            self.last_removed = removed
            self.runs += 1
            return removed
        finally:
            db.close()

    def _loop(self):
        while True:
            try:
                self.run_once()
            except Exception as e:
                logger.error(f"Expiry sweep failed: {e}", exc_info=True)
            if self._stop.wait(self.interval):
                break

    def start(self):
        if not settings.sweeper_enabled:
            logger.info("Expiry sweeper disabled")
            return
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="expiry-sweeper", daemon=True)
        self._thread.start()
        logger.info(
            f"Expiry sweeper started (every {self.interval}s, max age {self.max_age})"
        )

    def stop(self):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
            logger.info("Expiry sweeper stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


sweeper = ExpirySweeper()
