"""Reservation lifecycle: confirm, cancel, expiry sweep and book-status repair.

A reservation and the book it holds are written with two independent
commits. When the second write fails the pair is left diverged and a
``PartialFailure`` is raised; ``reconcile`` derives every book's status from
the confirmed reservations and repairs the drift.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional
from fastapi import Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from libtrack.config import settings
from libtrack.database import get_db
from libtrack.errors import (
    BookLookupError,
    BookNotFound,
    ConflictError,
    PartialFailure,
    ReservationNotFound,
    StoreError,
    ValidationError,
)
from libtrack.models.book import Book, BOOK_ALLOCATED, BOOK_AVAILABLE
from libtrack.models.reservation import (
    Reservation,
    RESERVATION_CONFIRMED,
    RESERVATION_DELETED,
    RESERVATION_PENDING,
)
from libtrack.models.user import User
from libtrack.services.notifier import notifier as default_notifier
from libtrack.services.stores import BookStore, ReservationStore
from libtrack.utils.timezone import as_utc, now_utc

logger = logging.getLogger(__name__)

RESERVER_ROLES = ('student', 'teacher')


def default_max_age() -> timedelta:
    return timedelta(hours=settings.reservation_max_age_hours)


@dataclass(frozen=True)
class TimeRemaining:
    expired: bool
    hours: int = 0
    minutes: int = 0
    seconds: int = 0

    def to_dict(self):
        if self.expired:
            return {"expired": True}
        return {
            "expired": False,
            "hours": self.hours,
            "minutes": self.minutes,
            "seconds": self.seconds,
        }


def time_remaining(created_at: datetime, now: datetime, max_age: timedelta) -> TimeRemaining:
    """Time left before a pending reservation created at created_at expires.
    Hours are not rolled over into days."""
    remaining = max_age - (as_utc(now) - as_utc(created_at))
    if remaining <= timedelta(0):
        return TimeRemaining(expired=True)

    total = int(remaining.total_seconds())
    return TimeRemaining(
        expired=False,
        hours=total // 3600,
        minutes=(total % 3600) // 60,
        seconds=total % 60,
    )


@dataclass
class CancelResult:
    reservation: Dict
    archived: bool  # True: kept as 'deleted'; False: row removed
    book_released: bool = False


@dataclass
class ReconcileFix:
    book: int
    sr_no: Optional[str]
    old_status: str
    new_status: str

    def to_dict(self):
        return {
            "id": str(self.book),
            "srNo": self.sr_no,
            "oldStatus": self.old_status,
            "newStatus": self.new_status,
        }


@dataclass
class ReconcileReport:
    books: List[ReconcileFix] = field(default_factory=list)
    linked_reservations: List[int] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.books or self.linked_reservations)

    def to_dict(self):
        return {
            "books": [fix.to_dict() for fix in self.books],
            "linkedReservations": [str(r) for r in self.linked_reservations],
        }


def _actor_id(actor: Optional[User]) -> Optional[int]:
    return actor.user_id if actor is not None else None


def _actor_label(actor: Optional[User]) -> str:
    return actor.username if actor is not None else "system"


class ReservationLedger:
    """Mediates every status change of a reservation and keeps its book in step."""

    def __init__(
        self,
        reservations: ReservationStore,
        books: BookStore,
        clock: Callable[[], datetime] = now_utc,
        notifier=None,
        max_age: Optional[timedelta] = None,
    ):
        self.reservations = reservations
        self.books = books
        self.clock = clock
        self.notifier = notifier
        self.max_age = max_age if max_age is not None else default_max_age()

    def _get(self, reservation_id: int) -> Reservation:
        reservation = self.reservations.get(reservation_id)
        if reservation is None:
            raise ReservationNotFound(reservation_id)
        return reservation

    def _notify(self, event: str, payload: Dict):
        if self.notifier is None:
            return
        try:
            self.notifier.publish(event, payload)
        except Exception as e:
            logger.warning(f"Dropping {event} notification: {e}", exc_info=True)

    def confirmed_for(self, reserver_id: str, exclude_id: Optional[int] = None) -> List[Reservation]:
        """Confirmed reservations currently held by a reserver."""
        held = self.reservations.list(statuses=[RESERVATION_CONFIRMED], reserver_id=reserver_id)
        return [r for r in held if r.id != exclude_id]

    def book_for(self, reservation: Reservation) -> Optional[Book]:
        """The catalog book a reservation refers to: by book_id once linked, by serial number before that."""
        if reservation.book_id:
            return self.books.find_by_book_id(reservation.book_id)
        return self.books.find(reservation.book_sr_no)

    def holders_of(self, book: Book) -> List[Reservation]:
        """Confirmed reservations referencing a book, by book_id or (for unlinked rows) serial number."""
        holders = []
        for r in self.reservations.list(statuses=[RESERVATION_CONFIRMED]):
            if r.book_id:
                if r.book_id == book.book_id:
                    holders.append(r)
            elif book.sr_no and r.book_sr_no == book.sr_no:
                holders.append(r)
        return holders

    def _check_conflict(self, reserver_name: str, reserver_id: str, force: bool,
                        exclude_id: Optional[int] = None) -> List[Reservation]:
        existing = self.confirmed_for(reserver_id, exclude_id=exclude_id)
        if existing and not force:
            logger.info(f"Confirmation blocked: reserver {reserver_id} already holds reservation {existing[0].id}")
            raise ConflictError(reserver_name, reserver_id, existing[0].book_name, existing[0].id)
        return existing

    def _allocate_book(self, reservation: Reservation, book: Book, now: datetime):
        """Second half of a confirmation. The reservation is already committed."""
        try:
            allocated = self.books.update(book.id, {"status": BOOK_ALLOCATED, "updated_at": now})
        except Exception as e:
            logger.error(
                f"Reservation {reservation.id} confirmed but book {book.book_id} could not be allocated: {e}",
                exc_info=True
            )
            raise PartialFailure(
                "Reservation confirmed but failed to update book status",
                reservation.id, book.book_id, cause=e
            ) from e
        if allocated is None:
            logger.error(f"Reservation {reservation.id} confirmed but book {book.book_id} disappeared")
            raise PartialFailure(
                "Reservation confirmed but the book no longer exists",
                reservation.id, book.book_id
            )

    def create(
        self,
        actor: Optional[User],
        reserver_name: str,
        reserver_id: str,
        reserver_role: str,
        book_sr_no: str,
    ) -> Reservation:
        """Record a new pending reservation request for the book with this serial number."""
        fields = {
            "reserver_name": reserver_name,
            "reserver_id": reserver_id,
            "reserver_role": reserver_role,
            "book_sr_no": book_sr_no,
        }
        missing = [name for name, value in fields.items() if not value or not str(value).strip()]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        if reserver_role not in RESERVER_ROLES:
            raise ValidationError(f"reserver_role must be one of {', '.join(RESERVER_ROLES)}")

        book = self.books.find(book_sr_no)
        if book is None:
            raise BookLookupError(book_sr_no)

        now = self.clock()
        reservation = self.reservations.insert({
            "reserver_name": reserver_name.strip(),
            "reserver_id": reserver_id.strip(),
            "reserver_role": reserver_role,
            "book_name": book.name,
            "book_sr_no": book.sr_no,
            "status": RESERVATION_PENDING,
            "processed_by": _actor_id(actor),
            "created_at": now,
            "updated_at": now,
        })
        logger.info(f"Reservation {reservation.id} created for {reservation.reserver_id} (book SR {book.sr_no}) by {_actor_label(actor)}")
        self._notify("reservation.created", reservation.to_dict())
        return reservation

    def confirm(self, reservation_id: int, actor: Optional[User], force: bool = False) -> Reservation:
        """Confirm a pending reservation and allocate its book.

        Raises ConflictError when the reserver already holds a confirmed
        reservation and force is False; nothing is written in that case.
        """
        reservation = self._get(reservation_id)
        if reservation.status != RESERVATION_PENDING:
            raise ValidationError(
                f"Reservation {reservation.id} is {reservation.status}; only pending reservations can be confirmed"
            )

        existing = self._check_conflict(
            reservation.reserver_name, reservation.reserver_id, force, exclude_id=reservation.id
        )

        if not reservation.book_sr_no:
            raise ValidationError(f"Reservation {reservation.id} has no book serial number")
        book = self.books.find(reservation.book_sr_no)
        if book is None:
            raise BookLookupError(reservation.book_sr_no)

        now = self.clock()
        confirmed = self.reservations.update(reservation.id, {
            "status": RESERVATION_CONFIRMED,
            "book_id": book.book_id,
            "processed_by": _actor_id(actor),
            "updated_at": now,
        })
        if confirmed is None:
            raise ReservationNotFound(reservation_id)

        self._allocate_book(confirmed, book, now)

        if existing:
            logger.warning(
                f"Reservation {confirmed.id} force-confirmed by {_actor_label(actor)}: "
                f"{confirmed.reserver_name} now holds {len(existing) + 1} confirmed reservations"
            )
        else:
            logger.info(f"Reservation {confirmed.id} confirmed by {_actor_label(actor)}; book {book.sr_no} allocated")
        self._notify("reservation.confirmed", confirmed.to_dict())
        return confirmed

    def cancel(self, reservation_id: int, actor: Optional[User]) -> CancelResult:
        """Cancel a reservation.

        Confirmed reservations release their book and are archived as
        'deleted'. Pending requests are removed outright. Archived and
        completed reservations are history and cannot be cancelled.
        """
        reservation = self._get(reservation_id)

        if reservation.status not in (RESERVATION_PENDING, RESERVATION_CONFIRMED):
            raise ValidationError(
                f"Reservation {reservation.id} is {reservation.status}; only pending or confirmed reservations can be cancelled"
            )

        if reservation.status == RESERVATION_PENDING:
            snapshot = reservation.to_dict()
            self.reservations.delete(reservation.id)
            logger.info(f"Reservation {reservation_id} ({snapshot['status']}) removed by {_actor_label(actor)}")
            self._notify("reservation.removed", snapshot)
            return CancelResult(reservation=snapshot, archived=False)

        now = self.clock()
        book = self.book_for(reservation)
        released = False
        if book is None:
            logger.warning(
                f"Reservation {reservation.id}: no book matches id {reservation.book_id} "
                f"or SR {reservation.book_sr_no}; nothing to release"
            )
        elif any(r.id != reservation.id for r in self.holders_of(book)):
            logger.warning(f"Book {book.sr_no} is still held by another confirmed reservation; left Allocated")
        else:
            try:
                self.books.update(book.id, {"status": BOOK_AVAILABLE, "updated_at": now})
            except SQLAlchemyError as e:
                logger.error(f"Could not release book {book.book_id} for reservation {reservation.id}: {e}", exc_info=True)
                raise StoreError(f"Failed to release book {book.sr_no or book.id}; reservation {reservation.id} is unchanged") from e
            released = True

        try:
            archived = self.reservations.update(reservation.id, {
                "status": RESERVATION_DELETED,
                "processed_by": _actor_id(actor),
                "updated_at": now,
            })
        except Exception as e:
            if not released:
                raise
            logger.error(f"Book {book.book_id} released but reservation {reservation.id} was not archived: {e}", exc_info=True)
            raise PartialFailure(
                "Book released but failed to archive the reservation",
                reservation.id, book.book_id, cause=e
            ) from e
        if archived is None:
            raise ReservationNotFound(reservation_id)

        logger.info(f"Reservation {archived.id} archived by {_actor_label(actor)} (book released: {released})")
        snapshot = archived.to_dict()
        self._notify("reservation.archived", snapshot)
        return CancelResult(reservation=snapshot, archived=True, book_released=released)

    def allocate(
        self,
        book_pk: int,
        actor: Optional[User],
        reserver_name: str,
        reserver_id: str,
        reserver_role: str,
        force: bool = False,
    ) -> Reservation:
        """Allocate an available book directly to a walk-in reserver.
        Creates an already-confirmed reservation, then marks the book Allocated."""
        book = self.books.get(book_pk)
        if book is None:
            raise BookNotFound(book_pk)
        if book.status == BOOK_ALLOCATED:
            raise ValidationError(f"Book {book.sr_no or book.id} is already allocated")
        reserver_name = (reserver_name or "").strip()
        reserver_id = (reserver_id or "").strip()
        if not reserver_name or not reserver_id:
            raise ValidationError("Missing required fields: reserver_name, reserver_id")
        if reserver_role not in RESERVER_ROLES:
            raise ValidationError(f"reserver_role must be one of {', '.join(RESERVER_ROLES)}")

        existing = self._check_conflict(reserver_name, reserver_id, force)

        now = self.clock()
        reservation = self.reservations.insert({
            "reserver_name": reserver_name,
            "reserver_id": reserver_id,
            "reserver_role": reserver_role,
            "book_name": book.name,
            "book_sr_no": book.sr_no or '',
            "book_id": book.book_id,
            "status": RESERVATION_CONFIRMED,
            "processed_by": _actor_id(actor),
            "created_at": now,
            "updated_at": now,
        })
        self._allocate_book(reservation, book, now)

        if existing:
            logger.warning(f"Book {book.sr_no} force-allocated to {reserver_id}, who already holds {len(existing)}")
        else:
            logger.info(f"Book {book.sr_no} allocated to {reserver_id} by {_actor_label(actor)}")
        self._notify("reservation.confirmed", reservation.to_dict())
        return reservation

    def release(self, book_pk: int, actor: Optional[User]) -> List[int]:
        """Mark a book Available, archiving the confirmed reservations that held it.
        Returns the ids of the archived reservations."""
        book = self.books.get(book_pk)
        if book is None:
            raise BookNotFound(book_pk)

        archived = []
        for holder in self.holders_of(book):
            result = self.cancel(holder.id, actor)
            archived.append(int(result.reservation["id"]))

        # Covers a book marked Allocated without any reservation behind it
        if book.status != BOOK_AVAILABLE:
            self.books.update(book.id, {"status": BOOK_AVAILABLE, "updated_at": self.clock()})
        logger.info(f"Book {book.sr_no or book.id} released by {_actor_label(actor)}; archived reservations {archived}")
        return archived

    def sweep_expired(self, max_age: Optional[timedelta] = None) -> int:
        """Remove pending reservations older than max_age. Returns the number removed."""
        cutoff = as_utc(self.clock()) - (max_age if max_age is not None else self.max_age)
        removed = self.reservations.delete_pending_before(cutoff)
        if removed:
            logger.info(f"Swept {removed} expired pending reservation(s) created before {cutoff.isoformat()}")
            self._notify("reservation.expired", {"removed": removed, "cutoff": cutoff.isoformat()})
        return removed

    def time_remaining(self, reservation: Reservation) -> TimeRemaining:
        return time_remaining(reservation.created_at, self.clock(), self.max_age)

    def reconcile(self) -> ReconcileReport:
        """Bring every book's status in line with the confirmed reservations.

        Confirmed reservations that only carry a serial number are linked to
        their book first.
        """
        report = ReconcileReport()
        confirmed = self.reservations.list(statuses=[RESERVATION_CONFIRMED])

        for reservation in confirmed:
            if reservation.book_id:
                continue
            book = self.books.find(reservation.book_sr_no)
            if book is None:
                logger.warning(f"Reconcile: confirmed reservation {reservation.id} references unknown SR {reservation.book_sr_no}")
                continue
            self.reservations.update(reservation.id, {"book_id": book.book_id})
            report.linked_reservations.append(reservation.id)

        held = {r.book_id for r in self.reservations.list(statuses=[RESERVATION_CONFIRMED]) if r.book_id}

        now = self.clock()
        for book in self.books.list():
            expected = BOOK_ALLOCATED if book.book_id in held else BOOK_AVAILABLE
            if book.status == expected:
                continue
            report.books.append(ReconcileFix(book.id, book.sr_no, book.status, expected))
            self.books.update(book.id, {"status": expected, "updated_at": now})

        if report.changed:
            logger.warning(
                f"Reconcile repaired {len(report.books)} book(s) and linked {len(report.linked_reservations)} reservation(s)"
            )
            self._notify("books.reconciled", report.to_dict())
        return report


def get_ledger(db: Session = Depends(get_db)) -> ReservationLedger:
    """FastAPI dependency: a ledger bound to the request's session."""
    return ReservationLedger(
        ReservationStore(db),
        BookStore(db),
        notifier=default_notifier,
    )
