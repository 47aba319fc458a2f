"""Errors raised by the reservation ledger.

Routes translate these into HTTP responses; nothing here is retried.
"""
from typing import Optional
from fastapi import HTTPException, status


class LedgerError(Exception):
    """Base class for reservation lifecycle failures."""


class ValidationError(LedgerError):
    """Missing or invalid input, or a transition the current status does not allow."""


class ConflictError(LedgerError):
    """The reserver already holds a confirmed reservation.

    The caller may retry the confirmation with ``force=True``.
    """

    def __init__(self, reserver_name: str, reserver_id: str, held_book: str, existing_id: Optional[int] = None):
        self.reserver_name = reserver_name
        self.reserver_id = reserver_id
        self.held_book = held_book
        self.existing_id = existing_id
        super().__init__(
            f"{reserver_name} already has a confirmed reservation for \"{held_book}\". "
            "Return the previously borrowed book or confirm with force."
        )


class BookLookupError(LedgerError, LookupError):
    """No book matches the serial number carried by a reservation."""

    def __init__(self, sr_no: Optional[str]):
        self.sr_no = sr_no
        super().__init__(f"No book found with serial number {sr_no!r}")


class BookNotFound(LedgerError, LookupError):
    def __init__(self, id: int):
        self.id = id
        super().__init__(f"Book {id} not found")


class ReservationNotFound(LedgerError, LookupError):
    def __init__(self, reservation_id: int):
        self.reservation_id = reservation_id
        super().__init__(f"Reservation {reservation_id} not found")


class StoreError(LedgerError):
    """A write failed before anything was changed."""


class PartialFailure(LedgerError):
    """The reservation and its book diverged because one of the two writes failed.

    Run a reconcile pass (or fix the book by hand) to restore consistency.
    """

    def __init__(self, message: str, reservation_id: int, book_id: Optional[str], cause: Optional[BaseException] = None):
        self.reservation_id = reservation_id
        self.book_id = book_id
        self.cause = cause
        super().__init__(message)


def to_http_exception(error: LedgerError):
    """Map a ledger error onto the HTTP response the API returns for it."""
    if isinstance(error, ConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": str(error),
                "reserverId": error.reserver_id,
                "heldBook": error.held_book,
                "existingReservationId": str(error.existing_id) if error.existing_id else None,
            }
        )
    if isinstance(error, LookupError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, PartialFailure):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": str(error),
                "reservationId": str(error.reservation_id),
                "bookId": error.book_id,
                "reconcileRequired": True,
            }
        )
    if isinstance(error, StoreError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(error))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
