from .user import User
from .book import Book, BOOK_AVAILABLE, BOOK_ALLOCATED
from .reservation import (
    Reservation,
    RESERVATION_PENDING,
    RESERVATION_CONFIRMED,
    RESERVATION_COMPLETED,
    RESERVATION_DELETED,
    HISTORY_STATUSES,
)

__all__ = [
    "User",
    "Book",
    "BOOK_AVAILABLE",
    "BOOK_ALLOCATED",
    "Reservation",
    "RESERVATION_PENDING",
    "RESERVATION_CONFIRMED",
    "RESERVATION_COMPLETED",
    "RESERVATION_DELETED",
    "HISTORY_STATUSES",
]
