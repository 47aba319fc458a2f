import logging
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List, Optional
from libtrack.database import get_db
from libtrack.errors import LedgerError, to_http_exception
from libtrack.models.book import Book, BOOK_ALLOCATED, BOOK_AVAILABLE
from libtrack.models.reservation import RESERVATION_CONFIRMED
from libtrack.models.user import User
from libtrack.services.auth import get_current_user, require_admin
from libtrack.services.ledger import ReservationLedger, get_ledger
from libtrack.services.stores import BookStore, ReservationStore
from libtrack.schemas.book import (
    BookResponse, BookCreate, BookUpdate, BookStats,
    AllocationRequest, ReleaseResponse
)
from libtrack.schemas.reservation import ReservationResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/library/books", tags=["Library Books"])

def _book_response(book: Book, holders=None) -> BookResponse:
    data = book.to_dict()
    data["reservations"] = [r.to_dict() for r in holders] if holders else []
    return BookResponse(**data)

def _get_book_or_404(store: BookStore, book_id: int) -> Book:
    book = store.get(book_id)
    if not book:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Book not found"
        )
    return book

def _ensure_sr_no_free(store: BookStore, sr_no: Optional[str], book_id: Optional[int] = None):
    if not sr_no:
        return
    other = store.find(sr_no)
    if other and other.id != book_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Serial number {sr_no} is already used by another book"
        )

@router.get("", response_model=List[BookResponse])
async def get_books(
    status_filter: Optional[str] = Query(None, alias="status", pattern="^(Available|Allocated)$"),
    department: Optional[str] = Query(None, description="Filter by department"),
    search: Optional[str] = Query(None, description="Search by name, author, department, status or serial number"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get the catalog sorted by serial number, with the confirmed reservations holding each book."""
    books = BookStore(db).list(status=status_filter, department=department, search=search)

    by_book_id = {}
    by_sr_no = {}
    for reservation in ReservationStore(db).list(statuses=[RESERVATION_CONFIRMED]):
        if reservation.book_id:
            by_book_id.setdefault(reservation.book_id, []).append(reservation)
        elif reservation.book_sr_no:
            by_sr_no.setdefault(reservation.book_sr_no, []).append(reservation)

    return [
        _book_response(book, by_book_id.get(book.book_id, []) + (by_sr_no.get(book.sr_no, []) if book.sr_no else []))
        for book in books
    ]

@router.get("/departments", response_model=List[str])
async def get_departments(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Distinct departments present in the catalog."""
    return BookStore(db).departments()

@router.get("/stats", response_model=BookStats)
async def get_book_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Dashboard counters and the most recently added books."""
    store = BookStore(db)
    total = store.count()
    available = store.count(BOOK_AVAILABLE)
    allocated = store.count(BOOK_ALLOCATED)
    allocation_rate = round(allocated / total * 100) if total > 0 else 0

    return BookStats(
        total=total,
        available=available,
        allocated=allocated,
        allocationRate=allocation_rate,
        recent=[_book_response(book) for book in store.recent(5)]
    )

@router.get("/{book_id}", response_model=BookResponse)
async def get_book(
    book_id: int,
    current_user: User = Depends(get_current_user),
    ledger: ReservationLedger = Depends(get_ledger)
):
    """Get book details by ID."""
    book = _get_book_or_404(ledger.books, book_id)
    return _book_response(book, ledger.holders_of(book))

@router.post("", response_model=BookResponse, status_code=status.HTTP_201_CREATED)
async def create_book(
    book_data: BookCreate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Add a book to the catalog. New books are always Available."""
    store = BookStore(db)
    _ensure_sr_no_free(store, book_data.sr_no)

    fields = book_data.model_dump()
    fields["sr_no"] = fields["sr_no"] or None
    fields["status"] = BOOK_AVAILABLE
    fields["uploaded_by"] = current_user.user_id
    try:
        book = store.insert(fields)
    except IntegrityError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Book conflicts with an existing record"
        )

    logger.info(f"Book {book.sr_no or book.id} added by {current_user.username}")
    return _book_response(book)

@router.put("/{book_id}", response_model=BookResponse)
async def update_book(
    book_id: int,
    book_data: BookUpdate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Update catalog fields of a book (only those provided)."""
    store = BookStore(db)
    _get_book_or_404(store, book_id)

    updates = book_data.model_dump(exclude_unset=True)
    if "sr_no" in updates:
        updates["sr_no"] = updates["sr_no"] or None
        _ensure_sr_no_free(store, updates["sr_no"], book_id)
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields to update"
        )

    try:
        book = store.update(book_id, updates)
    except IntegrityError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Book conflicts with an existing record"
        )

    logger.info(f"Book {book.id} updated by {current_user.username}: {sorted(updates)}")
    return _book_response(book)

@router.delete("/{book_id}")
async def delete_book(
    book_id: int,
    current_user: User = Depends(require_admin),
    ledger: ReservationLedger = Depends(get_ledger)
):
    """Delete a book. Books held by a confirmed reservation must be released first."""
    book = _get_book_or_404(ledger.books, book_id)
    if ledger.holders_of(book):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Book is allocated; release it before deleting"
        )

    ledger.books.delete(book_id)
    logger.info(f"Book {book_id} deleted by {current_user.username}")
    return {"message": "Book deleted successfully"}

@router.post("/{book_id}/allocate", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def allocate_book(
    book_id: int,
    request: AllocationRequest,
    current_user: User = Depends(get_current_user),
    ledger: ReservationLedger = Depends(get_ledger)
):
    """Toggle a book to Allocated by recording a confirmed reservation for the given reserver."""
    try:
        reservation = ledger.allocate(
            book_id,
            current_user,
            request.reserver_name,
            request.reserver_id,
            request.reserver_role,
            force=request.force
        )
    except LedgerError as e:
        raise to_http_exception(e)
    return ReservationResponse(**reservation.to_dict())

@router.post("/{book_id}/release", response_model=ReleaseResponse)
async def release_book(
    book_id: int,
    current_user: User = Depends(get_current_user),
    ledger: ReservationLedger = Depends(get_ledger)
):
    """Toggle a book back to Available, archiving the reservations that held it."""
    try:
        archived = ledger.release(book_id, current_user)
    except LedgerError as e:
        raise to_http_exception(e)

    book = ledger.books.get(book_id)
    return ReleaseResponse(
        message="Book status changed to Available",
        book=_book_response(book),
        archivedReservations=[str(r) for r in archived]
    )
