from fastapi import APIRouter, Depends, HTTPException, status, Query
from typing import List, Optional
from libtrack.errors import LedgerError, to_http_exception
from libtrack.models.reservation import (
    Reservation,
    RESERVATION_CONFIRMED,
    RESERVATION_COMPLETED,
    RESERVATION_DELETED,
    RESERVATION_PENDING,
    HISTORY_STATUSES,
)
from libtrack.models.user import User
from libtrack.services.auth import get_current_user, require_admin
from libtrack.services.ledger import ReservationLedger, get_ledger
from libtrack.schemas.reservation import (
    ReservationCreate, ReservationResponse, ReservationStats,
    ReservationHistory, ConflictCheck, CancelResponse,
    SweepResponse, ReconcileResponse
)

router = APIRouter(prefix="/api/reservations", tags=["Reservations"])

def _responses(ledger: ReservationLedger, reservations: List[Reservation]) -> List[ReservationResponse]:
    """Attach the current catalog record and, for pending rows, the time left."""
    books = {}
    responses = []
    for reservation in reservations:
        key = (reservation.book_id, reservation.book_sr_no)
        if key not in books:
            book = ledger.book_for(reservation)
            books[key] = book.to_dict() if book else None

        data = reservation.to_dict()
        data["book"] = books[key]
        if reservation.status == RESERVATION_PENDING:
            data["timeRemaining"] = ledger.time_remaining(reservation).to_dict()
        responses.append(ReservationResponse(**data))
    return responses

@router.get("", response_model=List[ReservationResponse])
async def get_reservations(
    status_filter: Optional[str] = Query(None, alias="status", pattern="^(pending|confirmed|completed)$"),
    role: Optional[str] = Query(None, pattern="^(student|teacher)$"),
    search: Optional[str] = Query(None, description="Search by reserver name/id, book name or author"),
    current_user: User = Depends(get_current_user),
    ledger: ReservationLedger = Depends(get_ledger)
):
    """Active reservations, newest first. Archived (deleted) reservations are excluded."""
    reservations = ledger.reservations.list(
        statuses=[status_filter] if status_filter else None,
        exclude_statuses=[RESERVATION_DELETED],
        reserver_role=role,
        search=search
    )
    return _responses(ledger, reservations)

@router.get("/stats", response_model=ReservationStats)
async def get_reservation_stats(
    current_user: User = Depends(get_current_user),
    ledger: ReservationLedger = Depends(get_ledger)
):
    store = ledger.reservations
    return ReservationStats(
        total=store.count(exclude_statuses=[RESERVATION_DELETED]),
        pending=store.count(RESERVATION_PENDING),
        confirmed=store.count(RESERVATION_CONFIRMED),
        students=store.count(reserver_role='student', exclude_statuses=[RESERVATION_DELETED]),
        teachers=store.count(reserver_role='teacher', exclude_statuses=[RESERVATION_DELETED])
    )

@router.get("/history", response_model=ReservationHistory)
async def get_reservation_history(
    status_filter: Optional[str] = Query(None, alias="status", pattern="^(completed|deleted)$"),
    role: Optional[str] = Query(None, pattern="^(student|teacher)$"),
    current_user: User = Depends(get_current_user),
    ledger: ReservationLedger = Depends(get_ledger)
):
    """Completed and archived reservations."""
    store = ledger.reservations
    reservations = store.list(
        statuses=[status_filter] if status_filter else HISTORY_STATUSES,
        reserver_role=role
    )
    return ReservationHistory(
        reservations=_responses(ledger, reservations),
        completed=store.count(RESERVATION_COMPLETED),
        deleted=store.count(RESERVATION_DELETED)
    )

@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    request: ReservationCreate,
    current_user: User = Depends(get_current_user),
    ledger: ReservationLedger = Depends(get_ledger)
):
    """Record a pending reservation request. It expires if not confirmed in time."""
    try:
        reservation = ledger.create(
            current_user,
            request.reserver_name,
            request.reserver_id,
            request.reserver_role,
            request.book_sr_no
        )
    except LedgerError as e:
        raise to_http_exception(e)
    return _responses(ledger, [reservation])[0]

@router.post("/sweep", response_model=SweepResponse)
async def sweep_expired_reservations(
    current_user: User = Depends(require_admin),
    ledger: ReservationLedger = Depends(get_ledger)
):
    """Remove expired pending reservations now instead of waiting for the background sweep."""
    removed = ledger.sweep_expired()
    return SweepResponse(removed=removed, maxAgeHours=ledger.max_age.total_seconds() / 3600)

@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile_books(
    current_user: User = Depends(require_admin),
    ledger: ReservationLedger = Depends(get_ledger)
):
    """Repair book statuses that drifted from the confirmed reservations."""
    report = ledger.reconcile()
    return ReconcileResponse(**report.to_dict())

@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: int,
    current_user: User = Depends(get_current_user),
    ledger: ReservationLedger = Depends(get_ledger)
):
    reservation = ledger.reservations.get(reservation_id)
    if not reservation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Reservation not found"
        )
    return _responses(ledger, [reservation])[0]

@router.get("/{reservation_id}/conflict", response_model=ConflictCheck)
async def check_conflict(
    reservation_id: int,
    current_user: User = Depends(get_current_user),
    ledger: ReservationLedger = Depends(get_ledger)
):
    """Show the reserver's existing confirmed reservation before confirming another one."""
    reservation = ledger.reservations.get(reservation_id)
    if not reservation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Reservation not found"
        )

    existing = ledger.confirmed_for(reservation.reserver_id, exclude_id=reservation.id)
    if not existing:
        return ConflictCheck(hasConflict=False)
    return ConflictCheck(hasConflict=True, existing=_responses(ledger, existing[:1])[0])

@router.post("/{reservation_id}/confirm", response_model=ReservationResponse)
async def confirm_reservation(
    reservation_id: int,
    force: bool = Query(False, description="Confirm even if the reserver already holds a confirmed reservation"),
    current_user: User = Depends(get_current_user),
    ledger: ReservationLedger = Depends(get_ledger)
):
    """Confirm a pending reservation and mark its book Allocated."""
    try:
        reservation = ledger.confirm(reservation_id, current_user, force=force)
    except LedgerError as e:
        raise to_http_exception(e)
    return _responses(ledger, [reservation])[0]

@router.delete("/{reservation_id}", response_model=CancelResponse)
async def cancel_reservation(
    reservation_id: int,
    current_user: User = Depends(get_current_user),
    ledger: ReservationLedger = Depends(get_ledger)
):
    """Cancel a reservation. Confirmed ones are archived and their book released; others are removed."""
    try:
        result = ledger.cancel(reservation_id, current_user)
    except LedgerError as e:
        raise to_http_exception(e)

    if result.archived:
        message = "Reservation archived. Book status updated to Available." if result.book_released \
            else "Reservation archived. No book status was changed."
    else:
        message = "Reservation deleted successfully"
    return CancelResponse(
        message=message,
        archived=result.archived,
        bookReleased=result.book_released,
        reservation=ReservationResponse(**result.reservation)
    )
