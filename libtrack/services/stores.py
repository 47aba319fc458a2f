"""SQLAlchemy-backed stores for books and reservations.

Each write commits on its own. The ledger relies on this to detect a
reservation/book pair that went out of sync.
"""
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import or_, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from libtrack.models.book import Book
from libtrack.models.reservation import Reservation, RESERVATION_PENDING


_LEADING_DIGITS = re.compile(r"^\s*(\d+)")


def sr_no_sort_key(book: Book):
    """Sort by the numeric part of the serial number; books without one go last."""
    match = _LEADING_DIGITS.match(book.sr_no or "")
    number = int(match.group(1)) if match else float("inf")
    return (number, book.sr_no or "", book.id)


class _Store:
    def __init__(self, db: Session):
        self.db = db
    
    def _commit(self):
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise


class BookStore(_Store):
    
    def get(self, id: int) -> Optional[Book]:
        return self.db.query(Book).filter(Book.id == id).first()
    
    def find(self, sr_no: Optional[str]) -> Optional[Book]:
        """Find a book by its serial number."""
        if not sr_no:
            return None
        return self.db.query(Book).filter(Book.sr_no == sr_no).first()
    
    def find_by_book_id(self, book_id: Optional[str]) -> Optional[Book]:
        if not book_id:
            return None
        return self.db.query(Book).filter(Book.book_id == book_id).first()
    
    def list(
        self,
        status: Optional[str] = None,
        department: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[Book]:
        query = self.db.query(Book)
        
        if status:
            query = query.filter(Book.status == status)
        
        if department:
            query = query.filter(func.lower(func.trim(Book.department)) == department.strip().lower())
        
        if search:
            search_term = f"%{search}%"
            query = query.filter(
                or_(
                    Book.name.ilike(search_term),
                    Book.author.ilike(search_term),
                    Book.department.ilike(search_term),
                    Book.status.ilike(search_term),
                    Book.sr_no.ilike(search_term)
                )
            )
        
        return sorted(query.all(), key=sr_no_sort_key)
    
    def departments(self) -> List[str]:
        rows = self.db.query(Book.department).distinct().order_by(Book.department).all()
        return [row[0] for row in rows if row[0]]
    
    def count(self, status: Optional[str] = None) -> int:
        query = self.db.query(func.count(Book.id))
        if status:
            query = query.filter(Book.status == status)
        return query.scalar() or 0
    
    def recent(self, limit: int = 5) -> List[Book]:
        return self.db.query(Book).order_by(Book.created_at.desc(), Book.id.desc()).limit(limit).all()
    
    def insert(self, fields: Dict[str, Any]) -> Book:
        book = Book(**fields)
        self.db.add(book)
        self._commit()
        self.db.refresh(book)
        return book
    
    def update(self, id: int, fields: Dict[str, Any]) -> Optional[Book]:
        """Apply fields to the book with this internal id. Returns None if it does not exist."""
        book = self.get(id)
        if book is None:
            return None
        for key, value in fields.items():
            setattr(book, key, value)
        self._commit()
        self.db.refresh(book)
        return book
    
    def delete(self, id: int) -> bool:
        book = self.get(id)
        if book is None:
            return False
        self.db.delete(book)
        self._commit()
        return True


class ReservationStore(_Store):
    
    def get(self, id: int) -> Optional[Reservation]:
        return self.db.query(Reservation).filter(Reservation.id == id).first()
    
    def list(
        self,
        statuses: Optional[Iterable[str]] = None,
        exclude_statuses: Optional[Iterable[str]] = None,
        reserver_id: Optional[str] = None,
        reserver_role: Optional[str] = None,
        book_id: Optional[str] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Reservation]:
        query = self.db.query(Reservation)
        
        if statuses is not None:
            query = query.filter(Reservation.status.in_(list(statuses)))
        if exclude_statuses is not None:
            query = query.filter(Reservation.status.notin_(list(exclude_statuses)))
        if reserver_id is not None:
            query = query.filter(Reservation.reserver_id == reserver_id)
        if reserver_role:
            query = query.filter(Reservation.reserver_role == reserver_role)
        if book_id is not None:
            query = query.filter(Reservation.book_id == book_id)
        
        if search:
            search_term = f"%{search}%"
            query = query.outerjoin(Book, Book.sr_no == Reservation.book_sr_no).filter(
                or_(
                    Reservation.reserver_name.ilike(search_term),
                    Reservation.reserver_id.ilike(search_term),
                    Reservation.book_name.ilike(search_term),
                    Book.author.ilike(search_term)
                )
            )
        
        query = query.order_by(Reservation.created_at.desc(), Reservation.id.desc())
        if limit:
            query = query.limit(limit)
        return query.all()
    
    def count(self, status: Optional[str] = None, reserver_role: Optional[str] = None,
              exclude_statuses: Optional[Iterable[str]] = None) -> int:
        query = self.db.query(func.count(Reservation.id))
        if status:
            query = query.filter(Reservation.status == status)
        if reserver_role:
            query = query.filter(Reservation.reserver_role == reserver_role)
        if exclude_statuses is not None:
            query = query.filter(Reservation.status.notin_(list(exclude_statuses)))
        return query.scalar() or 0
    
    def insert(self, fields: Dict[str, Any]) -> Reservation:
        reservation = Reservation(**fields)
        self.db.add(reservation)
        self._commit()
        self.db.refresh(reservation)
        return reservation
    
    def update(self, id: int, fields: Dict[str, Any]) -> Optional[Reservation]:
        reservation = self.get(id)
        if reservation is None:
            return None
        for key, value in fields.items():
            setattr(reservation, key, value)
        self._commit()
        self.db.refresh(reservation)
        return reservation
    
    def delete(self, id: int) -> bool:
        reservation = self.get(id)
        if reservation is None:
            return False
        self.db.delete(reservation)
        self._commit()
        return True
    
    def delete_pending_before(self, cutoff: datetime) -> int:
        """Hard-delete pending reservations created before cutoff. Returns the number removed."""
        removed = self.db.query(Reservation).filter(
            Reservation.status == RESERVATION_PENDING,
            Reservation.created_at < cutoff
        ).delete(synchronize_session=False)
        self._commit()
        return removed
