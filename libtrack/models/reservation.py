from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from libtrack.database import Base
from libtrack.utils.timezone import now_utc, to_local

RESERVATION_PENDING = 'pending'
RESERVATION_CONFIRMED = 'confirmed'
RESERVATION_COMPLETED = 'completed'
RESERVATION_DELETED = 'deleted'

# Statuses shown in the history (archive) view
HISTORY_STATUSES = (RESERVATION_COMPLETED, RESERVATION_DELETED)

class Reservation(Base):
    __tablename__ = "reservations"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    reserver_name = Column(String(255), nullable=False)
    reserver_id = Column(String(100), nullable=False, index=True)  # Student/teacher id, not unique
    reserver_role = Column(String(50), default='student', nullable=False)
    book_name = Column(String(255), nullable=False)
    book_sr_no = Column(String(50), nullable=True, index=True)
    book_id = Column(String(36), ForeignKey("books.book_id", ondelete="SET NULL"), nullable=True, index=True)  # Set on confirmation
    status = Column(String(50), default=RESERVATION_PENDING, nullable=False, index=True)
    processed_by = Column(Integer, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=now_utc, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)
    
    # Relationships
    book = relationship("Book", foreign_keys=[book_id])
    processed_by_user = relationship("User", foreign_keys=[processed_by])
    
    __table_args__ = (
        CheckConstraint("status IN ('pending', 'confirmed', 'completed', 'deleted')", name="chk_reservation_status"),
        CheckConstraint("reserver_role IN ('student', 'teacher')", name="chk_reserver_role"),
    )
    
    def to_dict(self):
        return {
            "id": str(self.id),
            "reserverName": self.reserver_name,
            "reserverId": self.reserver_id,
            "reserverRole": self.reserver_role,
            "bookName": self.book_name,
            "bookSrNo": self.book_sr_no,
            "bookId": self.book_id,
            "status": self.status,
            "processedBy": str(self.processed_by) if self.processed_by else None,
            "reservationDate": to_local(self.created_at).isoformat() if self.created_at else None,
            "updatedAt": to_local(self.updated_at).isoformat() if self.updated_at else None,
        }
