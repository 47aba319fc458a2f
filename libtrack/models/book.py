import uuid
from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from libtrack.database import Base
from libtrack.utils.timezone import now_utc, to_local

BOOK_AVAILABLE = 'Available'
BOOK_ALLOCATED = 'Allocated'

def _new_book_id() -> str:
    return uuid.uuid4().hex

class Book(Base):
    __tablename__ = "books"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(String(36), unique=True, nullable=False, default=_new_book_id, index=True)  # Referenced by confirmed reservations
    sr_no = Column(String(50), unique=True, nullable=True, index=True)  # Serial number printed on the copy
    name = Column(String(255), nullable=False)
    author = Column(String(255), nullable=True)
    department = Column(String(100), nullable=False, index=True)
    edition = Column(String(100), nullable=True)
    status = Column(String(50), default=BOOK_AVAILABLE, nullable=False, index=True)
    uploaded_by = Column(Integer, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=now_utc)
    updated_at = Column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)
    
    # Relationships
    uploader = relationship("User", back_populates="uploaded_books")
    
    __table_args__ = (
        CheckConstraint("status IN ('Available', 'Allocated')", name="chk_book_status"),
    )
    
    def to_dict(self):
        return {
            "id": str(self.id),
            "bookId": self.book_id,
            "srNo": self.sr_no,
            "name": self.name,
            "author": self.author,
            "department": self.department,
            "edition": self.edition,
            "status": self.status,
            "uploadedBy": self.uploader.to_dict() if self.uploader else None,
            "createdAt": to_local(self.created_at).isoformat() if self.created_at else None,
        }
