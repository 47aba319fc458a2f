from sqlalchemy import Column, String, DateTime, Integer, CheckConstraint
from sqlalchemy.orm import relationship
from libtrack.database import Base
from libtrack.utils.timezone import now_utc

class User(Base):
    __tablename__ = "users"
    
    user_id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(50), default='staff', nullable=False)  # admin, staff
    created_at = Column(DateTime(timezone=True), default=now_utc)
    updated_at = Column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)
    
    # Relationships
    uploaded_books = relationship("Book", back_populates="uploader")
    
    __table_args__ = (
        CheckConstraint("role IN ('admin', 'staff')", name="chk_user_role"),
    )
    
    @property
    def is_admin(self) -> bool:
        return self.role == 'admin'
    
    def to_dict(self):
        return {
            "id": str(self.user_id),
            "username": self.username,
            "name": self.name,
            "email": self.email,
            "role": self.role,
        }
