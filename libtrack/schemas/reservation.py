from pydantic import BaseModel, Field
from typing import Optional, List

class ReservationCreate(BaseModel):
    reserver_name: str = Field(..., min_length=1, max_length=255)
    reserver_id: str = Field(..., min_length=1, max_length=100)
    reserver_role: str = Field("student", pattern="^(student|teacher)$")
    book_sr_no: str = Field(..., min_length=1, max_length=50)

class ReservationResponse(BaseModel):
    id: str
    reserverName: str
    reserverId: str
    reserverRole: str
    bookName: str
    bookSrNo: Optional[str] = None
    bookId: Optional[str] = None
    status: str
    processedBy: Optional[str] = None
    reservationDate: Optional[str] = None
    updatedAt: Optional[str] = None
    book: Optional[dict] = None  # Current catalog record for bookSrNo
    timeRemaining: Optional[dict] = None  # Pending reservations only

class ReservationStats(BaseModel):
    total: int
    pending: int
    confirmed: int
    students: int
    teachers: int

class ReservationHistory(BaseModel):
    reservations: List[ReservationResponse]
    completed: int
    deleted: int

class ConflictCheck(BaseModel):
    hasConflict: bool
    existing: Optional[ReservationResponse] = None

class CancelResponse(BaseModel):
    message: str
    archived: bool
    bookReleased: bool
    reservation: ReservationResponse

class SweepResponse(BaseModel):
    removed: int
    maxAgeHours: float

class ReconcileResponse(BaseModel):
    books: List[dict] = []
    linkedReservations: List[str] = []
