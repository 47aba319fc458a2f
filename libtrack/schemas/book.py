from pydantic import BaseModel, Field
from typing import Optional, List

class BookBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    author: Optional[str] = Field(None, max_length=255)
    department: str = Field(..., min_length=1, max_length=100)
    edition: Optional[str] = Field(None, max_length=100)
    sr_no: Optional[str] = Field(None, max_length=50)

class BookCreate(BookBase):
    pass

class BookUpdate(BaseModel):
    """Partial update. Status is changed through allocate/release only."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    author: Optional[str] = Field(None, max_length=255)
    department: Optional[str] = Field(None, min_length=1, max_length=100)
    edition: Optional[str] = Field(None, max_length=100)
    sr_no: Optional[str] = Field(None, max_length=50)

class BookResponse(BaseModel):
    id: str
    bookId: str
    srNo: Optional[str] = None
    name: str
    author: Optional[str] = None
    department: str
    edition: Optional[str] = None
    status: str
    uploadedBy: Optional[dict] = None
    createdAt: Optional[str] = None
    reservations: List[dict] = []

class BookStats(BaseModel):
    total: int
    available: int
    allocated: int
    allocationRate: int  # Percentage, rounded
    recent: List[BookResponse] = []

class AllocationRequest(BaseModel):
    reserver_name: str = Field(..., min_length=1, max_length=255)
    reserver_id: str = Field(..., min_length=1, max_length=100)
    reserver_role: str = Field("student", pattern="^(student|teacher)$")
    force: bool = False

class ReleaseResponse(BaseModel):
    message: str
    book: BookResponse
    archivedReservations: List[str] = []
