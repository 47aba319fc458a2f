from .auth import UserCreate, UserLogin, UserResponse, Token, UsernameUpdate, PasswordChange
from .book import (
    BookBase, BookCreate, BookUpdate, BookResponse, BookStats,
    AllocationRequest, ReleaseResponse
)
from .reservation import (
    ReservationCreate, ReservationResponse, ReservationStats,
    ReservationHistory, ConflictCheck, CancelResponse,
    SweepResponse, ReconcileResponse
)

__all__ = [
    "UserCreate", "UserLogin", "UserResponse", "Token", "UsernameUpdate", "PasswordChange",
    "BookBase", "BookCreate", "BookUpdate", "BookResponse", "BookStats",
    "AllocationRequest", "ReleaseResponse",
    "ReservationCreate", "ReservationResponse", "ReservationStats",
    "ReservationHistory", "ConflictCheck", "CancelResponse",
    "SweepResponse", "ReconcileResponse",
]
