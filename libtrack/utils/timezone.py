from datetime import datetime
from typing import Optional
import pytz
from libtrack.config import settings

LOCAL_TZ = pytz.timezone(settings.timezone)

def now_utc() -> datetime:
    """Get current datetime in UTC. Used for storage and expiry math."""
    return datetime.now(pytz.utc)

def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC.
    SQLite hands back naive values; they were written as UTC."""
    if value.tzinfo is None:
        return pytz.utc.localize(value)
    return value.astimezone(pytz.utc)

def to_local(value: Optional[datetime]) -> Optional[datetime]:
    """Convert a stored datetime to the configured display timezone."""
    if value is None:
        return None
    return as_utc(value).astimezone(LOCAL_TZ)
