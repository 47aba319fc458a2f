from fastapi import APIRouter, Depends
from libtrack.models.user import User
from libtrack.services.auth import get_current_user
from libtrack.services.notifier import notifier
from libtrack.services.sweeper import sweeper

router = APIRouter(prefix="/api/notifier", tags=["Notifications"])

@router.get("/status")
async def get_notifier_status(current_user: User = Depends(get_current_user)):
    """Change-notification and background sweep status. Dashboards fall back to polling when disconnected."""
    return {
        "mqtt": notifier.status(),
        "sweeper": {
            "running": sweeper.is_running(),
            "intervalSeconds": sweeper.interval,
            "runs": sweeper.runs,
            "lastRemoved": sweeper.last_removed,
        },
    }
