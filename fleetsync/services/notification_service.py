# fleetsync/services/notification_service.py
"""
Shared notification (toast) service.
Used by the event dispatcher, the socket client, the vehicle form and the damage check editor.
Every error path in the agent ends here: a logged, persisted, transient notification.
"""

from datetime import datetime, timezone
from typing import Optional
from sqlalchemy.orm import Session
from fleetsync.models.notification import Notification
from fleetsync.services.api_client import ApiConnectionError, ApiError
from fleetsync.utils.logger import get_logger

logger = get_logger(__name__)

INFO = "info"
SUCCESS = "success"
DESTRUCTIVE = "destructive"


async def notify(db: Session, level: str, title: str, description: str = "",
                 duration_ms: Optional[int] = 3000) -> Notification:
    """Create and persist a notification. Always commits immediately."""
    notification = Notification(level=level, title=title, description=description,
                                duration_ms=duration_ms, is_dismissed=0, created_at=datetime.now(timezone.utc))
    db.add(notification)
    db.commit()
    log = logger.warning if level == DESTRUCTIVE else logger.info
    log(f"[TOAST][{level.upper()}] {title}: {description}")
    return notification


def describe_error(exc: Exception, entity: str = "record") -> str:
    """User-facing text for a failed request."""
    if isinstance(exc, ApiConnectionError):
        return "Cannot reach the server. Check your connection and try again."
    if not isinstance(exc, ApiError):
        return str(exc) or "Something went wrong"
    if exc.status == 409:
        if entity == "vehicle":
            return exc.server_message or (
                "A vehicle with this license plate already exists. "
                "Please use a different license plate or edit the existing vehicle."
            )
        return exc.server_message or f"This {entity} already exists"
    if exc.status == 404:
        return f"The {entity} could not be found. It may have been deleted."
    if exc.status == 401:
        return "Your session has expired. Please log in again."
    if exc.status == 403:
        return "You don't have permission to do this."
    if exc.status >= 500:
        return "The server ran into an error. Please try again later."
    return exc.server_message or str(exc)


async def notify_error(db: Session, exc: Exception, title: str = "Error", entity: str = "record") -> Notification:
    return await notify(db, DESTRUCTIVE, title, describe_error(exc, entity), duration_ms=5000)


def http_status_for(exc: Exception) -> int:
    """Status the local API answers with when a back-office call failed."""
    if isinstance(exc, ApiError) and 400 <= exc.status < 500:
        return exc.status
    if isinstance(exc, ApiConnectionError):
        return 503
    return 502
