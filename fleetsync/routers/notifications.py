from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from fleetsync.config import settings
from fleetsync.database import get_db
from fleetsync.models.notification import Notification
from fleetsync.schemas.notification import NotificationOut
from typing import Optional

router = APIRouter()


@router.get("/notifications", response_model=list[NotificationOut], summary="Notification log, filterable by level")
def list_notifications(
    level: Optional[str] = None,
    is_dismissed: Optional[int] = None,
    limit: int = settings.NOTIFICATION_LOG_LIMIT,
    db: Session = Depends(get_db)
):
    q = db.query(Notification)
    if level:
        q = q.filter(Notification.level == level)
    if is_dismissed is not None:
        q = q.filter(Notification.is_dismissed == is_dismissed)
    return q.order_by(Notification.created_at.desc()).limit(limit).all()


@router.post("/notifications/{notification_id}/dismiss", response_model=NotificationOut,
             summary="Dismiss a notification")
def dismiss_notification(notification_id: int, db: Session = Depends(get_db)):
    notification = db.query(Notification).filter(Notification.id == notification_id).first()
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    notification.is_dismissed = 1
    notification.dismissed_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(notification)
    return notification
