# fleetsync/schemas/notification.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class NotificationOut(BaseModel):
    id: int
    level: str
    title: str
    description: Optional[str]
    duration_ms: Optional[int]
    is_dismissed: int
    created_at: datetime
    dismissed_at: Optional[datetime]

    class Config:
        from_attributes = True
