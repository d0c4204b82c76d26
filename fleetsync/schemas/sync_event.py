# fleetsync/schemas/sync_event.py
from pydantic import BaseModel
from datetime import datetime
from typing import Any, Optional


class DataUpdateIn(BaseModel):
    entityType: str
    action: str = "updated"
    data: Optional[dict[str, Any]] = None
    timestamp: Optional[str] = None


class SyncEventOut(BaseModel):
    id: int
    entity_type: str
    action: str
    entity_id: Optional[int]
    vehicle_id: Optional[int]
    source: str
    invalidated_keys: int
    server_timestamp: Optional[datetime]
    received_at: datetime

    class Config:
        from_attributes = True
