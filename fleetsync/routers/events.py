"""
Real-time event ingest endpoint + received event log viewer.
POST /events/data-update: accepts a data-update payload over HTTP (same path as the socket).
GET  /events             : lists received events with optional filters.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from fleetsync.database import get_db
from fleetsync.models.sync_event import SyncEvent
from fleetsync.schemas.sync_event import DataUpdateIn, SyncEventOut
from fleetsync.services.event_dispatcher import dispatch_event
from fleetsync.services.event_parser import parse_data_update
from fleetsync.services.sync_session import SyncSession, get_sync_session
from fleetsync.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/events/data-update", summary="Ingest a data-update event over HTTP")
async def receive_data_update(body: DataUpdateIn, request: Request, db: Session = Depends(get_db),
                              session: SyncSession = Depends(get_sync_session)):
    """
    Same handling as a Socket.IO push: decode, invalidate, log, toast.
    Always returns HTTP 200; senders should not retry a processed event.
    """
    try:
        event = parse_data_update(body.model_dump(exclude_none=True))
        logger.info(f"Event from {request.client.host if request.client else 'unknown'} | "
                    f"{event.entity_type}.{event.action} id={event.entity_id}")
        commands = await dispatch_event(event, session.cache, db, source="http")
        return {"status": "ok", "entity_type": event.entity_type,
                "invalidated": [c.path for c in commands]}
    except Exception as e:
        logger.error(f"Event processing error: {e}", exc_info=True)
        return {"status": "error", "detail": str(e)}  # Still return 200


@router.get("/events", response_model=list[SyncEventOut], summary="List received events")
def list_events(limit: int = 50, entity_type: str = None, action: str = None,
                db: Session = Depends(get_db)):
    """Returns the received event log with optional entity_type and action filters."""
    q = db.query(SyncEvent)
    if entity_type:
        q = q.filter(SyncEvent.entity_type == entity_type)
    if action:
        q = q.filter(SyncEvent.action == action)
    return q.order_by(SyncEvent.received_at.desc()).limit(limit).all()
