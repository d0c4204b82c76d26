# fleetsync/services/event_dispatcher.py
"""Routes decoded data-update events to cache invalidations, logs them, and raises the toast."""

from datetime import datetime, timezone
from sqlalchemy.orm import Session
from fleetsync.models.sync_event import SyncEvent
from fleetsync.services.event_parser import DataUpdateEvent, describe_event
from fleetsync.services.invalidation_router import InvalidationCommand, route_event
from fleetsync.services.notification_service import INFO, notify
from fleetsync.services.query_cache import QueryCache
from fleetsync.utils.logger import get_logger

logger = get_logger(__name__)


def record_event(db: Session, event: DataUpdateEvent, source: str, invalidated_keys: int) -> SyncEvent:
    row = SyncEvent(
        entity_type=event.entity_type,
        action=event.action,
        entity_id=event.entity_id,
        vehicle_id=event.vehicle_id,
        source=source,
        invalidated_keys=invalidated_keys,
        server_timestamp=event.timestamp,
        raw_payload=event.raw_payload,
        received_at=datetime.now(timezone.utc),
    )
    db.add(row)
    db.commit()
    return row


async def dispatch_event(event: DataUpdateEvent, cache: QueryCache, db: Session,
                         source: str = "socket") -> list[InvalidationCommand]:
    commands = route_event(event)
    touched = await cache.apply(commands)
    logger.info(
        f"🔄 {event.entity_type}.{event.action} id={event.entity_id} "
        f"→ {len(commands)} keys, {len(touched)} cached entries"
    )

    record_event(db, event, source, len(commands))
    await notify(db, INFO, "Data Updated", describe_event(event), duration_ms=3000)
    return commands
