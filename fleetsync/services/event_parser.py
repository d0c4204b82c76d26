# fleetsync/services/event_parser.py
"""
Decodes real-time `data-update` payloads pushed by the back-office server.
Returns a unified DataUpdateEvent regardless of source (socket or HTTP ingest).

Payload shape:
    {"entityType": "reservations", "action": "updated",
     "data": {"id": 12, "vehicleId": 7, ...}, "timestamp": "2025-10-17T09:00:00Z"}
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union
from fleetsync.utils.logger import get_logger

logger = get_logger(__name__)


class EntityType(str, Enum):
    VEHICLES = "vehicles"
    CUSTOMERS = "customers"
    RESERVATIONS = "reservations"
    EXPENSES = "expenses"
    DOCUMENTS = "documents"
    NOTIFICATIONS = "notifications"
    USERS = "users"


class Action(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class EventDecodeError(ValueError):
    """Raised when a payload is not a data-update event at all."""


@dataclass
class DataUpdateEvent:
    entity_type: str                 # raw value, kept even when unknown
    action: str                      # created | updated | deleted (others passed through)
    data: dict = field(default_factory=dict)
    timestamp: Optional[datetime] = None
    raw_payload: str = ""

    @property
    def entity(self) -> Optional[EntityType]:
        """The known entity kind, or None for entity types this agent doesn't know."""
        try:
            return EntityType(self.entity_type)
        except ValueError:
            return None

    @property
    def entity_id(self) -> Optional[int]:
        return _as_id(self.data.get("id"))

    @property
    def vehicle_id(self) -> Optional[int]:
        return _as_id(self.data.get("vehicleId"))

    @property
    def customer_id(self) -> Optional[int]:
        return _as_id(self.data.get("customerId"))

    @property
    def name(self) -> Optional[str]:
        value = self.data.get("name")
        return str(value) if value else None


def _as_id(value: Any) -> Optional[int]:
    """Ids arrive as ints or numeric strings. Anything else (0, '', None, 7.5) is treated as absent."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float) and not value.is_integer():
        logger.debug(f"Ignoring non-integral id: {value!r}")
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number or None


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparseable event timestamp: {value!r}")
        return None


def parse_data_update(payload: Union[dict, bytes, str]) -> DataUpdateEvent:
    """Decode a data-update payload. Accepts the dict Socket.IO hands us, or raw JSON."""
    if isinstance(payload, (bytes, str)):
        raw = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            raise EventDecodeError(f"data-update payload is not JSON: {e}") from e
    else:
        raw = json.dumps(payload, default=str)

    if not isinstance(payload, dict):
        raise EventDecodeError(f"data-update payload must be an object, got {type(payload).__name__}")

    entity_type = payload.get("entityType")
    if not entity_type or not isinstance(entity_type, str):
        raise EventDecodeError("data-update payload has no entityType")

    data = payload.get("data")
    if not isinstance(data, dict):
        data = {}

    event = DataUpdateEvent(
        entity_type=entity_type,
        action=str(payload.get("action") or "updated"),
        data=data,
        timestamp=_parse_timestamp(payload.get("timestamp")),
        raw_payload=raw,
    )
    if event.entity is None:
        logger.warning(f"Unknown entity type in data-update: {entity_type}")
    return event


def describe_event(event: DataUpdateEvent) -> str:
    """Toast text for a received event, e.g. 'vehicle updated: AB-123-C'."""
    action_text = {
        Action.CREATED.value: "added",
        Action.UPDATED.value: "updated",
        Action.DELETED.value: "removed",
    }.get(event.action, event.action)
    singular = event.entity_type[:-1] if event.entity_type.endswith("s") else event.entity_type
    text = f"{singular} {action_text}"
    if event.name:
        text += f": {event.name}"
    return text
