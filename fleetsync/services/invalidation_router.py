# fleetsync/services/invalidation_router.py
"""
Maps entity-change events to the cache keys that may now be stale.

route_event() is a pure function: it returns InvalidationCommand objects and
never touches the cache. Applying them is QueryCache.apply().

Fan-out rules live in FANOUT_RULES, one entry per EntityType. Some aggregates
are computed server-side from other entities (vehicle availability, APK and
warranty expiry come from reservation state), so those keys are invalidated
alongside the entity's own keys.
"""

from dataclasses import dataclass
from typing import Callable, Optional
from fleetsync.config import settings
from fleetsync.services.event_parser import DataUpdateEvent, EntityType
from fleetsync.services.query_cache import QueryKey, RefetchType, key_path, normalize_key
from fleetsync.utils.logger import get_logger

logger = get_logger(__name__)

SOFT = "soft"
HARD = "hard"


@dataclass(frozen=True)
class InvalidationCommand:
    key: QueryKey
    prefix_match: bool = False       # match every key whose root path starts with key[0]
    refetch_type: RefetchType = "none"

    def __post_init__(self):
        object.__setattr__(self, "key", normalize_key(self.key))

    @property
    def path(self) -> str:
        return key_path(self.key) + ("*" if self.prefix_match else "")


@dataclass(frozen=True)
class EventIds:
    id: Optional[int] = None
    vehicle_id: Optional[int] = None
    customer_id: Optional[int] = None


# A rule returns (key, prefix_match) pairs on top of the base collection/id keys
Rule = Callable[[EventIds], list[tuple[QueryKey, bool]]]


def _vehicles(ids: EventIds):
    keys = [
        (("/api/vehicles-with-reservations",), False),
        (("/api/filtered-vehicles",), False),
    ]
    if ids.id:
        keys += [
            ((f"/api/reservations/vehicle/{ids.id}",), False),
            ((f"/api/documents/vehicle/{ids.id}",), False),
            ((f"/api/expenses/vehicle/{ids.id}",), False),
        ]
    return keys


def _reservations(ids: EventIds):
    # All reservation queries, calendar range queries included
    keys = [
        (("/api/reservations",), True),
        (("/api/vehicles-with-reservations",), False),
        (("/api/filtered-vehicles",), False),
        (("/api/vehicles/available",), False),
        (("/api/vehicles/apk-expiring",), False),
        (("/api/vehicles/warranty-expiring",), False),
    ]
    if ids.vehicle_id:
        keys += [
            (("/api/vehicles", ids.vehicle_id), False),
            ((f"/api/reservations/vehicle/{ids.vehicle_id}",), False),
        ]
    if ids.customer_id:
        keys.append(((f"/api/reservations/customer/{ids.customer_id}",), False))
    return keys


def _vehicle_children(entity: str) -> Rule:
    def rule(ids: EventIds):
        if not ids.vehicle_id:
            return []
        return [
            (("/api/vehicles", ids.vehicle_id), False),
            ((f"/api/{entity}/vehicle/{ids.vehicle_id}",), False),
        ]
    return rule


def _customers(ids: EventIds):
    if not ids.id:
        return []
    return [((f"/api/reservations/customer/{ids.id}",), False)]


def _notifications(ids: EventIds):
    return [(("/api/custom-notifications",), False)]


def _no_fanout(ids: EventIds):
    return []


FANOUT_RULES: dict[EntityType, Rule] = {
    EntityType.VEHICLES: _vehicles,
    EntityType.CUSTOMERS: _customers,
    EntityType.RESERVATIONS: _reservations,
    EntityType.EXPENSES: _vehicle_children("expenses"),
    EntityType.DOCUMENTS: _vehicle_children("documents"),
    EntityType.NOTIFICATIONS: _notifications,
    EntityType.USERS: _no_fanout,
}

_missing = set(EntityType) - set(FANOUT_RULES)
if _missing:
    raise RuntimeError(f"FANOUT_RULES has no rule for: {sorted(m.value for m in _missing)}")


def _dedupe(commands: list[InvalidationCommand]) -> list[InvalidationCommand]:
    seen = {}
    for cmd in commands:
        marker = (cmd.key, cmd.prefix_match)
        # A hard command for the same key wins over a soft one
        if marker not in seen or cmd.refetch_type != "none":
            seen[marker] = cmd
    return list(seen.values())


def route(entity_type: str, action: str, data: Optional[dict] = None,
          mode: Optional[str] = None, hard_base: Optional[bool] = None) -> list[InvalidationCommand]:
    """
    Return every invalidation command for one (entityType, action, data) triple.
    `mode` is soft (mark stale only) or hard (also refetch active queries).
    `hard_base` forces a hard refetch of the base collection key in soft mode.
    """
    mode = mode or settings.INVALIDATION_MODE
    hard_base = settings.REALTIME_HARD_REFETCH if hard_base is None else hard_base
    refetch: RefetchType = "active" if mode == HARD else "none"
    event = DataUpdateEvent(entity_type=entity_type, action=action, data=data or {})

    entity = event.entity
    if entity is None:
        # Fail open: better to over-invalidate than to miss an update
        logger.info(f"Invalidating all {settings.API_ROOT_PREFIX} queries for unknown entity type: {entity_type}")
        return [InvalidationCommand((settings.API_ROOT_PREFIX,), prefix_match=True, refetch_type=refetch)]

    ids = EventIds(id=event.entity_id, vehicle_id=event.vehicle_id, customer_id=event.customer_id)
    base = (f"/api/{entity.value}",)
    commands = [InvalidationCommand(base, refetch_type="active" if hard_base else refetch)]
    if ids.id:
        commands.append(InvalidationCommand((base[0], ids.id), refetch_type=refetch))
    for key, prefix in FANOUT_RULES[entity](ids):
        commands.append(InvalidationCommand(key, prefix_match=prefix, refetch_type=refetch))

    commands = _dedupe(commands)
    logger.debug(f"{entity_type}.{action} → {[c.path for c in commands]}")
    return commands


def route_event(event: DataUpdateEvent, mode: Optional[str] = None,
                hard_base: Optional[bool] = None) -> list[InvalidationCommand]:
    return route(event.entity_type, event.action, event.data, mode=mode, hard_base=hard_base)


# ── Local writes ─────────────────────────────────────────────────────────────
# After this agent itself saves a record, related collections that embed
# that record are also dropped (soft), e.g. reservation lists show customer names.

_MUTATION_RELATED: dict[str, Callable[[Optional[int]], list[QueryKey]]] = {
    "customers": lambda id_: [("/api/reservations",)]
    + ([(f"/api/reservations/customer/{id_}",)] if id_ else []),
    "vehicles": lambda id_: [("/api/reservations",), ("/api/documents",), ("/api/expenses",), ("/api/dashboard",)]
    + ([(f"/api/reservations/vehicle/{id_}",), (f"/api/documents/vehicle/{id_}",),
        (f"/api/expenses/vehicle/{id_}",)] if id_ else []),
    "reservations": lambda id_: [("/api/customers",), ("/api/vehicles",), ("/api/reservations/upcoming",)],
}


def related_commands(resource_type: str, id_: Optional[int] = None) -> list[InvalidationCommand]:
    """Commands to run after a local create/update/delete of `resource_type`."""
    keys: list[QueryKey] = [(f"/api/{resource_type}",)]
    if id_:
        keys.append((f"/api/{resource_type}", id_))
    related = _MUTATION_RELATED.get(resource_type)
    if related:
        keys += related(id_)
    return _dedupe([InvalidationCommand(k) for k in keys])


LIST_ROOTS = ("/api/vehicles", "/api/reservations", "/api/customers", "/api/expenses")


def force_refresh_commands() -> list[InvalidationCommand]:
    """Hard refetch of the active list queries (explicit user refresh only)."""
    return [InvalidationCommand((root,), refetch_type="active") for root in LIST_ROOTS]
