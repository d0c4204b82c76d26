# fleetsync/services/query_cache.py
"""
Client-side query cache.

Entries are keyed by a structured query key: a tuple whose first element is an
API path ("/api/vehicles") optionally followed by a dict of query params.
An id part is folded into the path: ("/api/vehicles", 7) is stored as
("/api/vehicles/7",), the same entry a flat "/api/vehicles/7" key names.
Each entry carries its value, a staleness flag and a subscriber count;
entries with at least one subscriber are "active".

One QueryCache is created per sync session (agent start / login) and closed on
shutdown or logout. Nothing here is module-global.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Iterable, Literal, Optional, Union
from urllib.parse import urlencode
from fleetsync.config import settings
from fleetsync.utils.logger import get_logger

logger = get_logger(__name__)

QueryKey = tuple
KeyLike = Union[str, list, tuple]
RefetchType = Literal["none", "active", "all"]
QueryFn = Callable[[QueryKey], Awaitable[Any]]
Predicate = Callable[[QueryKey], bool]


def normalize_key(key: KeyLike) -> QueryKey:
    """
    Canonical key: scalar parts before any dict are folded into the root path,
    so ("/api/vehicles", 7) and "/api/vehicles/7" are the same entry.
    """
    if isinstance(key, str):
        return (key,)
    if not isinstance(key, (list, tuple)) or not key:
        raise ValueError(f"Query key must be a path string or a non-empty sequence, got {key!r}")
    root = str(key[0])
    rest = []
    for part in key[1:]:
        if rest or isinstance(part, dict):
            rest.append(part)
        elif part is not None:
            root = f"{root.rstrip('/')}/{part}"
    return (root, *rest)


def hash_key(key: QueryKey) -> str:
    """Stable hash of a key; dict parts are hashed with sorted keys."""
    return json.dumps(list(key), sort_keys=True, default=str, separators=(",", ":"))


def key_path(key: KeyLike) -> str:
    """
    Render a key as a URL path: scalar parts become path segments, a dict part
    becomes the query string (None values dropped).
        ("/api/expenses", 42)                  → /api/expenses/42
        ("/api/reservations", {"start": "x"})  → /api/reservations?start=x
    """
    key = normalize_key(key)
    path = str(key[0])
    params = {}
    for part in key[1:]:
        if isinstance(part, dict):
            params.update({k: v for k, v in part.items() if v is not None})
        elif part is not None:
            path = f"{path.rstrip('/')}/{part}"
    if params:
        path = f"{path}?{urlencode(params, doseq=True)}"
    return path


def _part_matches(entry_part: Any, target_part: Any) -> bool:
    if isinstance(target_part, dict) and isinstance(entry_part, dict):
        return all(k in entry_part and entry_part[k] == v for k, v in target_part.items())
    return entry_part == target_part


def _is_detail_of(entry_root: Any, collection_root: Any) -> bool:
    """'/api/vehicles/7' is a detail of '/api/vehicles'; '/api/vehicles/available' is not."""
    prefix = f"{str(collection_root).rstrip('/')}/"
    if not isinstance(entry_root, str) or not entry_root.startswith(prefix):
        return False
    return entry_root[len(prefix):].isdigit()


def key_matches(entry_key: QueryKey, target: QueryKey, prefix_match: bool = False) -> bool:
    """
    Both keys are expected in normalize_key() form.

    prefix_match=False: partial key match, the target's parts are a prefix of the entry's
                        (("/api/reservations",) matches ("/api/reservations", {"start": ...})).
                        A bare collection root also matches its id details
                        (("/api/vehicles",) matches ("/api/vehicles/7",)).
    prefix_match=True:  the entry's root path starts with the target's root path
                        (("/api/reservations",) matches ("/api/reservations/upcoming",)).
    """
    if prefix_match:
        return isinstance(entry_key[0], str) and entry_key[0].startswith(str(target[0]))
    if len(target) == 1 and _is_detail_of(entry_key[0], target[0]):
        return True
    if len(target) > len(entry_key):
        return False
    return all(_part_matches(e, t) for e, t in zip(entry_key, target))


@dataclass(frozen=True)
class QueryPolicy:
    refetch_interval: Optional[float] = None     # seconds; None disables timer refresh
    stale_time: float = settings.DEFAULT_STALE_TIME
    refetch_on_window_focus: bool = True

    def merged(self, options: dict) -> "QueryPolicy":
        known = {k: v for k, v in options.items() if k in ("refetch_interval", "stale_time", "refetch_on_window_focus")}
        return replace(self, **known)


@dataclass
class CacheEntry:
    key: QueryKey
    data: Any = None
    error: Optional[BaseException] = None
    updated_at: Optional[float] = None
    is_invalidated: bool = False
    subscribers: int = 0
    fetch_count: int = 0

    @property
    def is_active(self) -> bool:
        return self.subscribers > 0

    def is_stale(self, now: float, stale_time: float) -> bool:
        if self.is_invalidated or self.updated_at is None:
            return True
        return now - self.updated_at >= stale_time


@dataclass
class Subscription:
    """An active observer of one key. Unsubscribing never aborts an in-flight fetch."""
    cache: "QueryCache"
    key: QueryKey
    closed: bool = field(default=False)

    @property
    def data(self) -> Any:
        return self.cache.get_query_data(self.key)

    async def fetch(self) -> Any:
        return await self.cache.fetch_query(self.key)

    def unsubscribe(self):
        if not self.closed:
            self.closed = True
            self.cache._release(self.key)


class QueryCache:
    def __init__(self, query_fn: QueryFn, default_policy: Optional[QueryPolicy] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.query_fn = query_fn
        self.default_policy = default_policy or QueryPolicy()
        self.clock = clock
        self.entries: dict[str, CacheEntry] = {}
        self._defaults: list[tuple[QueryKey, dict]] = []
        self._inflight: dict[str, asyncio.Task] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self.closed = False

    # ── Entries ──────────────────────────────────────────────────────────
    def _entry(self, key: KeyLike) -> CacheEntry:
        key = normalize_key(key)
        h = hash_key(key)
        entry = self.entries.get(h)
        if entry is None:
            entry = self.entries[h] = CacheEntry(key=key)
        return entry

    def get_entry(self, key: KeyLike) -> Optional[CacheEntry]:
        return self.entries.get(hash_key(normalize_key(key)))

    def get_query_data(self, key: KeyLike) -> Any:
        entry = self.get_entry(key)
        return entry.data if entry else None

    def set_query_data(self, key: KeyLike, data: Any):
        entry = self._entry(key)
        entry.data = data
        entry.error = None
        entry.updated_at = self.clock()
        entry.is_invalidated = False

    def find(self, target: Optional[KeyLike] = None, prefix_match: bool = False,
             predicate: Optional[Predicate] = None) -> list[CacheEntry]:
        """Entries matching a key, a root-path prefix, or a predicate. No target matches everything."""
        if predicate is not None:
            return [e for e in self.entries.values() if predicate(e.key)]
        if target is None:
            return list(self.entries.values())
        target = normalize_key(target)
        return [e for e in self.entries.values() if key_matches(e.key, target, prefix_match)]

    def is_stale(self, key: KeyLike) -> bool:
        entry = self.get_entry(key)
        if entry is None:
            return True
        return entry.is_stale(self.clock(), self.policy_for(entry.key).stale_time)

    # ── Refresh policy ───────────────────────────────────────────────────
    def policy_for(self, key: KeyLike) -> QueryPolicy:
        key = normalize_key(key)
        policy = self.default_policy
        for default_key, options in self._defaults:
            if key_matches(key, default_key):
                policy = policy.merged(options)
        return policy

    def set_query_defaults(self, key: KeyLike, options: dict):
        """Set the refresh policy for every key matching `key`. Empty options revert to defaults."""
        key = normalize_key(key)
        self._defaults = [(k, o) for k, o in self._defaults if k != key]
        if options:
            self._defaults.append((key, dict(options)))
        for entry in self.find(key):
            self._stop_timer(hash_key(entry.key))
            self._ensure_timer(entry)

    # ── Fetching ─────────────────────────────────────────────────────────
    async def fetch_query(self, key: KeyLike, force: bool = False) -> Any:
        """Return cached data when fresh, otherwise fetch (coalescing concurrent fetches)."""
        entry = self._entry(key)
        if not force and not entry.is_stale(self.clock(), self.policy_for(entry.key).stale_time):
            return entry.data
        return await self._fetch(entry)

    async def _fetch(self, entry: CacheEntry) -> Any:
        if self.closed:
            raise RuntimeError("QueryCache is closed")
        h = hash_key(entry.key)
        task = self._inflight.get(h)
        if task is None:
            task = asyncio.create_task(self._run_query(entry), name=f"query-{key_path(entry.key)}")
            self._inflight[h] = task
            task.add_done_callback(lambda _t, h=h: self._inflight.pop(h, None))
        return await asyncio.shield(task)

    async def _run_query(self, entry: CacheEntry) -> Any:
        entry.fetch_count += 1
        try:
            data = await self.query_fn(entry.key)
        except Exception as e:
            entry.error = e
            logger.warning(f"Query {key_path(entry.key)} failed: {e}")
            raise
        entry.data = data
        entry.error = None
        entry.updated_at = self.clock()
        entry.is_invalidated = False
        return data

    async def _refetch_all(self, entries: Iterable[CacheEntry]) -> int:
        entries = list(entries)
        if not entries:
            return 0
        results = await asyncio.gather(*(self._fetch(e) for e in entries), return_exceptions=True)
        failed = sum(1 for r in results if isinstance(r, Exception))
        if failed:
            logger.warning(f"{failed}/{len(entries)} refetches failed")
        return len(entries) - failed

    # ── Subscriptions ────────────────────────────────────────────────────
    def subscribe(self, key: KeyLike) -> Subscription:
        entry = self._entry(key)
        entry.subscribers += 1
        self._ensure_timer(entry)
        return Subscription(cache=self, key=entry.key)

    def _release(self, key: QueryKey):
        entry = self.get_entry(key)
        if entry is None:
            return
        entry.subscribers = max(0, entry.subscribers - 1)
        if not entry.is_active:
            self._stop_timer(hash_key(entry.key))

    # ── Invalidation ─────────────────────────────────────────────────────
    async def invalidate(self, target: Optional[KeyLike] = None, refetch_type: RefetchType = "active",
                         prefix_match: bool = False, predicate: Optional[Predicate] = None) -> list[CacheEntry]:
        """
        Mark matching entries stale. refetch_type "none" is a soft invalidation;
        "active" also refetches matches with subscribers; "all" refetches every match.
        """
        matched = self.find(target, prefix_match=prefix_match, predicate=predicate)
        for entry in matched:
            entry.is_invalidated = True
        if refetch_type != "none":
            await self._refetch_all(e for e in matched if refetch_type == "all" or e.is_active)
        return matched

    async def invalidate_by_prefix(self, prefix: str, refetch_type: RefetchType = "active") -> list[CacheEntry]:
        return await self.invalidate((prefix,), refetch_type=refetch_type, prefix_match=True)

    async def refetch(self, target: Optional[KeyLike] = None, type: RefetchType = "active",
                      prefix_match: bool = False, predicate: Optional[Predicate] = None) -> int:
        """Re-request matching entries now. type="active" skips entries nobody is watching."""
        matched = self.find(target, prefix_match=prefix_match, predicate=predicate)
        return await self._refetch_all(e for e in matched if type == "all" or e.is_active)

    async def apply(self, commands: Iterable) -> set[str]:
        """Apply invalidation commands; returns the hashes of every entry touched."""
        touched: set[str] = set()
        for cmd in commands:
            matched = await self.invalidate(cmd.key, refetch_type=cmd.refetch_type, prefix_match=cmd.prefix_match)
            touched.update(hash_key(e.key) for e in matched)
        return touched

    async def window_focused(self) -> int:
        """Refetch stale active entries whose policy allows refetch on focus."""
        now = self.clock()
        due = []
        for entry in self.entries.values():
            policy = self.policy_for(entry.key)
            if entry.is_active and policy.refetch_on_window_focus and entry.is_stale(now, policy.stale_time):
                due.append(entry)
        return await self._refetch_all(due)

    def remove(self, target: KeyLike, prefix_match: bool = False) -> int:
        matched = self.find(target, prefix_match=prefix_match)
        for entry in matched:
            h = hash_key(entry.key)
            self._stop_timer(h)
            self.entries.pop(h, None)
        return len(matched)

    # ── Auto-refresh timers ──────────────────────────────────────────────
    def _ensure_timer(self, entry: CacheEntry):
        h = hash_key(entry.key)
        interval = self.policy_for(entry.key).refetch_interval
        if not interval or not entry.is_active or self.closed:
            return
        task = self._timers.get(h)
        if task is not None and not task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop, auto-refresh for {key_path(entry.key)} not started")
            return
        self._timers[h] = loop.create_task(self._interval_loop(h), name=f"refresh-{key_path(entry.key)}")

    def _stop_timer(self, h: str):
        task = self._timers.pop(h, None)
        if task is not None:
            task.cancel()

    async def _interval_loop(self, h: str):
        while True:
            entry = self.entries.get(h)
            if entry is None or not entry.is_active:
                return
            interval = self.policy_for(entry.key).refetch_interval
            if not interval:
                return
            await asyncio.sleep(interval)
            try:
                await self._fetch(entry)
            except Exception as e:
                logger.warning(f"Auto-refresh of {key_path(entry.key)} failed: {e}")

    # ── Lifecycle ────────────────────────────────────────────────────────
    def stats(self) -> dict:
        now = self.clock()
        return {
            "entries": len(self.entries),
            "active": sum(1 for e in self.entries.values() if e.is_active),
            "stale": sum(1 for e in self.entries.values() if e.is_stale(now, self.policy_for(e.key).stale_time)),
            "in_flight": len(self._inflight),
            "auto_refresh": len(self._timers),
        }

    async def close(self):
        """Tear down: cancel timers and in-flight fetches, drop every entry."""
        if self.closed:
            return
        self.closed = True
        tasks = list(self._timers.values()) + list(self._inflight.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._timers.clear()
        self._inflight.clear()
        self.entries.clear()
        self._defaults.clear()
        logger.info("Query cache closed")
