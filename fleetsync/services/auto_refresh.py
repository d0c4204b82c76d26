# fleetsync/services/auto_refresh.py
"""
Live-dashboard polling for a set of query keys.

While an AutoRefresh is open its keys poll on a fixed interval (stale time 0,
refetch on focus). Disabled, the keys never go stale on their own. Closing it
reverts the keys to the cache defaults, so widgets don't manage timers.

    async with AutoRefresh(cache, ["/api/vehicles/available"], interval=10) as live:
        ...
        await live.refresh_now()
"""

from typing import Iterable, Optional
from fleetsync.config import settings
from fleetsync.services.query_cache import KeyLike, QueryCache, normalize_key
from fleetsync.utils.logger import get_logger

logger = get_logger(__name__)


class AutoRefresh:
    def __init__(self, cache: QueryCache, keys: Iterable[KeyLike], enabled: bool = True,
                 interval: Optional[float] = None):
        self.cache = cache
        self.keys = [normalize_key(k) for k in keys]
        self.enabled = enabled
        self.interval = interval or settings.DEFAULT_REFRESH_INTERVAL
        self._open = False

    def _options(self) -> dict:
        if self.enabled:
            return {"refetch_interval": self.interval, "stale_time": 0, "refetch_on_window_focus": True}
        return {"refetch_interval": None, "stale_time": float("inf"), "refetch_on_window_focus": False}

    async def start(self):
        for key in self.keys:
            self.cache.set_query_defaults(key, self._options())
        self._open = True
        if self.enabled:
            # Initial refresh so the widget doesn't wait a full interval
            await self.refresh_now()
        logger.debug(f"Auto-refresh {'on' if self.enabled else 'off'} ({self.interval}s) for {len(self.keys)} keys")

    async def set_enabled(self, enabled: bool, interval: Optional[float] = None):
        self.enabled = enabled
        if interval:
            self.interval = interval
        await self.start()

    async def refresh_now(self):
        for key in self.keys:
            await self.cache.invalidate(key)

    def close(self):
        if not self._open:
            return
        self._open = False
        if self.cache.closed:
            return
        for key in self.keys:
            self.cache.set_query_defaults(key, {})

    async def __aenter__(self) -> "AutoRefresh":
        await self.start()
        return self

    async def __aexit__(self, *exc):
        self.close()
