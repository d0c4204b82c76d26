# fleetsync/services/sync_session.py
"""
One sync session = one REST client + one query cache + one real-time connection.
Created at agent start (or login), closed at shutdown (or logout).

The session also holds what consumers of the local API have asked for:
watched keys (cache subscriptions, so they count as active) and named
auto-refresh handles.
"""

import asyncio
from typing import Iterable, Optional
from fastapi import Request
from fleetsync.services.api_client import BackofficeClient
from fleetsync.services.auto_refresh import AutoRefresh
from fleetsync.services.query_cache import KeyLike, QueryCache, Subscription, hash_key, normalize_key
from fleetsync.services.socket_client import RealtimeConnection
from fleetsync.utils.logger import get_logger

logger = get_logger(__name__)


class SyncSession:
    def __init__(self, client: Optional[BackofficeClient] = None, cache: Optional[QueryCache] = None,
                 connection: Optional[RealtimeConnection] = None):
        self.client = client or BackofficeClient()
        self.cache = cache or QueryCache(self.client.query_fn(on_401="throw"))
        self.connection = connection or RealtimeConnection(self.cache)
        self.watches: dict[str, Subscription] = {}
        self.auto_refreshes: dict[str, AutoRefresh] = {}
        self._connect_task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self.connection.connected

    async def start(self):
        # Connecting can wait on transport retries; don't hold up startup for it
        self._connect_task = asyncio.create_task(self.connection.start(), name="realtime-connect")
        logger.info("✅ Sync session started")

    # ── Watches ──────────────────────────────────────────────────────────
    def watch(self, key: KeyLike) -> Subscription:
        """Subscribe to a key once per session; watching again returns the same subscription."""
        h = hash_key(normalize_key(key))
        subscription = self.watches.get(h)
        if subscription is None:
            subscription = self.watches[h] = self.cache.subscribe(key)
            logger.info(f"👁️  Watching {subscription.key[0]}")
        return subscription

    def unwatch(self, key: KeyLike) -> bool:
        subscription = self.watches.pop(hash_key(normalize_key(key)), None)
        if subscription is None:
            return False
        subscription.unsubscribe()
        logger.info(f"Stopped watching {subscription.key[0]}")
        return True

    # ── Auto-refresh ─────────────────────────────────────────────────────
    async def start_auto_refresh(self, name: str, keys: Iterable[KeyLike], enabled: bool = True,
                                 interval: Optional[float] = None) -> AutoRefresh:
        """Replace the auto-refresh handle registered under `name`."""
        self.stop_auto_refresh(name)
        live = AutoRefresh(self.cache, keys, enabled=enabled, interval=interval)
        await live.start()
        self.auto_refreshes[name] = live
        return live

    def stop_auto_refresh(self, name: str) -> bool:
        live = self.auto_refreshes.pop(name, None)
        if live is None:
            return False
        live.close()
        return True

    async def close(self):
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
            await asyncio.gather(self._connect_task, return_exceptions=True)
        for name in list(self.auto_refreshes):
            self.stop_auto_refresh(name)
        for subscription in self.watches.values():
            subscription.unsubscribe()
        self.watches.clear()
        await self.connection.close()
        await self.cache.close()
        await self.client.aclose()
        logger.info("🛑 Sync session closed")


def get_sync_session(request: Request) -> SyncSession:
    """FastAPI dependency: the session created at startup."""
    return request.app.state.sync_session
