"""
Query cache inspection and manual invalidation.
GET  /cache             : every cached key with staleness and subscriber count.
POST /cache/invalidate  : invalidate every key under a path prefix.
POST /cache/refresh     : hard refetch of the active list queries.
"""

from fastapi import APIRouter, Depends
from fleetsync.schemas.cache import CacheEntryOut, InvalidateRequest
from fleetsync.services.invalidation_router import force_refresh_commands
from fleetsync.services.query_cache import key_path
from fleetsync.services.sync_session import SyncSession, get_sync_session
from fleetsync.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.get("/cache", response_model=list[CacheEntryOut], summary="List cached queries")
def list_cache(session: SyncSession = Depends(get_sync_session)):
    cache = session.cache
    now = cache.clock()
    return [
        CacheEntryOut(
            key=list(entry.key),
            path=key_path(entry.key),
            is_stale=cache.is_stale(entry.key),
            is_active=entry.is_active,
            subscribers=entry.subscribers,
            fetch_count=entry.fetch_count,
            age_seconds=round(now - entry.updated_at, 3) if entry.updated_at is not None else None,
            error=str(entry.error) if entry.error else None,
        )
        for entry in cache.entries.values()
    ]


@router.post("/cache/invalidate", summary="Invalidate cached queries by path prefix")
async def invalidate_cache(body: InvalidateRequest, session: SyncSession = Depends(get_sync_session)):
    matched = await session.cache.invalidate_by_prefix(body.prefix, refetch_type=body.refetch_type)
    logger.info(f"Manual invalidation of {body.prefix}* ({body.refetch_type}) → {len(matched)} entries")
    return {"status": "ok", "invalidated": len(matched)}


@router.post("/cache/refresh", summary="Force refresh of active list queries")
async def refresh_lists(session: SyncSession = Depends(get_sync_session)):
    touched = await session.cache.apply(force_refresh_commands())
    return {"status": "ok", "refreshed": len(touched)}
