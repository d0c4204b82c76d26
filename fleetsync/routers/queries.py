"""
Read-through access to the back-office, served from the agent's query cache.
GET    /query                : cached read; fetches when missing or stale.
POST   /query/watch          : subscribe to a key so it stays active and is refetched on change.
POST   /query/unwatch        : drop a watch.
POST   /auto-refresh         : keep a named set of keys refreshing on an interval.
DELETE /auto-refresh/{name}  : stop it.
POST   /window-focus         : refetch stale active keys, as a focused UI would.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fleetsync.schemas.cache import AutoRefreshRequest, WatchRequest
from fleetsync.services.api_client import ApiConnectionError, ApiError
from fleetsync.services.notification_service import describe_error, http_status_for
from fleetsync.services.query_cache import key_path
from fleetsync.services.sync_session import SyncSession, get_sync_session
from fleetsync.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)

RESERVED_PARAMS = {"path", "force", "api_key"}


@router.get("/query", summary="Read a back-office resource through the cache")
async def read_query(
    request: Request,
    path: str = Query(..., description="Back-office path, e.g. /api/vehicles/7"),
    force: bool = Query(False, description="Ignore freshness and refetch"),
    session: SyncSession = Depends(get_sync_session),
):
    # Any other query string parameters become the key's filter part
    params = {k: v for k, v in request.query_params.items() if k not in RESERVED_PARAMS}
    key = (path, params) if params else (path,)
    try:
        data = await session.cache.fetch_query(key, force=force)
    except (ApiError, ApiConnectionError) as e:
        logger.warning(f"Read-through of {path} failed: {e}")
        raise HTTPException(status_code=http_status_for(e), detail=describe_error(e)) from e
    return {"path": key_path(key), "data": data}


@router.post("/query/watch", summary="Keep a cached query active")
async def watch_query(body: WatchRequest, session: SyncSession = Depends(get_sync_session)):
    subscription = session.watch(body.key())
    error = None
    try:
        await subscription.fetch()
    except (ApiError, ApiConnectionError) as e:
        error = describe_error(e)
    entry = session.cache.get_entry(subscription.key)
    return {
        "path": key_path(subscription.key),
        "subscribers": entry.subscribers,
        "data": subscription.data,
        "error": error,
    }


@router.post("/query/unwatch", summary="Stop watching a cached query")
def unwatch_query(body: WatchRequest, session: SyncSession = Depends(get_sync_session)):
    if not session.unwatch(body.key()):
        raise HTTPException(status_code=404, detail=f"{body.path} is not being watched")
    return {"status": "ok"}


@router.post("/auto-refresh", summary="Start or replace a named auto-refresh")
async def start_auto_refresh(body: AutoRefreshRequest, session: SyncSession = Depends(get_sync_session)):
    live = await session.start_auto_refresh(body.name, body.paths, enabled=body.enabled, interval=body.interval)
    logger.info(f"Auto-refresh '{body.name}' on {len(body.paths)} keys (enabled={body.enabled})")
    return {
        "name": body.name,
        "paths": [key_path(k) for k in live.keys],
        "enabled": live.enabled,
        "interval": live.interval,
    }


@router.delete("/auto-refresh/{name}", summary="Stop a named auto-refresh")
def stop_auto_refresh(name: str, session: SyncSession = Depends(get_sync_session)):
    if not session.stop_auto_refresh(name):
        raise HTTPException(status_code=404, detail=f"No auto-refresh named '{name}'")
    return {"status": "ok"}


@router.post("/window-focus", summary="Refetch stale active queries")
async def window_focus(session: SyncSession = Depends(get_sync_session)):
    refetched = await session.cache.window_focused()
    return {"status": "ok", "refetched": refetched}
