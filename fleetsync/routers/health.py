"""
Agent health check endpoint.
Returns status of the agent + local DB + real-time connection + back-office reachability.
"""

from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session
from fleetsync.database import get_db
from fleetsync.services.api_client import ApiConnectionError, ApiError
from fleetsync.services.sync_session import SyncSession, get_sync_session

router = APIRouter()


@router.get("/health", summary="Agent health check")
async def health_check(db: Session = Depends(get_db), session: SyncSession = Depends(get_sync_session)):
    """
    Returns:
    - Agent status
    - Database connectivity
    - Socket.IO connection state
    - Back-office API reachability
    - Query cache counters
    """
    result = {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "agent": "ok",
        "database": "unknown",
        "realtime": "connected" if session.connected else "disconnected",
        "backoffice": "unknown",
        "cache": session.cache.stats(),
    }

    try:
        db.execute(text("SELECT 1"))
        result["database"] = "ok"
    except Exception as e:
        result["database"] = f"error: {str(e)}"
        result["status"] = "degraded"

    try:
        await session.client.request("GET", "/api/user")
        result["backoffice"] = "ok"
    except ApiError as e:
        # Reachable; 401 just means the agent token is missing or expired
        result["backoffice"] = f"http_{e.status}"
    except ApiConnectionError:
        result["backoffice"] = "unreachable"
        result["status"] = "degraded"

    if not session.connected:
        result["status"] = "degraded"
    return result
