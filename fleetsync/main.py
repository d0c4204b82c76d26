# fleetsync/main.py
"""
FastAPI application entry point for the FleetSync agent.
Starts the sync session (REST client + query cache + Socket.IO connection)
on startup, closes it on shutdown, and exposes the agent's local API.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from fleetsync.routers import cache, damage_checks, events, health, notifications, queries, templates, vehicles
from fleetsync.database import create_tables
from fleetsync.config import settings
from fleetsync.services.sync_session import SyncSession
from fleetsync.utils.logger import get_logger
import time

logger = get_logger(__name__)

app = FastAPI(
    title="FleetSync Agent API",
    description="Real-time cache sync for the rental back-office.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)


# ── API Key Middleware ───────────────────────────────────────────────────────
class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Optional lightweight API key auth for agent endpoints.
    Health check and docs stay open. Set API_KEY in .env. Leave empty to disable auth.
    """
    async def dispatch(self, request: Request, call_next):
        open_paths = {"/api/v1/health", "/docs", "/redoc", "/openapi.json"}
        if request.url.path in open_paths or not settings.API_KEY:
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")
        if api_key != settings.API_KEY:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid or missing API key"},
            )
        return await call_next(request)


if settings.API_KEY:
    app.add_middleware(APIKeyMiddleware)


# ── Request Timing Middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 2)
    logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({duration}ms)")
    return response


# ── Global Exception Handler ─────────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(events.router,        prefix="/api/v1", tags=["📡 Real-time Events"])
app.include_router(cache.router,         prefix="/api/v1", tags=["🗃️  Query Cache"])
app.include_router(queries.router,       prefix="/api/v1", tags=["🔎 Queries"])
app.include_router(vehicles.router,      prefix="/api/v1", tags=["🚐 Vehicles"])
app.include_router(damage_checks.router, prefix="/api/v1", tags=["🩹 Damage Checks"])
app.include_router(templates.router,     prefix="/api/v1", tags=["📄 Contract Templates"])
app.include_router(notifications.router, prefix="/api/v1", tags=["🔔 Notifications"])
app.include_router(health.router,        prefix="/api/v1", tags=["💚 Health"])


# ── Startup ───────────────────────────────────────────────────────────────────
@app.on_event("startup")
async def startup():
    logger.info("🚀 FleetSync agent starting up...")
    create_tables()
    logger.info("✅ Database tables ready")
    logger.info(f"🌐 Back-office API: {settings.API_BASE_URL}")
    logger.info(f"🌐 Agent listening on http://{settings.AGENT_HOST}:{settings.AGENT_PORT}")

    app.state.sync_session = SyncSession()
    await app.state.sync_session.start()


@app.on_event("shutdown")
async def shutdown():
    logger.info("🛑 FleetSync agent shutting down...")
    session = getattr(app.state, "sync_session", None)
    if session is not None:
        await session.close()
