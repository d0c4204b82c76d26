# fleetsync/config.py
"""
Application configuration using Pydantic-Settings.
All settings can be overridden via environment variables or .env file.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # ── Back-office server ────────────────────────────────────────────────
    API_BASE_URL: str = "http://localhost:5000"
    API_TOKEN: Optional[str] = None         # Sent as Bearer token when set
    API_TIMEOUT_SECONDS: float = 30.0

    # ── Real-time channel (Socket.IO) ─────────────────────────────────────
    SOCKET_URL: Optional[str] = None        # Defaults to API_BASE_URL
    SOCKET_TRANSPORTS: list[str] = ["websocket", "polling"]
    SOCKET_TIMEOUT: int = 20                # seconds, connect timeout

    # ── Local agent database (event + notification log) ───────────────────
    DATABASE_URL: str = "sqlite:///./fleetsync.db"

    # ── Local agent API ───────────────────────────────────────────────────
    AGENT_HOST: str = "127.0.0.1"
    AGENT_PORT: int = 8090
    API_KEY: Optional[str] = None           # Set in .env to enable auth on agent endpoints

    # ── Query cache ───────────────────────────────────────────────────────
    DEFAULT_STALE_TIME: float = 60.0        # seconds before an entry goes stale
    DEFAULT_REFRESH_INTERVAL: float = 5.0   # seconds, used by live dashboard widgets
    API_ROOT_PREFIX: str = "/api"

    # ── Invalidation ──────────────────────────────────────────────────────
    INVALIDATION_MODE: str = "soft"         # soft | hard
    REALTIME_HARD_REFETCH: bool = False     # hard-refetch the base collection on push events

    # ── Damage check editor ───────────────────────────────────────────────
    MARKER_HIT_RADIUS: float = 15.0         # px, click within this selects a marker

    # ── Notifications ─────────────────────────────────────────────────────
    NOTIFICATION_LOG_LIMIT: int = 50

    # ── Logging ───────────────────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "fleetsync.log"         # under logs/
    LOG_LIBRARY_LEVEL: str = "WARNING"      # socketio / engineio / httpx loggers

    @property
    def socket_url(self) -> str:
        return self.SOCKET_URL or self.API_BASE_URL

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
