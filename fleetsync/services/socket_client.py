# fleetsync/services/socket_client.py
"""
Real-time connection to the back-office server over Socket.IO.

Keeps one socketio.AsyncClient per sync session and listens for `data-update`
pushes:  {"entityType": ..., "action": ..., "data": {...}, "timestamp": ...}

Reconnection and backoff are left to python-socketio (reconnection=True);
this layer only tracks the connected flag and logs transitions.
"""

from typing import Callable, Optional
import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError
from sqlalchemy.orm import Session
from fleetsync.config import settings
from fleetsync.database import SessionLocal
from fleetsync.services.event_dispatcher import dispatch_event
from fleetsync.services.event_parser import EventDecodeError, parse_data_update
from fleetsync.services.notification_service import SUCCESS, notify
from fleetsync.services.query_cache import QueryCache
from fleetsync.utils.logger import get_logger

logger = get_logger(__name__)

DATA_UPDATE_EVENT = "data-update"


class RealtimeConnection:
    def __init__(self, cache: QueryCache, url: Optional[str] = None,
                 session_factory: Callable[[], Session] = SessionLocal,
                 client: Optional[socketio.AsyncClient] = None):
        self.cache = cache
        self.url = url or settings.socket_url
        self.session_factory = session_factory
        self.sio = client or socketio.AsyncClient(reconnection=True, logger=False, engineio_logger=False)
        self.connected = False
        self._closed = False

        self.sio.on("connect", self._on_connect)
        self.sio.on("disconnect", self._on_disconnect)
        self.sio.on("connect_error", self._on_connect_error)
        self.sio.on("connected", self._on_server_hello)
        self.sio.on(DATA_UPDATE_EVENT, self._on_data_update)

    async def start(self):
        """Open the channel. A failed first attempt is retried by python-socketio, not here."""
        headers = {"Authorization": f"Bearer {settings.API_TOKEN}"} if settings.API_TOKEN else {}
        logger.info(f"📡 Connecting to real-time server: {self.url}")
        try:
            await self.sio.connect(
                self.url,
                headers=headers,
                transports=settings.SOCKET_TRANSPORTS,
                wait_timeout=settings.SOCKET_TIMEOUT,
                retry=True,
            )
        except SocketConnectionError as e:
            self.connected = False
            logger.error(f"❌ Real-time connection failed: {e}")

    async def close(self):
        if self._closed:
            return
        self._closed = True
        logger.info("🔌 Cleaning up socket connection...")
        await self.sio.disconnect()
        self.connected = False

    # ── Handlers ─────────────────────────────────────────────────────────
    async def _on_connect(self):
        self.connected = True
        logger.info(f"🔗 Connected to real-time server: {self.sio.sid}")

    async def _on_disconnect(self, *args):
        # python-socketio >= 5.12 passes the reason, older releases pass nothing
        reason = args[0] if args else "unknown"
        self.connected = False
        logger.info(f"🔌 Disconnected from real-time server: {reason}")

    async def _on_connect_error(self, data=None):
        self.connected = False
        logger.error(f"❌ Socket connection error: {data}")

    async def _on_server_hello(self, data=None):
        message = data.get("message") if isinstance(data, dict) else data
        logger.info(f"✅ Real-time connection established: {message}")
        db = self.session_factory()
        try:
            await notify(db, SUCCESS, "Connected", "Real-time updates enabled", duration_ms=2000)
        finally:
            db.close()

    async def _on_data_update(self, payload):
        try:
            event = parse_data_update(payload)
        except EventDecodeError as e:
            logger.warning(f"Ignoring malformed {DATA_UPDATE_EVENT}: {e}")
            return
        logger.info(f"📥 Received real-time update: {event.entity_type}.{event.action}")

        # Fresh DB session per event
        db = self.session_factory()
        try:
            await dispatch_event(event, self.cache, db, source="socket")
        except Exception as e:
            logger.error(f"Event handling error for {event.entity_type}.{event.action}: {e}", exc_info=True)
        finally:
            db.close()
