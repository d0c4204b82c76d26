# fleetsync/services/api_client.py
"""
REST client for the rental back-office API.

One BackofficeClient per sync session (it owns an httpx.AsyncClient).
Non-2xx responses raise ApiError with the status code, transport failures
raise ApiConnectionError. Nothing is retried here.
"""

import os
from typing import Any, Literal, Optional, Union
import httpx
from fleetsync.config import settings
from fleetsync.services.query_cache import KeyLike, QueryFn, key_path, normalize_key
from fleetsync.utils.logger import get_logger

logger = get_logger(__name__)

UnauthorizedBehavior = Literal["return_none", "throw"]


class ApiError(Exception):
    """HTTP error from the back-office. str() is '<status>: <body text>'."""

    def __init__(self, status: int, text: str, body: Any = None, url: str = ""):
        self.status = status
        self.text = text
        self.body = body
        self.url = url
        super().__init__(f"{status}: {text}")

    @property
    def server_message(self) -> Optional[str]:
        if isinstance(self.body, dict):
            return self.body.get("message") or self.body.get("detail")
        return None


class ApiConnectionError(Exception):
    """The back-office could not be reached at all."""


def _raise_for_status(response: httpx.Response):
    if response.is_success:
        return
    text = response.text or response.reason_phrase
    try:
        body = response.json()
    except ValueError:
        body = None
    raise ApiError(response.status_code, text, body=body, url=str(response.request.url))


class BackofficeClient:
    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        headers = {"Accept": "application/json"}
        token = token if token is not None else settings.API_TOKEN
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.API_BASE_URL,
            headers=headers,
            timeout=timeout or settings.API_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def request(self, method: str, url: str, json: Any = None, params: Optional[dict] = None,
                      files: Optional[dict] = None, data: Optional[dict] = None) -> httpx.Response:
        try:
            response = await self._client.request(method, url, json=json, params=params, files=files, data=data)
        except httpx.TransportError as e:
            logger.warning(f"{method} {url}: back-office unreachable: {e}")
            raise ApiConnectionError(str(e)) from e
        logger.debug(f"{method} {url} → {response.status_code}")
        _raise_for_status(response)
        return response

    # ── Queries ──────────────────────────────────────────────────────────
    async def query(self, key: KeyLike, on_401: UnauthorizedBehavior = "throw") -> Any:
        """GET the resource a query key names. A dict part of the key becomes query params."""
        key = normalize_key(key)
        path = key_path(tuple(p for p in key if not isinstance(p, dict)))
        params = {}
        for part in key[1:]:
            if isinstance(part, dict):
                params.update({k: v for k, v in part.items() if v is not None})
        try:
            response = await self.request("GET", path, params=params or None)
        except ApiError as e:
            if on_401 == "return_none" and e.status == 401:
                return None
            raise
        if not response.content:
            return None
        return response.json()

    def query_fn(self, on_401: UnauthorizedBehavior = "throw") -> QueryFn:
        async def fetch(key):
            return await self.query(key, on_401=on_401)
        return fetch

    # ── Vehicles ─────────────────────────────────────────────────────────
    async def create_vehicle(self, payload: dict) -> dict:
        return (await self.request("POST", "/api/vehicles", json=payload)).json()

    async def update_vehicle(self, vehicle_id: int, payload: dict) -> dict:
        return (await self.request("PATCH", f"/api/vehicles/{vehicle_id}", json=payload)).json()

    async def toggle_registration(self, vehicle_id: int, status: str) -> dict:
        """status: opnaam | not-opnaam | bv | not-bv. The server enforces exclusivity."""
        response = await self.request("PATCH", f"/api/vehicles/{vehicle_id}/toggle-registration",
                                      json={"status": status})
        return response.json()

    # ── Documents ────────────────────────────────────────────────────────
    async def upload_document(self, vehicle_id: int, document_type: str, file: Union[str, bytes],
                              filename: Optional[str] = None, content_type: str = "application/pdf",
                              extra: Optional[dict] = None) -> dict:
        """Multipart upload to /api/documents. `file` is a path or raw bytes."""
        if isinstance(file, str):
            filename = filename or os.path.basename(file)
            with open(file, "rb") as f:
                content = f.read()
        else:
            content = file
        form = {"vehicleId": str(vehicle_id), "documentType": document_type}
        form.update({k: str(v) for k, v in (extra or {}).items() if v is not None})
        files = {"file": (filename or "upload.bin", content, content_type)}
        response = await self.request("POST", "/api/documents", data=form, files=files)
        return response.json()

    # ── Damage checks ────────────────────────────────────────────────────
    async def match_diagram_template(self, vehicle_id: int) -> Optional[dict]:
        try:
            response = await self.request("GET", f"/api/vehicle-diagram-templates/match/{vehicle_id}")
        except ApiError as e:
            if e.status == 404:
                return None
            raise
        return response.json()

    async def download(self, path: str) -> bytes:
        """Raw bytes of a server-relative file, e.g. a template's diagramPath."""
        response = await self.request("GET", "/" + path.lstrip("/"))
        return response.content

    async def save_damage_check(self, payload: dict) -> dict:
        return (await self.request("POST", "/api/interactive-damage-checks", json=payload)).json()

    # ── Contract templates ───────────────────────────────────────────────
    async def preview_template(self, template_id: int) -> bytes:
        """PDF rendered with field labels instead of reservation data."""
        response = await self.request("GET", f"/api/pdf-templates/{template_id}/preview")
        return response.content

    async def aclose(self):
        await self._client.aclose()
