"""API tests for the agent's local endpoints."""

import sys
import os
import io
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fleetsync.database import Base, get_db
from fleetsync.main import app
from fleetsync.models.notification import Notification
from fleetsync.services.api_client import ApiConnectionError, ApiError
from fleetsync.services.damage_check_service import NO_DIAGRAM_MESSAGE
from fleetsync.services.query_cache import QueryCache, key_path
from fleetsync.services.sync_session import SyncSession

RECORDS = {
    "/api/vehicles": [{"id": 5}, {"id": 7}],
    "/api/vehicles/5": {"id": 5, "licensePlate": "AB-123-C", "brand": "Ford", "model": "Transit", "company": "true"},
    "/api/vehicles/7": {"id": 7, "licensePlate": "XY-987-Z", "brand": "Renault", "model": "Master"},
    "/api/vehicles/available": [],
    "/api/customers": [],
}


@pytest.fixture
def api():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    async def fetch(key):
        path = key_path(key)
        fetch.calls.append(path)
        if path not in RECORDS:
            raise ApiError(404, "Not Found", url=path)
        return RECORDS[path]
    fetch.calls = []

    client = MagicMock()
    client.request = AsyncMock(return_value=MagicMock(status_code=200))
    client.aclose = AsyncMock()
    session = SyncSession(client=client, cache=QueryCache(fetch), connection=MagicMock(connected=True))
    session.fetch = fetch

    app.dependency_overrides[get_db] = override_get_db
    app.state.sync_session = session
    client = TestClient(app)
    client.db = TestingSession
    client.session = session
    yield client
    app.dependency_overrides.clear()
    del app.state.sync_session


class TestEventIngest:
    def test_data_update_invalidates_and_logs(self, api):
        api.session.cache.set_query_data(("/api/expenses", 42), {"id": 42})
        response = api.post("/api/v1/events/data-update", json={
            "entityType": "expenses", "action": "updated", "data": {"id": 42, "vehicleId": 7},
        })
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert set(body["invalidated"]) == {
            "/api/expenses", "/api/expenses/42", "/api/vehicles/7", "/api/expenses/vehicle/7",
        }
        assert api.session.cache.is_stale(("/api/expenses", 42))

        events = api.get("/api/v1/events", params={"entity_type": "expenses"}).json()
        assert len(events) == 1
        assert events[0]["source"] == "http"
        assert events[0]["vehicle_id"] == 7

        toasts = api.get("/api/v1/notifications").json()
        assert toasts[0]["title"] == "Data Updated"

    def test_unknown_entity_still_accepted(self, api):
        response = api.post("/api/v1/events/data-update", json={"entityType": "maintenance"})
        assert response.status_code == 200
        assert response.json()["invalidated"] == ["/api*"]

    def test_missing_entity_type_rejected(self, api):
        response = api.post("/api/v1/events/data-update", json={"action": "updated"})
        assert response.status_code == 422


class TestCacheEndpoints:
    def test_list_cache(self, api):
        api.session.cache.set_query_data(("/api/vehicles", 3), {})
        entries = api.get("/api/v1/cache").json()
        assert entries[0]["path"] == "/api/vehicles/3"
        assert entries[0]["is_stale"] is False

    def test_manual_prefix_invalidation(self, api):
        for key in ["/api/reservations", "/api/reservations/upcoming", "/api/customers"]:
            api.session.cache.set_query_data(key, [])
        response = api.post("/api/v1/cache/invalidate", json={"prefix": "/api/reservations"})
        assert response.json() == {"status": "ok", "invalidated": 2}
        assert not api.session.cache.is_stale("/api/customers")

    def test_refresh(self, api):
        response = api.post("/api/v1/cache/refresh")
        assert response.json()["status"] == "ok"


class TestNotifications:
    def test_dismiss(self, api):
        db = api.db()
        db.add(Notification(level="info", title="Connected", description="", duration_ms=2000, is_dismissed=0,
                            created_at=datetime.now(timezone.utc)))
        db.commit()
        notification_id = db.query(Notification).first().id
        db.close()

        response = api.post(f"/api/v1/notifications/{notification_id}/dismiss")
        assert response.status_code == 200
        assert response.json()["is_dismissed"] == 1
        assert api.get("/api/v1/notifications", params={"is_dismissed": 0}).json() == []

    def test_dismiss_missing(self, api):
        assert api.post("/api/v1/notifications/999/dismiss").status_code == 404


class TestHealth:
    def test_healthy(self, api):
        body = api.get("/api/v1/health").json()
        assert body["status"] == "ok"
        assert body["database"] == "ok"
        assert body["realtime"] == "connected"
        assert body["backoffice"] == "ok"

    def test_degraded_when_backoffice_unreachable(self, api):
        api.session.client.request = AsyncMock(side_effect=ApiConnectionError("refused"))
        api.session.connection.connected = False
        body = api.get("/api/v1/health").json()
        assert body["status"] == "degraded"
        assert body["backoffice"] == "unreachable"
        assert body["realtime"] == "disconnected"


def toasts(api):
    return api.get("/api/v1/notifications").json()


class TestQueryEndpoints:
    def test_read_through_fills_cache_and_serves_fresh_copy(self, api):
        first = api.get("/api/v1/query", params={"path": "/api/vehicles/7"})
        assert first.status_code == 200
        assert first.json() == {"path": "/api/vehicles/7", "data": RECORDS["/api/vehicles/7"]}
        api.get("/api/v1/query", params={"path": "/api/vehicles/7"})
        assert api.session.fetch.calls == ["/api/vehicles/7"]

    def test_data_update_makes_next_read_refetch(self, api):
        api.get("/api/v1/query", params={"path": "/api/vehicles/7"})
        api.post("/api/v1/events/data-update", json={
            "entityType": "expenses", "action": "created", "data": {"id": 42, "vehicleId": 7},
        })
        assert api.session.cache.is_stale(("/api/vehicles", 7))
        api.get("/api/v1/query", params={"path": "/api/vehicles/7"})
        assert api.session.fetch.calls == ["/api/vehicles/7", "/api/vehicles/7"]

    def test_force_refetches(self, api):
        api.get("/api/v1/query", params={"path": "/api/customers"})
        api.get("/api/v1/query", params={"path": "/api/customers", "force": "true"})
        assert api.session.fetch.calls == ["/api/customers", "/api/customers"]

    def test_extra_params_become_part_of_key(self, api):
        api.session.cache.set_query_data(("/api/customers", {"search": "jan"}), [{"id": 1}])
        body = api.get("/api/v1/query", params={"path": "/api/customers", "search": "jan"}).json()
        assert body["data"] == [{"id": 1}]
        assert api.session.fetch.calls == []

    def test_backoffice_404_passed_through(self, api):
        response = api.get("/api/v1/query", params={"path": "/api/vehicles/404"})
        assert response.status_code == 404
        assert "could not be found" in response.json()["detail"]

    def test_watch_and_unwatch(self, api):
        body = api.post("/api/v1/query/watch", json={"path": "/api/vehicles/5"}).json()
        assert body["subscribers"] == 1
        assert body["data"]["licensePlate"] == "AB-123-C"
        assert body["error"] is None

        # Watching again keeps one subscription
        assert api.post("/api/v1/query/watch", json={"path": "/api/vehicles/5"}).json()["subscribers"] == 1

        # A push only marks it stale; an active invalidation refetches it
        api.post("/api/v1/events/data-update", json={
            "entityType": "vehicles", "action": "updated", "data": {"id": 5},
        })
        assert api.session.cache.is_stale("/api/vehicles/5")
        api.post("/api/v1/cache/invalidate", json={"prefix": "/api/vehicles/5", "refetch_type": "active"})
        assert api.session.fetch.calls.count("/api/vehicles/5") == 2

        assert api.post("/api/v1/query/unwatch", json={"path": "/api/vehicles/5"}).status_code == 200
        assert api.session.cache.get_entry("/api/vehicles/5").subscribers == 0
        assert api.post("/api/v1/query/unwatch", json={"path": "/api/vehicles/5"}).status_code == 404

    def test_watch_reports_fetch_error(self, api):
        body = api.post("/api/v1/query/watch", json={"path": "/api/reports"}).json()
        assert body["subscribers"] == 1
        assert body["data"] is None
        assert "could not be found" in body["error"]

    def test_auto_refresh_start_and_stop(self, api):
        response = api.post("/api/v1/auto-refresh", json={
            "name": "dashboard", "paths": ["/api/vehicles/available"], "enabled": False,
        })
        assert response.status_code == 200
        assert response.json()["paths"] == ["/api/vehicles/available"]
        assert "dashboard" in api.session.auto_refreshes
        assert api.session.cache.policy_for("/api/vehicles/available").stale_time == float("inf")

        assert api.delete("/api/v1/auto-refresh/dashboard").status_code == 200
        assert api.session.auto_refreshes == {}
        assert api.delete("/api/v1/auto-refresh/dashboard").status_code == 404

    def test_auto_refresh_requires_paths(self, api):
        response = api.post("/api/v1/auto-refresh", json={"name": "empty", "paths": []})
        assert response.status_code == 422

    def test_window_focus_refetches_stale_watched_keys(self, api):
        api.post("/api/v1/query/watch", json={"path": "/api/customers"})
        api.post("/api/v1/cache/invalidate", json={"prefix": "/api/customers", "refetch_type": "none"})
        assert api.post("/api/v1/window-focus").json() == {"status": "ok", "refetched": 1}
        assert api.session.fetch.calls == ["/api/customers", "/api/customers"]


class TestVehicleEndpoints:
    FORM = {"licensePlate": "NEW-01", "brand": "Fiat", "model": "Ducato", "registeredTo": True}

    def test_create(self, api):
        api.session.client.create_vehicle = AsyncMock(return_value={"id": 11, "licensePlate": "NEW-01"})
        api.session.cache.set_query_data("/api/vehicles", [])

        response = api.post("/api/v1/vehicles", json=self.FORM)

        assert response.status_code == 201
        assert response.json()["id"] == 11
        payload = api.session.client.create_vehicle.await_args.args[0]
        assert payload["registeredTo"] is True
        assert payload["registeredToDate"]
        assert api.session.cache.is_stale("/api/vehicles")
        assert toasts(api)[0]["level"] == "success"

    def test_duplicate_plate(self, api):
        api.session.client.create_vehicle = AsyncMock(side_effect=ApiError(409, "Conflict"))
        response = api.post("/api/v1/vehicles", json=self.FORM)
        assert response.status_code == 422
        toast = toasts(api)[0]
        assert toast["level"] == "destructive"
        assert "license plate already exists" in toast["description"]

    def test_both_registrations_rejected(self, api):
        response = api.post("/api/v1/vehicles", json={**self.FORM, "company": True})
        assert response.status_code == 422

    def test_update_toggles_registration_against_stored_record(self, api):
        client = api.session.client
        client.toggle_registration = AsyncMock(return_value={"id": 5, "registeredTo": "true"})
        client.update_vehicle = AsyncMock(return_value={"id": 5})

        response = api.patch("/api/v1/vehicles/5", json={
            "licensePlate": "AB-123-C", "brand": "Ford", "model": "Transit", "registeredTo": True,
        })

        assert response.status_code == 200
        client.toggle_registration.assert_awaited_once_with(5, "opnaam")
        payload = client.update_vehicle.await_args.args[1]
        assert "registeredTo" not in payload
        assert "company" not in payload

    def test_update_without_stored_record_skips_toggle(self, api):
        client = api.session.client
        client.toggle_registration = AsyncMock()
        client.update_vehicle = AsyncMock(return_value={"id": 99})

        response = api.patch("/api/v1/vehicles/99", json={"licensePlate": "Q-1", "brand": "VW", "model": "Crafter"})

        assert response.status_code == 200
        client.toggle_registration.assert_not_awaited()


class TestDamageCheckEndpoints:
    BODY = {
        "vehicleId": 7,
        "checkType": "return",
        "mileage": 120500,
        "damageMarkers": [{"x": 0.25, "y": 0.5, "type": "dent", "severity": "moderate"}],
        "drawingPaths": [[[0.1, 0.1], [0.2, 0.2]]],
        "customerSignature": [[[0.1, 0.5], [0.9, 0.5]]],
    }

    def diagram_png(self):
        buffer = io.BytesIO()
        Image.new("RGB", (200, 100), "white").save(buffer, format="PNG")
        return buffer.getvalue()

    def test_save(self, api):
        client = api.session.client
        client.match_diagram_template = AsyncMock(return_value={"id": 3, "diagramPath": "/uploads/van.png"})
        client.download = AsyncMock(return_value=self.diagram_png())
        client.save_damage_check = AsyncMock(return_value={"id": 77})

        response = api.post("/api/v1/damage-checks", json=self.BODY)

        assert response.status_code == 201
        assert response.json() == {"id": 77}
        client.download.assert_awaited_once_with("/uploads/van.png")
        payload = client.save_damage_check.await_args.args[0]
        assert payload["diagramTemplateId"] == 3
        assert payload["checkType"] == "return"
        assert payload["diagramWithAnnotations"].startswith("data:image/png;base64,")
        assert payload["customerSignature"].startswith("data:image/png;base64,")
        assert payload["staffSignature"] is None
        assert '"dent"' in payload["damageMarkers"]

    def test_no_matching_template(self, api):
        api.session.client.match_diagram_template = AsyncMock(return_value=None)
        api.session.client.save_damage_check = AsyncMock()

        response = api.post("/api/v1/damage-checks", json=self.BODY)

        assert response.status_code == 422
        api.session.client.save_damage_check.assert_not_awaited()
        assert toasts(api)[0]["description"] == NO_DIAGRAM_MESSAGE

    def test_bad_marker_severity(self, api):
        body = {**self.BODY, "damageMarkers": [{"x": 0.1, "y": 0.1, "severity": "catastrophic"}]}
        assert api.post("/api/v1/damage-checks", json=body).status_code == 422

    def test_template_lookup(self, api):
        api.session.client.match_diagram_template = AsyncMock(return_value={"id": 3})
        assert api.get("/api/v1/damage-checks/template/7").json() == {"id": 3}

        api.session.client.match_diagram_template = AsyncMock(return_value=None)
        response = api.get("/api/v1/damage-checks/template/8")
        assert response.status_code == 404
        assert response.json()["detail"] == NO_DIAGRAM_MESSAGE


class TestTemplatePreview:
    def test_preview_is_pdf(self, api):
        api.session.client.preview_template = AsyncMock(return_value=b"%PDF-1.4 preview")
        response = api.get("/api/v1/templates/4/preview")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content == b"%PDF-1.4 preview"

    def test_preview_failure(self, api):
        api.session.client.preview_template = AsyncMock(side_effect=ApiError(500, "boom"))
        response = api.get("/api/v1/templates/4/preview")
        assert response.status_code == 502
        assert toasts(api)[0]["level"] == "destructive"
