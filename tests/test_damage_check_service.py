"""Unit tests for the damage check save flow."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import io
import json
from datetime import datetime, timedelta
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from PIL import Image
from fleetsync.services.api_client import ApiConnectionError
from fleetsync.services.damage_canvas import DamageCanvas, SignaturePad
from fleetsync.services.damage_check_service import (
    DamageCheckDraft, DamageCheckValidationError, build_payload, load_diagram_image, load_diagram_template,
    save_damage_check,
)


def make_canvas():
    canvas = DamageCanvas(400, 200)
    canvas.click(100, 50)
    canvas.update_marker(severity="moderate", type="dent")
    return canvas


def make_draft(**overrides):
    data = {"vehicle_id": 7, "template": {"id": 3, "name": "Van"}, "reservation_id": 12}
    data.update(overrides)
    return DamageCheckDraft(**data)


class TestBuildPayload:
    def test_payload_fields(self):
        pad = SignaturePad()
        pad.begin_stroke(1, 1)
        pad.extend_stroke(50, 50)
        pad.end_stroke()
        payload = build_payload(make_draft(mileage=1200), make_canvas(), Image.new("RGB", (800, 400), "white"),
                                customer_signature=pad, staff_signature=SignaturePad())

        assert payload["vehicleId"] == 7
        assert payload["diagramTemplateId"] == 3
        assert payload["checkType"] == "pickup"
        markers = json.loads(payload["damageMarkers"])
        assert markers[0]["x"] == 0.25 and markers[0]["severity"] == "moderate"
        assert json.loads(payload["drawingPaths"]) == []
        assert payload["diagramWithAnnotations"].startswith("data:image/png;base64,")
        assert payload["customerSignature"].startswith("data:image/png;base64,")
        assert payload["staffSignature"] is None
        assert payload["mileage"] == 1200
        assert payload["checkDate"].endswith("Z")
        checked = datetime.fromisoformat(payload["checkDate"].replace("Z", "+00:00"))
        assert checked.utcoffset() == timedelta(0)

    def test_requires_vehicle(self):
        with pytest.raises(DamageCheckValidationError, match="Please select a vehicle"):
            build_payload(make_draft(vehicle_id=None), make_canvas())

    def test_requires_template(self):
        with pytest.raises(DamageCheckValidationError, match="No matching vehicle diagram found for this vehicle"):
            build_payload(make_draft(template=None), make_canvas())

    def test_rejects_unknown_check_type(self):
        with pytest.raises(DamageCheckValidationError):
            build_payload(make_draft(check_type="inspection"), make_canvas())


class TestSaveDamageCheck:
    @pytest.mark.asyncio
    async def test_success_invalidates_documents_and_vehicle(self):
        client = MagicMock()
        client.save_damage_check = AsyncMock(return_value={"id": 99})
        cache = MagicMock()
        cache.apply = AsyncMock(return_value=set())

        with patch("fleetsync.services.damage_check_service.notify", new_callable=AsyncMock) as notify:
            saved = await save_damage_check(client, cache, MagicMock(), make_draft(), make_canvas())

        assert saved == {"id": 99}
        paths = {c.path for c in cache.apply.call_args.args[0]}
        assert {"/api/documents", "/api/vehicles", "/api/vehicles/7"} <= paths
        assert notify.call_args.args[3] == "Damage check saved successfully"

    @pytest.mark.asyncio
    async def test_validation_error_does_not_call_server(self):
        client = MagicMock()
        client.save_damage_check = AsyncMock()

        with patch("fleetsync.services.damage_check_service.notify", new_callable=AsyncMock) as notify:
            saved = await save_damage_check(client, MagicMock(), MagicMock(), make_draft(template=None), make_canvas())

        assert saved is None
        client.save_damage_check.assert_not_called()
        assert notify.call_args.args[2] == "Validation Error"
        assert notify.call_args.args[3] == "No matching vehicle diagram found for this vehicle"

    @pytest.mark.asyncio
    async def test_network_failure_keeps_canvas(self):
        client = MagicMock()
        client.save_damage_check = AsyncMock(side_effect=ApiConnectionError("refused"))
        cache = MagicMock()
        cache.apply = AsyncMock()
        canvas = make_canvas()

        with patch("fleetsync.services.damage_check_service.notify_error", new_callable=AsyncMock) as notify_error:
            saved = await save_damage_check(client, cache, MagicMock(), make_draft(), canvas)

        assert saved is None
        assert len(canvas.markers) == 1
        cache.apply.assert_not_called()
        notify_error.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_template_for_vehicle(self):
        client = MagicMock()
        client.match_diagram_template = AsyncMock(return_value=None)
        assert await load_diagram_template(client, 7) is None


class TestLoadDiagramImage:
    @pytest.mark.asyncio
    async def test_downloads_diagram(self):
        buffer = io.BytesIO()
        Image.new("RGB", (120, 60), "white").save(buffer, format="PNG")
        client = MagicMock()
        client.download = AsyncMock(return_value=buffer.getvalue())

        image = await load_diagram_image(client, {"id": 3, "diagramPath": "/uploads/van.png"})

        assert image.size == (120, 60)
        client.download.assert_awaited_once_with("/uploads/van.png")

    @pytest.mark.asyncio
    async def test_template_without_diagram(self):
        client = MagicMock()
        client.download = AsyncMock()
        assert await load_diagram_image(client, {"id": 3}) is None
        client.download.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unreadable_or_unreachable_diagram(self):
        client = MagicMock()
        client.download = AsyncMock(return_value=b"not an image")
        assert await load_diagram_image(client, {"id": 3, "diagramPath": "/uploads/van.png"}) is None
        client.download = AsyncMock(side_effect=ApiConnectionError("refused"))
        assert await load_diagram_image(client, {"id": 3, "diagramPath": "/uploads/van.png"}) is None
