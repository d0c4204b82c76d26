# fleetsync/services/damage_check_service.py
"""
Interactive damage check: load the vehicle's diagram template, save the check.

Endpoints:
    GET  /api/vehicle-diagram-templates/match/{vehicleId}
    POST /api/interactive-damage-checks

On save the overlay is flattened onto the diagram into one PNG, and the
structured markers/paths are sent alongside it so the check can be re-edited.
A failed save leaves the canvas untouched and raises a toast.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from PIL import Image
from sqlalchemy.orm import Session
from fleetsync.services.api_client import ApiConnectionError, ApiError, BackofficeClient
from fleetsync.services.damage_canvas import DamageCanvas, SignaturePad, load_image, to_data_url
from fleetsync.services.invalidation_router import related_commands
from fleetsync.services.notification_service import DESTRUCTIVE, SUCCESS, notify, notify_error
from fleetsync.services.query_cache import QueryCache
from fleetsync.utils.logger import get_logger

logger = get_logger(__name__)

CHECK_TYPES = ("pickup", "return")
NO_DIAGRAM_MESSAGE = "No matching vehicle diagram found for this vehicle"


class DamageCheckValidationError(ValueError):
    pass


@dataclass
class DamageCheckDraft:
    vehicle_id: Optional[int]
    template: Optional[dict]              # diagram template from the match endpoint
    reservation_id: Optional[int] = None
    check_type: str = "pickup"
    fuel_level: Optional[str] = None
    mileage: Optional[int] = None
    notes: Optional[str] = None


async def load_diagram_template(client: BackofficeClient, vehicle_id: int) -> Optional[dict]:
    template = await client.match_diagram_template(vehicle_id)
    if template is None:
        logger.info(f"No diagram template matches vehicle {vehicle_id}")
    return template


def build_payload(draft: DamageCheckDraft, canvas: DamageCanvas, background: Optional[Image.Image] = None,
                  customer_signature: Optional[SignaturePad] = None,
                  staff_signature: Optional[SignaturePad] = None) -> dict:
    if not draft.vehicle_id:
        raise DamageCheckValidationError("Please select a vehicle")
    if not draft.template:
        raise DamageCheckValidationError(NO_DIAGRAM_MESSAGE)
    if draft.check_type not in CHECK_TYPES:
        raise DamageCheckValidationError(f"Check type must be one of {CHECK_TYPES}")

    structured = canvas.to_payload()
    annotated = to_data_url(canvas.composite(background)) if background is not None else ""
    return {
        "vehicleId": draft.vehicle_id,
        "reservationId": draft.reservation_id,
        "checkType": draft.check_type,
        "checkDate": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "diagramTemplateId": draft.template.get("id"),
        "damageMarkers": json.dumps(structured["damageMarkers"]),
        "drawingPaths": json.dumps(structured["drawingPaths"]),
        "diagramWithAnnotations": annotated,
        "customerSignature": _signature(customer_signature),
        "staffSignature": _signature(staff_signature),
        "fuelLevel": draft.fuel_level or None,
        "mileage": draft.mileage,
        "notes": draft.notes or None,
    }


def _signature(pad: Optional[SignaturePad]) -> Optional[str]:
    if pad is None or pad.is_empty:
        return None
    return to_data_url(pad.to_image())


async def save_damage_check(client: BackofficeClient, cache: QueryCache, db: Session,
                            draft: DamageCheckDraft, canvas: DamageCanvas,
                            background: Optional[Image.Image] = None,
                            customer_signature: Optional[SignaturePad] = None,
                            staff_signature: Optional[SignaturePad] = None) -> Optional[dict]:
    """Validate, composite and POST the check. Returns the saved record, or None after a toast."""
    try:
        payload = build_payload(draft, canvas, background, customer_signature, staff_signature)
    except DamageCheckValidationError as e:
        await notify(db, DESTRUCTIVE, "Validation Error", str(e))
        return None

    try:
        saved = await client.save_damage_check(payload)
    except (ApiError, ApiConnectionError) as e:
        logger.error(f"Damage check save failed for vehicle {draft.vehicle_id}: {e}")
        await notify_error(db, e, title="Error", entity="damage check")
        return None

    commands = related_commands("documents") + related_commands("vehicles", draft.vehicle_id)
    await cache.apply(commands)
    logger.info(f"Damage check saved: vehicle={draft.vehicle_id} markers={len(canvas.markers)} paths={len(canvas.paths)}")
    await notify(db, SUCCESS, "Success", "Damage check saved successfully")
    return saved


async def load_diagram_image(client: BackofficeClient, template: dict) -> Optional[Image.Image]:
    """The template's diagram image, or None; a check can still be saved without the flattened PNG."""
    path = template.get("diagramPath")
    if not path:
        return None
    try:
        return load_image(await client.download(path))
    except (ApiError, ApiConnectionError, OSError) as e:
        logger.warning(f"Diagram image {path} for template {template.get('id')} unavailable: {e}")
        return None
