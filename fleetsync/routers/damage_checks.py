"""
Interactive damage checks.
GET  /damage-checks/template/{vehicle_id} : diagram template matching the vehicle.
POST /damage-checks                        : composite the markup onto the diagram and save.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from fleetsync.database import get_db
from fleetsync.schemas.damage_check import DamageCheckIn
from fleetsync.services.api_client import ApiConnectionError, ApiError
from fleetsync.services.damage_canvas import DamageCanvas, SignaturePad
from fleetsync.services.damage_check_service import (
    NO_DIAGRAM_MESSAGE, DamageCheckDraft, load_diagram_image, load_diagram_template, save_damage_check,
)
from fleetsync.services.notification_service import describe_error, http_status_for, notify_error
from fleetsync.services.sync_session import SyncSession, get_sync_session
from fleetsync.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.get("/damage-checks/template/{vehicle_id}", summary="Diagram template for a vehicle")
async def get_diagram_template(vehicle_id: int, session: SyncSession = Depends(get_sync_session)):
    try:
        template = await load_diagram_template(session.client, vehicle_id)
    except (ApiError, ApiConnectionError) as e:
        raise HTTPException(status_code=http_status_for(e), detail=describe_error(e, entity="template")) from e
    if template is None:
        raise HTTPException(status_code=404, detail=NO_DIAGRAM_MESSAGE)
    return template


@router.post("/damage-checks", status_code=201, summary="Save an interactive damage check")
async def create_damage_check(body: DamageCheckIn, db: Session = Depends(get_db),
                              session: SyncSession = Depends(get_sync_session)):
    try:
        canvas = DamageCanvas.from_payload(
            {"damageMarkers": body.damage_markers, "drawingPaths": body.drawing_paths},
            body.canvas_width, body.canvas_height,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise HTTPException(status_code=422, detail=f"Invalid damage markers: {e}")

    try:
        template = await load_diagram_template(session.client, body.vehicle_id)
    except (ApiError, ApiConnectionError) as e:
        await notify_error(db, e, title="Error", entity="template")
        raise HTTPException(status_code=http_status_for(e), detail=describe_error(e, entity="template")) from e
    background = await load_diagram_image(session.client, template) if template else None

    draft = DamageCheckDraft(
        vehicle_id=body.vehicle_id,
        template=template,
        reservation_id=body.reservation_id,
        check_type=body.check_type,
        fuel_level=body.fuel_level,
        mileage=body.mileage,
        notes=body.notes,
    )
    saved = await save_damage_check(
        session.client, session.cache, db, draft, canvas, background,
        customer_signature=SignaturePad.from_paths(body.customer_signature) if body.customer_signature else None,
        staff_signature=SignaturePad.from_paths(body.staff_signature) if body.staff_signature else None,
    )
    if saved is None:
        raise HTTPException(status_code=422, detail="Damage check was not saved, see /api/v1/notifications")
    logger.info(f"Damage check for vehicle {body.vehicle_id} stored via agent")
    return saved
