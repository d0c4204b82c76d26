"""
Vehicle create/update through the agent.
A failed save answers 422 and leaves a destructive notification with the server's reason.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from fleetsync.database import get_db
from fleetsync.schemas.vehicle import VehicleForm
from fleetsync.services.sync_session import SyncSession, get_sync_session
from fleetsync.services.vehicle_service import load_vehicle_form, save_vehicle

router = APIRouter()


@router.post("/vehicles", status_code=201, summary="Create a vehicle")
async def create_vehicle(form: VehicleForm, db: Session = Depends(get_db),
                         session: SyncSession = Depends(get_sync_session)):
    saved = await save_vehicle(session.client, session.cache, db, form)
    if saved is None:
        raise HTTPException(status_code=422, detail="Vehicle was not saved, see /api/v1/notifications")
    return saved


@router.patch("/vehicles/{vehicle_id}", summary="Update a vehicle")
async def update_vehicle(vehicle_id: int, form: VehicleForm, db: Session = Depends(get_db),
                         session: SyncSession = Depends(get_sync_session)):
    # Registration switches are compared against the stored record
    previous = await load_vehicle_form(session.cache, vehicle_id)
    saved = await save_vehicle(session.client, session.cache, db, form, vehicle_id=vehicle_id, previous=previous)
    if saved is None:
        raise HTTPException(status_code=422, detail="Vehicle was not saved, see /api/v1/notifications")
    return saved
