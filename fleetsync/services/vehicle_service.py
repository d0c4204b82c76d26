# fleetsync/services/vehicle_service.py
"""
Vehicle form rules and save flow.

Registration flags are mutually exclusive: switching one on switches the other
off in the same update. On edit, a flag change goes through the dedicated
toggle-registration endpoint (the server applies the same rule) and the
registration fields are left out of the regular PATCH.
"""

from datetime import date
from typing import Optional
from pydantic import ValidationError
from sqlalchemy.orm import Session
from fleetsync.schemas.vehicle import VehicleForm
from fleetsync.services.api_client import ApiConnectionError, ApiError, BackofficeClient
from fleetsync.services.invalidation_router import related_commands
from fleetsync.services.notification_service import SUCCESS, notify, notify_error
from fleetsync.services.query_cache import QueryCache
from fleetsync.utils.logger import get_logger

logger = get_logger(__name__)

REGISTRATION_FIELDS = ("registeredTo", "registeredToDate", "company", "companyDate")


def set_registration(form: VehicleForm, registered_to: Optional[bool] = None,
                     company: Optional[bool] = None) -> VehicleForm:
    """Return the form with one registration switch changed and the other forced off if needed."""
    if registered_to and company:
        raise ValueError("Only one of registered_to / company can be switched on")
    update = {}
    if registered_to is not None:
        update["registered_to"] = registered_to
        if registered_to:
            update["company"] = False
    if company is not None:
        update["company"] = company
        if company:
            update["registered_to"] = False
    return form.model_copy(update=update)


def registration_toggle_status(previous: VehicleForm, current: VehicleForm) -> Optional[str]:
    """Status for the toggle-registration endpoint, or None when neither flag changed."""
    if current.registered_to != previous.registered_to:
        return "opnaam" if current.registered_to else "not-opnaam"
    if current.company != previous.company:
        return "bv" if current.company else "not-bv"
    return None


def create_payload(form: VehicleForm, today: Optional[date] = None) -> dict:
    """New vehicles: a registration flag switched on without a date gets today's date."""
    payload = form.model_dump(by_alias=True)
    today_str = (today or date.today()).isoformat()
    if form.registered_to and not form.registered_to_date:
        payload["registeredToDate"] = today_str
        logger.debug(f"Auto-set registeredToDate to {today_str} for new vehicle")
    if form.company and not form.company_date:
        payload["companyDate"] = today_str
        logger.debug(f"Auto-set companyDate to {today_str} for new vehicle")
    return payload


async def save_vehicle(client: BackofficeClient, cache: QueryCache, db: Session, form: VehicleForm,
                       vehicle_id: Optional[int] = None, previous: Optional[VehicleForm] = None) -> Optional[dict]:
    """
    Create (vehicle_id None) or update a vehicle. Returns the server record,
    or None after raising a toast; the caller keeps the form as it was.
    """
    try:
        if vehicle_id is None:
            saved = await client.create_vehicle(create_payload(form))
        else:
            saved = await _update_vehicle(client, form, vehicle_id, previous)
    except (ApiError, ApiConnectionError) as e:
        logger.error(f"Vehicle save failed for {form.license_plate}: {e}")
        await notify_error(db, e, title="Error", entity="vehicle")
        return None

    saved_id = (saved or {}).get("id") or vehicle_id
    await cache.apply(related_commands("vehicles", saved_id))
    await notify(db, SUCCESS, "Success", f"Vehicle {form.license_plate} {'updated' if vehicle_id else 'created'}")
    return saved


async def _update_vehicle(client: BackofficeClient, form: VehicleForm, vehicle_id: int,
                          previous: Optional[VehicleForm]) -> dict:
    payload = form.model_dump(by_alias=True)
    saved: dict = {}
    status = registration_toggle_status(previous, form) if previous is not None else None
    if status:
        logger.info(f"Sending toggle registration request for vehicle {vehicle_id}: {status}")
        saved = await client.toggle_registration(vehicle_id, status)
        for name in REGISTRATION_FIELDS:
            payload.pop(name, None)
    if payload:
        saved = await client.update_vehicle(vehicle_id, payload)
    return saved


async def load_vehicle_form(cache: QueryCache, vehicle_id: int) -> Optional[VehicleForm]:
    """The vehicle as the server has it now, for comparing against an edited form."""
    try:
        record = await cache.fetch_query(("/api/vehicles", vehicle_id))
    except (ApiError, ApiConnectionError) as e:
        logger.warning(f"Could not load vehicle {vehicle_id} before update: {e}")
        return None
    if not record:
        return None
    try:
        return VehicleForm.model_validate(record)
    except ValidationError as e:
        logger.warning(f"Stored vehicle {vehicle_id} does not fit the form: {e.error_count()} errors")
        return None
