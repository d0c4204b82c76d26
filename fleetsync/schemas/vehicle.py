# fleetsync/schemas/vehicle.py
from pydantic import BaseModel, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Any, Optional


def _as_bool(value: Any) -> bool:
    """The back-office stores some flags as "true"/"false" text."""
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


class VehicleForm(BaseModel):
    license_plate: str
    brand: str
    model: str
    vehicle_type: Optional[str] = None
    chassis_number: Optional[str] = None
    fuel: Optional[str] = None
    apk_date: Optional[str] = None
    warranty_end_date: Optional[str] = None

    # Registration status: to a person ("opnaam") or to a company ("BV"), never both
    registered_to: bool = False
    registered_to_date: Optional[str] = None
    company: bool = False
    company_date: Optional[str] = None

    # Equipment / feature flags
    ad_blue: bool = False
    gps: bool = False
    winter_tires: bool = False
    spare_key: bool = False
    roadside_assistance: bool = False
    seatcovers: bool = False
    backupbeepers: bool = False
    remarks: Optional[str] = None

    @field_validator("registered_to", "company", "ad_blue", "gps", "winter_tires", "spare_key",
                     "roadside_assistance", "seatcovers", "backupbeepers", mode="before")
    @classmethod
    def _string_booleans(cls, value):
        return _as_bool(value)

    @model_validator(mode="after")
    def _one_registration(self):
        if self.registered_to and self.company:
            raise ValueError("A vehicle cannot be registered to a person and a company at the same time")
        return self

    class Config:
        alias_generator = to_camel
        populate_by_name = True
