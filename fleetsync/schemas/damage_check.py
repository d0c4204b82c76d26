# fleetsync/schemas/damage_check.py
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import Any, Optional

Stroke = list[tuple[float, float]]          # fractional (x, y) points


class DamageCheckIn(BaseModel):
    vehicle_id: int
    reservation_id: Optional[int] = None
    check_type: str = "pickup"
    fuel_level: Optional[str] = None
    mileage: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None

    # Size the markers were placed at; only used for hit testing, stored data is fractional
    canvas_width: float = Field(800, gt=0)
    canvas_height: float = Field(600, gt=0)
    damage_markers: list[dict[str, Any]] = []
    drawing_paths: list[Stroke] = []
    customer_signature: list[Stroke] = []
    staff_signature: list[Stroke] = []

    class Config:
        alias_generator = to_camel
        populate_by_name = True
