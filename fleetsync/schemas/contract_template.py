# fleetsync/schemas/contract_template.py
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import Literal, Optional


class TemplateField(BaseModel):
    id: str
    name: str
    x: float
    y: float
    font_size: float = Field(12, gt=0)
    is_bold: bool = False
    source: str                      # data-source key, e.g. "vehicle.licensePlate"
    text_align: Literal["left", "center", "right"] = "left"
    locked: bool = False

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ContractTemplate(BaseModel):
    id: int
    name: str
    is_default: bool = False
    background_path: Optional[str] = None
    fields: list[TemplateField] = []

    class Config:
        alias_generator = to_camel
        populate_by_name = True
