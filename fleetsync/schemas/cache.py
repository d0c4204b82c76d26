# fleetsync/schemas/cache.py
from pydantic import BaseModel, Field
from typing import Any, Literal, Optional


class CacheEntryOut(BaseModel):
    key: list
    path: str
    is_stale: bool
    is_active: bool
    subscribers: int
    fetch_count: int
    age_seconds: Optional[float]
    error: Optional[str]


class InvalidateRequest(BaseModel):
    prefix: str
    refetch_type: Literal["none", "active", "all"] = "none"


class WatchRequest(BaseModel):
    path: str                                # "/api/vehicles/7", "/api/reservations"
    params: Optional[dict[str, Any]] = None  # becomes the dict part of the key

    def key(self) -> tuple:
        return (self.path, self.params) if self.params else (self.path,)


class AutoRefreshRequest(BaseModel):
    name: str
    paths: list[str] = Field(min_length=1)
    enabled: bool = True
    interval: Optional[float] = Field(None, gt=0)
