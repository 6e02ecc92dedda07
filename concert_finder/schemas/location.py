from typing import Optional
from pydantic import BaseModel


class Coordinates(BaseModel):
    # range checks live in geocell.validate_coordinates so callers can
    # report invalid input instead of failing model construction
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    timestamp: Optional[int] = None


class CellBounds(BaseModel):
    north: float
    south: float
    east: float
    west: float


class ManualLocationEntry(BaseModel):
    venue_name: Optional[str] = None
    city: Optional[str] = None
    coordinates: Optional[Coordinates] = None
