from typing import Any, List, Optional
from pydantic import BaseModel

from concert_finder.schemas.base import TimestampedSchema
from concert_finder.schemas.enums import ActivityLevel
from concert_finder.schemas.location import Coordinates


# ---------- rows ----------
class VenueOut(TimestampedSchema):
    id: str
    label: Optional[str] = None
    center: Optional[str] = None
    use_count: int = 0


# ---------- requests ----------
class VenueCreateRequest(BaseModel):
    coordinates: Coordinates
    label: Optional[str] = None
    # parsed into a Pattern separately; a bad one is dropped, not rejected
    pattern_data: Optional[Any] = None


class VenueTouchRequest(BaseModel):
    label: Optional[str] = None


# ---------- responses ----------
class VenueMetadata(BaseModel):
    active_patterns: int = 0
    recent_labels: List[str] = []
    is_new: bool = False


class VenueResponse(BaseModel):
    venue: VenueOut
    metadata: VenueMetadata


class VenueTouchResponse(BaseModel):
    venue: VenueOut


class VenueErrorResponse(BaseModel):
    error: str
    message: str


# ---------- display ----------
class VenueDisplay(BaseModel):
    id: str
    display_name: str
    approximate_location: str
    activity_level: ActivityLevel


class VenueShareInfo(BaseModel):
    venue_name: str
    approximate_area: str
    join_message: str
