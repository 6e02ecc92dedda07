from pydantic import BaseModel
from typing import Dict, List, Optional, Tuple

from concert_finder.schemas.enums import PresenceEventType
from concert_finder.schemas.pattern import Pattern


class PresenceRecord(BaseModel):
    pattern_id: str
    pattern_data: Pattern
    session_id: str
    approximate_location: Optional[Tuple[float, float]] = None   # (lat, lng)
    joined_at: int   # epoch ms
    last_seen: int   # epoch ms


class RosterSnapshot(BaseModel):
    venue_id: str
    active_patterns: Dict[str, PresenceRecord]
    user_count: int
    last_updated: int


class PresenceEvent(BaseModel):
    type: PresenceEventType
    presence: List[PresenceRecord]
    venue_id: str


class PresenceDisplay(BaseModel):
    pattern_name: str
    duration: str
    distance: Optional[str] = None
