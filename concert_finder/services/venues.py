from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote

from concert_finder.core.venue_config import HIGH_ACTIVITY_USE_COUNT, MEDIUM_ACTIVITY_USE_COUNT
from concert_finder.schemas.enums import ActivityLevel
from concert_finder.schemas.location import Coordinates
from concert_finder.schemas.pattern import Pattern
from concert_finder.schemas.venue import VenueDisplay, VenueShareInfo
from concert_finder.services import geocell


class VenueLike(Protocol):
    id: str
    label: Optional[str]
    use_count: Optional[int]


SUGGESTED_LABELS = [
    "Concert Hall",
    "Stadium",
    "Arena",
    "Festival Grounds",
    "Club",
    "Theater",
    "Park",
    "Convention Center",
]


# ------------------------------------------------------------
# Ids
# ------------------------------------------------------------
def generate_venue_id(coordinates: Coordinates) -> str:
    if not geocell.validate_coordinates(coordinates):
        raise ValueError("Invalid coordinates provided")
    return geocell.coordinates_to_cell_id(coordinates)


def get_venue_coordinates(venue_id: str) -> Coordinates:
    if not geocell.is_valid_cell_id(venue_id):
        raise ValueError("Invalid venue ID format")
    return geocell.cell_id_to_coordinates(venue_id)


def is_valid_venue_id(venue_id: Optional[str]) -> bool:
    return geocell.is_valid_cell_id(venue_id)


def normalize_label(label: Optional[str]) -> Optional[str]:
    if label is None:
        return None
    return label.strip() or None


# ------------------------------------------------------------
# Insert payload
# ------------------------------------------------------------
def create_venue_data(coordinates: Coordinates, label: Optional[str] = None) -> Dict[str, Any]:
    """Insert-ready row for a venue first seen at `coordinates`."""
    if not geocell.validate_coordinates(coordinates):
        raise ValueError("Invalid coordinates for venue creation")

    return {
        "id": generate_venue_id(coordinates),
        "label": normalize_label(label),
        "center": f"POINT({coordinates.longitude} {coordinates.latitude})",
        "use_count": 1,
    }


# ------------------------------------------------------------
# Display
# ------------------------------------------------------------
def activity_level(use_count: Optional[int]) -> ActivityLevel:
    count = use_count or 0
    if count > HIGH_ACTIVITY_USE_COUNT:
        return ActivityLevel.high
    if count > MEDIUM_ACTIVITY_USE_COUNT:
        return ActivityLevel.medium
    return ActivityLevel.low


def format_venue_for_display(venue: VenueLike) -> VenueDisplay:
    coords = get_venue_coordinates(venue.id)
    return VenueDisplay(
        id=venue.id,
        display_name=venue.label or f"Venue {venue.id.upper()}",
        approximate_location=geocell.format_coordinates_for_display(coords, 3),
        activity_level=activity_level(venue.use_count),
    )


def generate_venue_share_info(venue: VenueLike) -> VenueShareInfo:
    coords = get_venue_coordinates(venue.id)
    area = venue.id.upper()
    return VenueShareInfo(
        venue_name=venue.label or f"Area {area}",
        approximate_area=geocell.format_coordinates_for_display(coords, 2),
        join_message=(
            f"Join patterns at {venue.label}" if venue.label else f"Join patterns in area {area}"
        ),
    )


def get_venue_distance(venue_id: str, coordinates: Coordinates) -> float:
    return geocell.distance(coordinates, get_venue_coordinates(venue_id))


def suggest_venue_labels() -> List[str]:
    return list(SUGGESTED_LABELS)


def privacy_description(venue: VenueLike) -> str:
    # unlabeled venues only reveal the 4-char parent cell
    if venue.label:
        return venue.label
    return f"Area {venue.id[:4].upper()}"


# ------------------------------------------------------------
# API request building
# ------------------------------------------------------------
def build_venue_path(venue_id: str) -> str:
    return f"/venues/{quote(venue_id, safe='')}"


def prepare_create_request(
    coordinates: Coordinates,
    label: Optional[str] = None,
    pattern_data: Optional[Pattern] = None,
) -> Dict[str, Any]:
    venue_id = generate_venue_id(coordinates)
    return {
        "method": "POST",
        "url": build_venue_path(venue_id),
        "headers": {"Content-Type": "application/json"},
        "json": {
            "coordinates": coordinates.model_dump(exclude_none=True),
            "label": label,
            "pattern_data": pattern_data.model_dump(mode="json") if pattern_data else None,
        },
    }


def prepare_touch_request(venue_id: str, label: Optional[str] = None) -> Dict[str, Any]:
    if not is_valid_venue_id(venue_id):
        raise ValueError("Invalid venue ID format")
    return {
        "method": "PATCH",
        "url": build_venue_path(venue_id.lower()),
        "headers": {"Content-Type": "application/json"},
        "json": {"label": label} if label else {},
    }
