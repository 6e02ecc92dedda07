"""
Coordinate <-> venue cell resolution.

A venue is a geohash6 cell (~600m square). Everything here is pure: the
same coordinates always resolve to the same cell id, and a cell id only
ever recovers the cell center, never the original point.
"""
from __future__ import annotations

import math
import re
from typing import List, Optional

import pygeohash as pgh

from concert_finder.core.venue_config import (
    DEFAULT_NEIGHBOR_RADIUS_METERS,
    EARTH_RADIUS_METERS,
    METERS_PER_DEGREE_LAT,
    VENUE_GEOHASH_PRECISION,
)
from concert_finder.schemas.enums import LocationError
from concert_finder.schemas.location import CellBounds, Coordinates, ManualLocationEntry

CELL_ID_RE = re.compile(r"^[0-9bcdefghjkmnpqrstuvwxyz]{6}$", re.IGNORECASE)

_MANUAL_COORDS_RE = re.compile(r"^(-?\d+\.?\d*),\s*(-?\d+\.?\d*)$")


class InvalidCellId(ValueError):
    pass


class InvalidCoordinates(ValueError):
    pass


# ------------------------------------------------------------
# Validation
# ------------------------------------------------------------
def validate_coordinates(coordinates: Coordinates) -> bool:
    lat = coordinates.latitude
    lng = coordinates.longitude

    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False

    return -90 <= lat <= 90 and -180 <= lng <= 180


def is_valid_cell_id(cell_id: Optional[str]) -> bool:
    return isinstance(cell_id, str) and CELL_ID_RE.match(cell_id) is not None


# ------------------------------------------------------------
# Encode / decode
# ------------------------------------------------------------
def coordinates_to_cell_id(coordinates: Coordinates) -> str:
    if not validate_coordinates(coordinates):
        raise InvalidCoordinates(
            f"Invalid coordinates: {coordinates.latitude}, {coordinates.longitude}"
        )

    return pgh.encode(
        coordinates.latitude,
        coordinates.longitude,
        precision=VENUE_GEOHASH_PRECISION,
    )


def _decode(cell_id: str) -> tuple[float, float, float, float]:
    if not is_valid_cell_id(cell_id):
        raise InvalidCellId(f"Invalid cell id: {cell_id!r}")

    lat, lng, lat_err, lng_err = pgh.decode_exactly(cell_id.lower())
    return lat, lng, lat_err, lng_err


def cell_id_to_coordinates(cell_id: str) -> Coordinates:
    """Center of the cell."""
    lat, lng, _, _ = _decode(cell_id)
    return Coordinates(latitude=lat, longitude=lng)


def cell_bounds(cell_id: str) -> CellBounds:
    lat, lng, lat_err, lng_err = _decode(cell_id)
    return CellBounds(
        north=lat + lat_err,
        south=lat - lat_err,
        east=lng + lng_err,
        west=lng - lng_err,
    )


# ------------------------------------------------------------
# Distance + neighbors
# ------------------------------------------------------------
def distance(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance in meters (haversine)."""
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    dphi = math.radians(b.latitude - a.latitude)
    dlambda = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    # rounding can push h just outside [0, 1] for antipodal points
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_METERS * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def neighbor_cell_ids(
    coordinates: Coordinates,
    radius_meters: float = DEFAULT_NEIGHBOR_RADIUS_METERS,
) -> List[str]:
    """
    Center cell id first, then the cells hit by stepping `radius_meters`
    in each of the 8 grid directions. Duplicates collapse, order is kept.
    """
    if not validate_coordinates(coordinates):
        return []

    center = coordinates_to_cell_id(coordinates)
    cell_ids = {center: None}

    lat_offset = radius_meters / METERS_PER_DEGREE_LAT
    cos_lat = math.cos(math.radians(coordinates.latitude))
    # at the poles every longitude step is degenerate
    lng_offset = radius_meters / (METERS_PER_DEGREE_LAT * cos_lat) if cos_lat > 0 else math.inf

    for lat_step in (-1, 0, 1):
        for lng_step in (-1, 0, 1):
            neighbor = Coordinates(
                latitude=coordinates.latitude + lat_step * lat_offset,
                longitude=coordinates.longitude + lng_step * lng_offset if lng_step else coordinates.longitude,
            )
            if validate_coordinates(neighbor):
                cell_ids.setdefault(coordinates_to_cell_id(neighbor), None)

    return list(cell_ids)


# ------------------------------------------------------------
# Display / manual entry
# ------------------------------------------------------------
def format_coordinates_for_display(coordinates: Coordinates, precision: int = 3) -> str:
    return f"{coordinates.latitude:.{precision}f}, {coordinates.longitude:.{precision}f}"


def parse_manual_location(text: str) -> Optional[ManualLocationEntry]:
    trimmed = text.strip()
    if not trimmed:
        return None

    match = _MANUAL_COORDS_RE.match(trimmed)
    if match:
        coords = Coordinates(latitude=float(match.group(1)), longitude=float(match.group(2)))
        if validate_coordinates(coords):
            return ManualLocationEntry(coordinates=coords)

    return ManualLocationEntry(venue_name=trimmed)


_LOCATION_ERROR_MESSAGES = {
    LocationError.permission_denied: "Location access was denied. Venue features are disabled, but patterns still work normally.",
    LocationError.position_unavailable: "Could not determine your location. Check your connection and GPS settings.",
    LocationError.timeout: "Location request timed out. You can try again or continue without venue features.",
    LocationError.not_supported: "Your device does not support location services.",
}


def location_error_message(error: LocationError) -> str:
    return _LOCATION_ERROR_MESSAGES.get(
        error,
        "Could not access your location. Patterns work without location.",
    )
