from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, Response
from loguru import logger
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from concert_finder.api.errors import VenueAPIError
from concert_finder.core.db import get_db
from concert_finder.schemas.pattern import Pattern
from concert_finder.schemas.venue import (
    VenueCreateRequest,
    VenueOut,
    VenueResponse,
    VenueTouchRequest,
    VenueTouchResponse,
)
from concert_finder.services.geocell import validate_coordinates
from concert_finder.services.venue_store import (
    VenueStoreError,
    create_or_touch_venue,
    lookup_venue,
    touch_venue,
    venue_metadata,
)
from concert_finder.services.venues import is_valid_venue_id

router = APIRouter()


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _require_venue_id(venue_id: str) -> str:
    if not is_valid_venue_id(venue_id):
        raise VenueAPIError(400, "invalid_venue_id", "Invalid venue ID format")
    return venue_id.lower()


def _body_error(e: ValidationError) -> VenueAPIError:
    errors = e.errors()

    # unparseable or not an object
    if any(err["type"] == "json_invalid" or not err["loc"] for err in errors):
        return VenueAPIError(400, "invalid_json", "Invalid JSON in request body")

    if any(err["loc"][0] == "coordinates" for err in errors):
        return VenueAPIError(400, "invalid_coordinates", "Invalid or missing coordinates")

    field = errors[0]["loc"][0]
    return VenueAPIError(400, "invalid_json", f"Invalid value for {field}")


async def _read_create_body(request: Request) -> VenueCreateRequest:
    raw = await request.body()
    try:
        body = VenueCreateRequest.model_validate_json(raw)
    except ValidationError as e:
        raise _body_error(e)

    if not validate_coordinates(body.coordinates):
        raise VenueAPIError(400, "invalid_coordinates", "Invalid or missing coordinates")
    return body


async def _read_touch_body(request: Request) -> VenueTouchRequest:
    raw = await request.body()
    if not raw.strip():
        return VenueTouchRequest()
    try:
        return VenueTouchRequest.model_validate_json(raw)
    except ValidationError as e:
        raise _body_error(e)


def _read_pattern(raw: Any) -> Optional[Pattern]:
    if raw is None:
        return None
    try:
        return Pattern.model_validate(raw)
    except ValidationError as e:
        # pattern data is advisory, a bad one never blocks the venue
        logger.warning(f"Ignoring invalid pattern_data: {e.errors()}")
        return None


# ------------------------------------------------------------------
# LOOKUP
# ------------------------------------------------------------------

@router.get("/{venue_id}", response_model=VenueResponse)
def get_venue(venue_id: str, db: Session = Depends(get_db)):
    venue_id = _require_venue_id(venue_id)

    try:
        venue = lookup_venue(db, venue_id)
    except SQLAlchemyError as e:
        logger.error(f"Venue lookup error venue={venue_id}: {e}")
        raise VenueAPIError(500, "database_error", "Failed to lookup venue")

    if not venue:
        raise VenueAPIError(404, "venue_not_found", "Venue not found")

    try:
        metadata = venue_metadata(db, venue_id, is_new=False)
    except SQLAlchemyError as e:
        logger.error(f"Venue GET error venue={venue_id}: {e}")
        raise VenueAPIError(500, "internal_error", "Internal server error")

    return {"venue": VenueOut.model_validate(venue), "metadata": metadata}


# ------------------------------------------------------------------
# CREATE OR TOUCH
# ------------------------------------------------------------------

@router.post("/{venue_id}", response_model=VenueResponse)
async def post_venue(
    venue_id: str,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    venue_id = _require_venue_id(venue_id)
    body = await _read_create_body(request)
    pattern = _read_pattern(body.pattern_data)

    try:
        venue, is_new = create_or_touch_venue(db, venue_id, body.coordinates, body.label, pattern)
        metadata = venue_metadata(db, venue_id, is_new=is_new)
    except VenueStoreError as e:
        raise VenueAPIError(500, e.code, e.message)
    except SQLAlchemyError as e:
        logger.error(f"Venue POST error venue={venue_id}: {e}")
        raise VenueAPIError(500, "internal_error", "Internal server error")

    response.status_code = 201 if is_new else 200
    return {"venue": VenueOut.model_validate(venue), "metadata": metadata}


# ------------------------------------------------------------------
# TOUCH
# ------------------------------------------------------------------

@router.patch("/{venue_id}", response_model=VenueTouchResponse)
async def patch_venue(
    venue_id: str,
    request: Request,
    db: Session = Depends(get_db),
):
    venue_id = _require_venue_id(venue_id)
    body = await _read_touch_body(request)

    try:
        venue = touch_venue(db, venue_id, body.label)
    except VenueStoreError as e:
        raise VenueAPIError(500, e.code, e.message)
    except SQLAlchemyError as e:
        logger.error(f"Venue PATCH error venue={venue_id}: {e}")
        raise VenueAPIError(500, "internal_error", "Internal server error")

    if not venue:
        raise VenueAPIError(404, "venue_not_found", "Venue not found")

    return {"venue": VenueOut.model_validate(venue)}
