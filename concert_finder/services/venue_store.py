from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from concert_finder.core.venue_config import ACTIVE_PATTERN_WINDOW_MINUTES, RECENT_LABEL_LIMIT
from concert_finder.models.venue import PatternPing, Venue, VenueLabel
from concert_finder.schemas.location import Coordinates
from concert_finder.schemas.pattern import Pattern
from concert_finder.services import geocell
from concert_finder.services.venues import create_venue_data, normalize_label


class VenueStoreError(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- READS ----------

def lookup_venue(db: Session, venue_id: str) -> Optional[Venue]:
    return db.query(Venue).filter(Venue.id == venue_id.lower()).first()


def recent_labels(db: Session, venue_id: str, limit: int = RECENT_LABEL_LIMIT) -> List[str]:
    rows = (
        db.query(VenueLabel.label)
        .filter(VenueLabel.venue_id == venue_id)
        .order_by(VenueLabel.count.desc(), VenueLabel.id.asc())
        .limit(limit)
        .all()
    )
    return [r.label for r in rows]


def active_pattern_count(db: Session, venue_id: str) -> int:
    cutoff = _utcnow() - timedelta(minutes=ACTIVE_PATTERN_WINDOW_MINUTES)
    count = (
        db.query(func.count(PatternPing.id))
        .filter(PatternPing.venue_id == venue_id, PatternPing.last_ping >= cutoff)
        .scalar()
    )
    return int(count or 0)


def venue_metadata(db: Session, venue_id: str, is_new: bool = False) -> Dict[str, Any]:
    return {
        "active_patterns": active_pattern_count(db, venue_id),
        "recent_labels": recent_labels(db, venue_id),
        "is_new": is_new,
    }


# ---------- WRITES ----------

def vote_label(db: Session, venue_id: str, label: str) -> VenueLabel:
    """One vote for (venue, label). Caller commits."""
    existing = (
        db.query(VenueLabel)
        .filter(VenueLabel.venue_id == venue_id, VenueLabel.label == label)
        .first()
    )
    if existing:
        existing.count = (existing.count or 0) + 1
        return existing

    row = VenueLabel(venue_id=venue_id, label=label, count=1)
    db.add(row)
    return row


def record_pattern_ping(db: Session, venue_id: str, pattern: Pattern) -> PatternPing:
    ping = PatternPing(
        venue_id=venue_id,
        pattern_data=pattern.model_dump(mode="json"),
        last_ping=_utcnow(),
    )
    db.add(ping)
    return ping


def _new_venue_row(venue_id: str, coordinates: Coordinates, label: Optional[str]) -> Venue:
    data = create_venue_data(coordinates, label)

    # the url cell is authoritative; coordinates only place the center
    if data["id"] != venue_id:
        center = geocell.cell_id_to_coordinates(venue_id)
        data["center"] = f"POINT({center.longitude} {center.latitude})"
    data["id"] = venue_id

    now = _utcnow()
    return Venue(**data, created_at=now, last_active=now)


def create_or_touch_venue(
    db: Session,
    venue_id: str,
    coordinates: Coordinates,
    label: Optional[str] = None,
    pattern_data: Optional[Pattern] = None,
) -> Tuple[Venue, bool]:
    """
    Lazily create the venue row for a cell, or bump it if it exists.

    Returns (venue, is_new). New rows start at use_count=1; existing rows
    get use_count+1 and a fresh last_active. A label, when given, adds one
    vote for that (venue, label) pair either way.
    """
    venue_id = venue_id.lower()
    label = normalize_label(label)

    existing = lookup_venue(db, venue_id)

    if existing:
        try:
            existing.use_count = (existing.use_count or 0) + 1
            existing.last_active = _utcnow()
            if label:
                vote_label(db, venue_id, label)
            if pattern_data:
                record_pattern_ping(db, venue_id, pattern_data)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Venue update error venue={venue_id}: {e}")
            raise VenueStoreError("update_failed", "Failed to update venue") from e

        db.refresh(existing)
        logger.debug(f"Venue touched venue={venue_id} use_count={existing.use_count}")
        return existing, False

    try:
        venue = _new_venue_row(venue_id, coordinates, label)
        db.add(venue)
        db.flush()
        if label:
            vote_label(db, venue_id, label)
        if pattern_data:
            record_pattern_ping(db, venue_id, pattern_data)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Venue creation error venue={venue_id}: {e}")
        raise VenueStoreError("creation_failed", "Failed to create venue") from e

    db.refresh(venue)
    logger.info(f"Venue created venue={venue_id}")
    return venue, True


def touch_venue(db: Session, venue_id: str, label: Optional[str] = None) -> Optional[Venue]:
    """Stamp last_active and optionally add a label vote. None if the venue is unknown."""
    venue_id = venue_id.lower()
    label = normalize_label(label)

    venue = lookup_venue(db, venue_id)
    if not venue:
        return None

    try:
        venue.last_active = _utcnow()
        if label:
            vote_label(db, venue_id, label)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Venue update error venue={venue_id}: {e}")
        raise VenueStoreError("update_failed", "Failed to update venue") from e

    db.refresh(venue)
    return venue
