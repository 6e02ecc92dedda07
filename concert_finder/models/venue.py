from sqlalchemy import Column, String, Integer, DateTime, JSON, Text, ForeignKey, Index, UniqueConstraint
from sqlalchemy.sql import func

from concert_finder.core.db import Base


class Venue(Base):
    __tablename__ = "venues"

    # geohash6 cell id, always lowercase
    id = Column(String(6), primary_key=True)
    label = Column(String, nullable=True)

    # WKT "POINT(lng lat)"
    center = Column(Text, nullable=True)

    use_count = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_active = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class VenueLabel(Base):
    __tablename__ = "venue_labels"

    id = Column(Integer, primary_key=True, autoincrement=True)
    venue_id = Column(String(6), ForeignKey("venues.id"), nullable=False, index=True)
    label = Column(String, nullable=False)
    count = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("venue_id", "label", name="uq_venue_labels_venue_label"),
    )


class PatternPing(Base):
    __tablename__ = "patterns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    venue_id = Column(String(6), ForeignKey("venues.id"), nullable=False)
    pattern_data = Column(JSON, nullable=True)
    last_ping = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_patterns_venue_last_ping", "venue_id", "last_ping"),
    )
