from loguru import logger
from concert_finder.core.db import engine, Base

# Import all models so SQLAlchemy registers them
from concert_finder.models.venue import Venue, VenueLabel, PatternPing

def init_db():
    logger.info("Creating database tables")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")
