import os

# must be set before concert_finder.core.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_FILE"] = ""
os.environ["LOG_LEVEL"] = "INFO"
os.environ["VENUE_API_BASE_URL"] = "http://testserver/v1"
os.environ["SUPABASE_URL"] = ""
os.environ["SUPABASE_ANON_KEY"] = ""

import pytest
from fastapi.testclient import TestClient

from concert_finder.core.db import Base, SessionLocal, engine
from concert_finder.main import app
from concert_finder.realtime.base import PresenceTransportError
from concert_finder.realtime.memory import InMemoryPresenceChannel, InMemoryPresenceHub
from concert_finder.schemas.location import Coordinates
from concert_finder.schemas.pattern import Pattern

TIMES_SQUARE = Coordinates(latitude=40.7589, longitude=-73.9851)
HERALD_SQUARE = Coordinates(latitude=40.7505, longitude=-73.9934)


@pytest.fixture(autouse=True)
def fresh_tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def hub():
    return InMemoryPresenceHub()


@pytest.fixture
def neon_pulse():
    return Pattern(primary="FF008C", animation="pulse", speed=3)


class FailingChannel(InMemoryPresenceChannel):
    async def subscribe(self):
        raise PresenceTransportError("channel error")


class FailingHub(InMemoryPresenceHub):
    def channel(self, topic, presence_key):
        return FailingChannel(self, topic, presence_key)
