from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional

from loguru import logger

from concert_finder.core.config import SUPABASE_ANON_KEY, SUPABASE_URL
from concert_finder.realtime.base import PresenceTransport, PresenceTransportError
from concert_finder.realtime.memory import InMemoryPresenceHub
from concert_finder.realtime.supabase_transport import create_supabase_transport
from concert_finder.schemas.location import Coordinates
from concert_finder.schemas.pattern import Pattern
from concert_finder.schemas.presence import PresenceRecord
from concert_finder.schemas.venue import VenueResponse
from concert_finder.services.presence import VenuePresenceManager
from concert_finder.services.venue_client import VenueClient
from concert_finder.services.venues import generate_venue_id


@dataclass
class CheckInResult:
    venue_id: str
    presence_joined: bool
    venue: Optional[VenueResponse] = None
    collisions: List[PresenceRecord] = field(default_factory=list)
    presence_error: Optional[str] = None


async def create_presence_transport(
    url: Optional[str] = None,
    key: Optional[str] = None,
) -> PresenceTransport:
    """Supabase Realtime when configured, otherwise an in-process hub."""
    url = url or SUPABASE_URL
    key = key or SUPABASE_ANON_KEY
    if url and key:
        logger.info(f"[checkin] presence over supabase realtime url={url}")
        return await create_supabase_transport(url, key)

    logger.warning("[checkin] SUPABASE_URL/SUPABASE_ANON_KEY not set, presence is in-process only")
    return InMemoryPresenceHub()


async def create_presence_manager(
    session_id: Optional[str] = None,
    url: Optional[str] = None,
    key: Optional[str] = None,
) -> VenuePresenceManager:
    transport = await create_presence_transport(url, key)
    return VenuePresenceManager(transport, session_id=session_id)


async def check_in(
    manager: VenuePresenceManager,
    client: VenueClient,
    coordinates: Coordinates,
    pattern: Pattern,
    pattern_id: str,
    label: Optional[str] = None,
) -> CheckInResult:
    """
    Join the venue's presence channel and register the venue, side by side.

    Neither half waits on the other's success: a registry failure leaves
    `venue` as None, a transport failure leaves `presence_joined` False.
    Invalid coordinates raise ValueError before either starts.
    """
    venue_id = generate_venue_id(coordinates)

    registry = asyncio.create_task(client.register(coordinates, label, pattern))

    presence_error: Optional[str] = None
    try:
        await manager.join_venue(coordinates, pattern, pattern_id)
    except PresenceTransportError as e:
        logger.warning(f"[checkin] presence unavailable venue={venue_id}: {e}")
        presence_error = str(e)
    except BaseException:
        registry.cancel()
        raise

    venue = await registry
    joined = presence_error is None and manager.current_venue_id == venue_id

    return CheckInResult(
        venue_id=venue_id,
        presence_joined=joined,
        venue=venue,
        collisions=manager.detect_collisions(pattern) if joined else [],
        presence_error=presence_error,
    )
