"""
Venue presence.

A VenuePresenceManager owns at most one realtime channel, on topic
`venue:{cell_id}`, and tracks a single PresenceRecord for its session on
it. The roster is never stored here: every read rebuilds it from the
channel's presence state.

Managers are plain objects built around an injected transport; create one
per client session and hand it to whoever needs it.

Each join takes a new generation number and every leave bumps it too. A
join that finds its generation stale after subscribe/track returns tears
its channel down and drops the result, and events from a stale channel are
ignored, so a leave issued mid-join cannot leave a subscription behind.
"""
from __future__ import annotations

import math
import random
import string
import time
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from concert_finder.core.venue_config import (
    ACTIVE_VENUE_MAX_USERS,
    COLLISION_SPEED_TOLERANCE,
    PRESENCE_TOPIC_PREFIX,
    QUIET_VENUE_MAX_USERS,
)
from concert_finder.realtime.base import PresenceChannel, PresenceTransport, PresenceTransportError
from concert_finder.schemas.enums import ChannelState, PresenceEventType, VenueActivity
from concert_finder.schemas.location import Coordinates
from concert_finder.schemas.pattern import Pattern, patterns_collide
from concert_finder.schemas.presence import PresenceDisplay, PresenceEvent, PresenceRecord, RosterSnapshot
from concert_finder.services.geocell import cell_id_to_coordinates
from concert_finder.services.venues import generate_venue_id

PresenceHandler = Callable[[PresenceEvent], None]

_BASE36 = string.digits + string.ascii_lowercase

_PROCESS_SESSION_ID: Optional[str] = None


class NoActiveVenueSession(RuntimeError):
    def __init__(self, message: str = "No active venue session"):
        super().__init__(message)


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_session_id() -> str:
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"user_{_now_ms()}_{suffix}"


def process_session_id() -> str:
    """Anonymous session id, created once and reused for the life of the process."""
    global _PROCESS_SESSION_ID
    if _PROCESS_SESSION_ID is None:
        _PROCESS_SESSION_ID = generate_session_id()
    return _PROCESS_SESSION_ID


def presence_topic(venue_id: str) -> str:
    return f"{PRESENCE_TOPIC_PREFIX}{venue_id}"


def _parse_record(meta: Dict[str, Any]) -> Optional[PresenceRecord]:
    try:
        return PresenceRecord.model_validate(meta)
    except ValidationError as e:
        logger.warning(f"[presence] dropping malformed presence payload: {e.errors()}")
        return None


class VenuePresenceManager:
    def __init__(
        self,
        transport: PresenceTransport,
        session_id: Optional[str] = None,
        speed_tolerance: int = COLLISION_SPEED_TOLERANCE,
    ):
        self._transport = transport
        self._session_id = session_id or process_session_id()
        self.speed_tolerance = speed_tolerance

        self._channel: Optional[PresenceChannel] = None
        self._venue_id: Optional[str] = None
        self._current_presence: Optional[PresenceRecord] = None
        self._state = ChannelState.disconnected
        self._generation = 0

        self._handlers: Dict[PresenceEventType, List[PresenceHandler]] = {
            event_type: [] for event_type in PresenceEventType
        }

    # ------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------
    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def current_venue_id(self) -> Optional[str]:
        return self._venue_id

    @property
    def current_presence(self) -> Optional[PresenceRecord]:
        return self._current_presence

    def is_connected(self) -> bool:
        return self._channel is not None and self._venue_id is not None

    # ------------------------------------------------------------
    # Join / leave
    # ------------------------------------------------------------
    async def join_venue(self, coordinates: Coordinates, pattern: Pattern, pattern_id: str) -> None:
        """
        Join the presence channel for the cell containing `coordinates` and
        publish this session's pattern there.

        Raises ValueError for invalid coordinates (before any network call)
        and PresenceTransportError when subscribe or track fails.
        """
        venue_id = generate_venue_id(coordinates)

        if self._state != ChannelState.disconnected:
            await self.leave_venue()

        self._generation += 1
        generation = self._generation

        # publish the cell center, never the device position
        center = cell_id_to_coordinates(venue_id)
        now = _now_ms()
        record = PresenceRecord(
            pattern_id=pattern_id,
            pattern_data=pattern,
            session_id=self._session_id,
            approximate_location=(center.latitude, center.longitude),
            joined_at=now,
            last_seen=now,
        )

        channel = self._transport.channel(presence_topic(venue_id), self._session_id)

        # handlers go on before subscribe so the first sync is not missed
        channel.on_sync(lambda: self._handle_sync(generation))
        channel.on_join(lambda metas: self._handle_diff(PresenceEventType.join, metas, generation))
        channel.on_leave(lambda metas: self._handle_diff(PresenceEventType.leave, metas, generation))

        self._channel = channel
        self._venue_id = venue_id
        self._current_presence = record
        self._state = ChannelState.connecting
        logger.info(f"[presence] joining venue={venue_id} session={self._session_id} gen={generation}")

        try:
            await channel.subscribe()
        except Exception:
            if generation != self._generation:
                logger.debug(f"[presence] superseded join failed venue={venue_id} gen={generation}")
                return
            self._reset()
            await self._discard(channel)
            raise

        if generation != self._generation:
            logger.info(f"[presence] join superseded after subscribe venue={venue_id} gen={generation}")
            await self._discard(channel)
            return

        self._state = ChannelState.subscribed

        try:
            await channel.track(record.model_dump(mode="json"))
        except Exception:
            if generation == self._generation:
                self._reset()
                await self._discard(channel)
                raise
            return

        if generation != self._generation:
            logger.info(f"[presence] join superseded after track venue={venue_id} gen={generation}")
            await self._discard(channel)
            return

        logger.info(f"[presence] joined venue={venue_id} session={self._session_id}")

    async def leave_venue(self) -> None:
        """Untrack and unsubscribe. Safe to call when not joined."""
        self._generation += 1
        channel = self._channel
        venue_id = self._venue_id
        self._reset()

        if channel is None:
            return

        logger.info(f"[presence] leaving venue={venue_id} session={self._session_id}")
        try:
            await channel.untrack()
        finally:
            await channel.unsubscribe()

    async def update_pattern(self, pattern: Pattern, pattern_id: str) -> None:
        if (
            self._channel is None
            or self._current_presence is None
            or self._state != ChannelState.subscribed
        ):
            raise NoActiveVenueSession()

        channel = self._channel
        generation = self._generation
        record = self._current_presence.model_copy(
            update={
                "pattern_id": pattern_id,
                "pattern_data": pattern,
                "last_seen": _now_ms(),
            }
        )
        await channel.track(record.model_dump(mode="json"))

        # keep the local record in step with what the channel published
        if generation == self._generation:
            self._current_presence = record

    def _reset(self) -> None:
        self._channel = None
        self._venue_id = None
        self._current_presence = None
        self._state = ChannelState.disconnected

    async def _discard(self, channel: PresenceChannel) -> None:
        # cleanup of a channel nobody owns anymore; failures only get logged
        try:
            await channel.untrack()
            await channel.unsubscribe()
        except PresenceTransportError as e:
            logger.warning(f"[presence] failed to drop stale channel {channel.topic}: {e}")

    # ------------------------------------------------------------
    # Roster
    # ------------------------------------------------------------
    def get_venue_state(self) -> Optional[RosterSnapshot]:
        if self._channel is None or self._venue_id is None:
            return None

        active: Dict[str, PresenceRecord] = {}
        for metas in self._channel.presence_state().values():
            for meta in metas:
                record = _parse_record(meta)
                if record is not None:
                    active[record.session_id] = record

        return RosterSnapshot(
            venue_id=self._venue_id,
            active_patterns=active,
            user_count=len(active),
            last_updated=_now_ms(),
        )

    def get_other_patterns(self) -> List[PresenceRecord]:
        state = self.get_venue_state()
        if state is None:
            return []
        return [p for p in state.active_patterns.values() if p.session_id != self._session_id]

    def detect_collisions(self, pattern: Pattern) -> List[PresenceRecord]:
        return [
            p for p in self.get_other_patterns()
            if patterns_collide(pattern, p.pattern_data, self.speed_tolerance)
        ]

    # ------------------------------------------------------------
    # Events
    # ------------------------------------------------------------
    def on(self, event_type: PresenceEventType, handler: PresenceHandler) -> None:
        self._handlers[PresenceEventType(event_type)].append(handler)

    def off(self, event_type: PresenceEventType, handler: PresenceHandler) -> None:
        handlers = self._handlers[PresenceEventType(event_type)]
        if handler in handlers:
            handlers.remove(handler)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self._venue_id is not None

    def _handle_sync(self, generation: int) -> None:
        if not self._is_current(generation):
            return
        state = self.get_venue_state()
        if state is not None:
            self._emit(PresenceEventType.sync, list(state.active_patterns.values()))

    def _handle_diff(self, event_type: PresenceEventType, metas: List[Dict[str, Any]], generation: int) -> None:
        if not self._is_current(generation):
            return
        records = [r for r in (_parse_record(m) for m in metas) if r is not None]
        self._emit(event_type, records)

    def _emit(self, event_type: PresenceEventType, presences: List[PresenceRecord]) -> None:
        event = PresenceEvent(type=event_type, presence=presences, venue_id=self._venue_id)

        for handler in list(self._handlers[event_type]):
            try:
                handler(event)
            except Exception:
                logger.exception(f"[presence] {event_type.value} handler {handler!r} raised")


# ------------------------------------------------------------------
# Display helpers
# ------------------------------------------------------------------

def format_presence_for_display(presence: PresenceRecord, now_ms: Optional[int] = None) -> PresenceDisplay:
    now_ms = _now_ms() if now_ms is None else now_ms
    minutes = math.floor((now_ms - presence.joined_at) / 1000 / 60 + 0.5)

    return PresenceDisplay(
        pattern_name=presence.pattern_id,
        duration="Just joined" if minutes < 1 else f"{minutes}m ago",
        distance="Nearby" if presence.approximate_location else None,
    )


def venue_activity_level(user_count: int) -> VenueActivity:
    if user_count <= QUIET_VENUE_MAX_USERS:
        return VenueActivity.quiet
    if user_count <= ACTIVE_VENUE_MAX_USERS:
        return VenueActivity.active
    return VenueActivity.busy


def venue_context_message(state: RosterSnapshot) -> str:
    others = max(0, state.user_count - 1)

    if others == 0:
        return "You're the first person here with a pattern"
    if others == 1:
        return "1 other person is here with a pattern"
    return f"{others} other people are here with patterns"


def filter_presence_for_privacy(presences: List[PresenceRecord]) -> List[PresenceRecord]:
    return [
        p.model_copy(update={
            "approximate_location": None,
            "session_id": f"user_{p.session_id[-4:]}",
        })
        for p in presences
    ]
