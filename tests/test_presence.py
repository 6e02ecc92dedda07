import asyncio
import re

import pytest

from concert_finder.realtime.base import PresenceTransportError
from concert_finder.realtime.memory import InMemoryPresenceChannel, InMemoryPresenceHub
from concert_finder.schemas.enums import ChannelState, PresenceEventType, VenueActivity
from concert_finder.schemas.location import Coordinates
from concert_finder.schemas.pattern import Pattern
from concert_finder.schemas.presence import PresenceRecord, RosterSnapshot
from concert_finder.services import geocell
from concert_finder.services.presence import (
    NoActiveVenueSession,
    VenuePresenceManager,
    filter_presence_for_privacy,
    format_presence_for_display,
    generate_session_id,
    presence_topic,
    process_session_id,
    venue_activity_level,
    venue_context_message,
)

from conftest import HERALD_SQUARE, TIMES_SQUARE, FailingHub

TOPIC = presence_topic(geocell.coordinates_to_cell_id(TIMES_SQUARE))


class GatedChannel(InMemoryPresenceChannel):
    async def subscribe(self):
        await self._hub.gate.wait()
        await super().subscribe()


class GatedHub(InMemoryPresenceHub):
    """Holds every subscribe until `gate` is set."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    def channel(self, topic, presence_key):
        return GatedChannel(self, topic, presence_key)




def _pattern(primary="FF008C", animation="pulse", speed=3):
    return Pattern(primary=primary, animation=animation, speed=speed)


def _record(session_id="user_1_abcdefghi", joined_at=0, location=(40.75, -73.98)):
    return PresenceRecord(
        pattern_id="neon-fox",
        pattern_data=_pattern(),
        session_id=session_id,
        approximate_location=location,
        joined_at=joined_at,
        last_seen=joined_at,
    )


# ------------------------------------------------------------
# Sessions
# ------------------------------------------------------------
def test_session_id_format():
    assert re.match(r"^user_\d+_[0-9a-z]{9}$", generate_session_id())


def test_process_session_id_is_stable(hub):
    assert process_session_id() == process_session_id()
    assert VenuePresenceManager(hub).session_id == process_session_id()


# ------------------------------------------------------------
# Join / leave
# ------------------------------------------------------------
def test_join_publishes_cell_center(hub, neon_pulse):
    async def scenario():
        m = VenuePresenceManager(hub, session_id="user_a")
        await m.join_venue(TIMES_SQUARE, neon_pulse, "neon-fox")
        return m

    m = asyncio.run(scenario())

    assert m.state == ChannelState.subscribed
    assert m.is_connected()
    assert m.current_venue_id == geocell.coordinates_to_cell_id(TIMES_SQUARE)

    state = hub.presence_state(TOPIC)
    assert list(state) == ["user_a"]
    center = geocell.cell_id_to_coordinates(m.current_venue_id)
    assert state["user_a"][0]["approximate_location"] == [center.latitude, center.longitude]
    assert state["user_a"][0]["pattern_id"] == "neon-fox"


def test_join_invalid_coordinates_raises_before_transport(hub, neon_pulse):
    async def scenario():
        m = VenuePresenceManager(hub, session_id="user_a")
        await m.join_venue(Coordinates(latitude=float("nan"), longitude=0), neon_pulse, "x")

    with pytest.raises(ValueError):
        asyncio.run(scenario())
    assert hub.subscriber_count(TOPIC) == 0


def test_leave_is_idempotent(hub, neon_pulse):
    async def scenario():
        m = VenuePresenceManager(hub, session_id="user_a")
        await m.leave_venue()
        await m.join_venue(TIMES_SQUARE, neon_pulse, "neon-fox")
        await m.leave_venue()
        await m.leave_venue()
        return m

    m = asyncio.run(scenario())

    assert m.state == ChannelState.disconnected
    assert m.current_venue_id is None
    assert m.current_presence is None
    assert m.get_venue_state() is None
    assert hub.presence_state(TOPIC) == {}
    assert hub.subscriber_count(TOPIC) == 0


def test_rejoin_leaves_previous_venue(hub, neon_pulse):
    async def scenario():
        m = VenuePresenceManager(hub, session_id="user_a")
        await m.join_venue(TIMES_SQUARE, neon_pulse, "neon-fox")
        await m.join_venue(HERALD_SQUARE, neon_pulse, "neon-fox")
        return m

    m = asyncio.run(scenario())
    new_topic = presence_topic(geocell.coordinates_to_cell_id(HERALD_SQUARE))

    assert hub.subscriber_count(TOPIC) == 0
    assert hub.presence_state(TOPIC) == {}
    assert hub.subscriber_count(new_topic) == 1
    assert m.current_venue_id == geocell.coordinates_to_cell_id(HERALD_SQUARE)


def test_subscribe_failure_raises_and_resets(neon_pulse):
    hub = FailingHub()

    async def scenario():
        m = VenuePresenceManager(hub, session_id="user_a")
        with pytest.raises(PresenceTransportError):
            await m.join_venue(TIMES_SQUARE, neon_pulse, "neon-fox")
        return m

    m = asyncio.run(scenario())
    assert m.state == ChannelState.disconnected
    assert m.current_venue_id is None


def test_leave_during_pending_join_discards_it(neon_pulse):
    hub = GatedHub()

    async def scenario():
        m = VenuePresenceManager(hub, session_id="user_a")
        join = asyncio.create_task(m.join_venue(TIMES_SQUARE, neon_pulse, "neon-fox"))
        await asyncio.sleep(0)
        assert m.state == ChannelState.connecting

        await m.leave_venue()
        hub.gate.set()
        await join
        return m

    m = asyncio.run(scenario())

    assert m.state == ChannelState.disconnected
    assert m.current_venue_id is None
    assert hub.subscriber_count(TOPIC) == 0
    assert hub.presence_state(TOPIC) == {}


def test_update_pattern_republishes_same_session(hub, neon_pulse):
    async def scenario():
        m = VenuePresenceManager(hub, session_id="user_a")
        await m.join_venue(TIMES_SQUARE, neon_pulse, "neon-fox")
        joined_at = m.current_presence.joined_at
        await m.update_pattern(_pattern(primary="00FF00", animation="wave"), "green-wave")
        return m, joined_at

    m, joined_at = asyncio.run(scenario())

    state = hub.presence_state(TOPIC)
    assert list(state) == ["user_a"]
    assert len(state["user_a"]) == 1
    assert state["user_a"][0]["pattern_id"] == "green-wave"
    assert m.current_presence.joined_at == joined_at
    assert m.current_presence.last_seen >= joined_at


def test_update_pattern_without_session_raises(hub, neon_pulse):
    async def scenario():
        m = VenuePresenceManager(hub, session_id="user_a")
        await m.update_pattern(neon_pulse, "neon-fox")

    with pytest.raises(NoActiveVenueSession, match="No active venue session"):
        asyncio.run(scenario())


# ------------------------------------------------------------
# Roster + collisions
# ------------------------------------------------------------
def test_roster_and_collisions(hub):
    mine = _pattern(speed=3)

    async def scenario():
        me = VenuePresenceManager(hub, session_id="user_me")
        await me.join_venue(TIMES_SQUARE, mine, "me")

        others = {
            "user_close": _pattern(speed=4),
            "user_far": _pattern(speed=5),
            "user_wave": _pattern(animation="wave", speed=3),
            "user_same": _pattern(speed=3),
        }
        for session_id, pattern in others.items():
            m = VenuePresenceManager(hub, session_id=session_id)
            await m.join_venue(TIMES_SQUARE, pattern, session_id)
        return me

    me = asyncio.run(scenario())

    state = me.get_venue_state()
    assert state.user_count == 5
    assert "user_me" in state.active_patterns

    others = me.get_other_patterns()
    assert [p.session_id for p in others] == ["user_close", "user_far", "user_wave", "user_same"]

    assert [p.session_id for p in me.detect_collisions(mine)] == ["user_close", "user_same"]


def test_speed_tolerance_is_tunable(hub):
    async def scenario():
        me = VenuePresenceManager(hub, session_id="user_me", speed_tolerance=0)
        await me.join_venue(TIMES_SQUARE, _pattern(speed=3), "me")
        other = VenuePresenceManager(hub, session_id="user_other")
        await other.join_venue(TIMES_SQUARE, _pattern(speed=4), "other")
        return me

    me = asyncio.run(scenario())
    assert me.detect_collisions(_pattern(speed=3)) == []


def test_no_collisions_when_disconnected(hub, neon_pulse):
    m = VenuePresenceManager(hub, session_id="user_a")
    assert m.get_other_patterns() == []
    assert m.detect_collisions(neon_pulse) == []


# ------------------------------------------------------------
# Events
# ------------------------------------------------------------
def test_events_follow_membership(hub, neon_pulse):
    events = []

    async def scenario():
        me = VenuePresenceManager(hub, session_id="user_me")
        await me.join_venue(TIMES_SQUARE, neon_pulse, "me")
        for event_type in PresenceEventType:
            me.on(event_type, events.append)

        other = VenuePresenceManager(hub, session_id="user_other")
        await other.join_venue(TIMES_SQUARE, neon_pulse, "other")
        await other.leave_venue()

    asyncio.run(scenario())

    assert [e.type for e in events] == [
        PresenceEventType.join,
        PresenceEventType.sync,
        PresenceEventType.leave,
        PresenceEventType.sync,
    ]
    assert [p.session_id for p in events[0].presence] == ["user_other"]
    assert [p.session_id for p in events[2].presence] == ["user_other"]
    assert len(events[1].presence) == 2
    assert len(events[3].presence) == 1
    assert all(e.venue_id == geocell.coordinates_to_cell_id(TIMES_SQUARE) for e in events)


def test_raising_listener_does_not_block_others(hub, neon_pulse):
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    async def scenario():
        me = VenuePresenceManager(hub, session_id="user_me")
        me.on(PresenceEventType.join, broken)
        me.on(PresenceEventType.join, seen.append)
        await me.join_venue(TIMES_SQUARE, neon_pulse, "me")

    asyncio.run(scenario())
    assert len(seen) == 1
    assert seen[0].presence[0].session_id == "user_me"


def test_off_removes_listener(hub, neon_pulse):
    seen = []

    async def scenario():
        me = VenuePresenceManager(hub, session_id="user_me")
        me.on(PresenceEventType.sync, seen.append)
        me.off(PresenceEventType.sync, seen.append)
        await me.join_venue(TIMES_SQUARE, neon_pulse, "me")

    asyncio.run(scenario())
    assert seen == []


def test_stale_channel_events_are_ignored(hub, neon_pulse):
    events = []

    async def scenario():
        me = VenuePresenceManager(hub, session_id="user_me")
        me.on(PresenceEventType.join, events.append)
        await me.join_venue(TIMES_SQUARE, neon_pulse, "me")
        await me.join_venue(HERALD_SQUARE, neon_pulse, "me")
        events.clear()

        other = VenuePresenceManager(hub, session_id="user_other")
        await other.join_venue(TIMES_SQUARE, neon_pulse, "other")

    asyncio.run(scenario())
    assert events == []


# ------------------------------------------------------------
# Display helpers
# ------------------------------------------------------------
def test_format_presence_for_display():
    record = _record(joined_at=0)

    assert format_presence_for_display(record, now_ms=20_000).duration == "Just joined"
    assert format_presence_for_display(record, now_ms=5 * 60_000).duration == "5m ago"

    display = format_presence_for_display(record, now_ms=0)
    assert display.pattern_name == "neon-fox"
    assert display.distance == "Nearby"
    assert format_presence_for_display(_record(location=None), now_ms=0).distance is None


@pytest.mark.parametrize(
    "count,level",
    [(0, VenueActivity.quiet), (2, VenueActivity.quiet), (3, VenueActivity.active),
     (8, VenueActivity.active), (9, VenueActivity.busy)],
)
def test_venue_activity_level(count, level):
    assert venue_activity_level(count) == level


def test_venue_context_message():
    def snapshot(n):
        return RosterSnapshot(venue_id="dr5ru7", active_patterns={}, user_count=n, last_updated=0)

    assert venue_context_message(snapshot(1)) == "You're the first person here with a pattern"
    assert venue_context_message(snapshot(2)) == "1 other person is here with a pattern"
    assert venue_context_message(snapshot(5)) == "4 other people are here with patterns"


def test_filter_presence_for_privacy():
    [filtered] = filter_presence_for_privacy([_record(session_id="user_123_abcdefghi")])

    assert filtered.session_id == "user_fghi"
    assert filtered.approximate_location is None
    assert filtered.pattern_id == "neon-fox"


class RejectingTrackChannel(InMemoryPresenceChannel):
    reject = False

    async def track(self, payload):
        if self.reject:
            raise PresenceTransportError("track rejected")
        await super().track(payload)


class RejectingTrackHub(InMemoryPresenceHub):
    def channel(self, topic, presence_key):
        self.last = RejectingTrackChannel(self, topic, presence_key)
        return self.last


def test_failed_update_keeps_published_record(neon_pulse):
    hub = RejectingTrackHub()

    async def scenario():
        m = VenuePresenceManager(hub, session_id="user_a")
        await m.join_venue(TIMES_SQUARE, neon_pulse, "neon-fox")
        hub.last.reject = True
        with pytest.raises(PresenceTransportError):
            await m.update_pattern(_pattern(primary="00FF00"), "green-fox")
        return m

    m = asyncio.run(scenario())

    assert m.current_presence.pattern_id == "neon-fox"
    assert hub.presence_state(TOPIC)["user_a"][0]["pattern_id"] == "neon-fox"
