import asyncio

import pytest
from realtime import RealtimeSubscribeStates

from concert_finder.realtime import supabase_transport
from concert_finder.realtime.base import PresenceTransportError
from concert_finder.realtime.memory import InMemoryPresenceHub
from concert_finder.realtime.supabase_transport import (
    SupabasePresenceTransport,
    create_supabase_transport,
)
from concert_finder.services.checkin import create_presence_manager, create_presence_transport
from concert_finder.services.presence import VenuePresenceManager

from conftest import TIMES_SQUARE


class FakeRealtimeChannel:
    def __init__(self, topic, params, reply, fail_track=False):
        self.topic = topic
        self.params = params
        self.reply = reply
        self.fail_track = fail_track
        self.handlers = {}
        self.tracked = None
        self.presences = {}

    def on_presence_sync(self, callback):
        self.handlers["sync"] = callback
        return self

    def on_presence_join(self, callback):
        self.handlers["join"] = callback
        return self

    def on_presence_leave(self, callback):
        self.handlers["leave"] = callback
        return self

    async def subscribe(self, callback):
        # the server reply lands after subscribe() has returned
        asyncio.get_running_loop().call_soon(callback, self.reply, None)
        return self

    async def track(self, payload):
        if self.fail_track:
            raise RuntimeError("socket closed")
        self.tracked = payload

    async def untrack(self):
        self.tracked = None

    def presence_state(self):
        return self.presences


class FakeRealtime:
    def __init__(self):
        self.is_connected = False
        self.connects = 0

    async def connect(self):
        self.connects += 1
        self.is_connected = True


class FakeSupabaseClient:
    def __init__(self, reply=RealtimeSubscribeStates.SUBSCRIBED, fail_track=False):
        self.realtime = FakeRealtime()
        self.reply = reply
        self.fail_track = fail_track
        self.channels = []
        self.removed = []

    def channel(self, topic, params):
        ch = FakeRealtimeChannel(topic, params, self.reply, self.fail_track)
        self.channels.append(ch)
        return ch

    async def remove_channel(self, channel):
        self.removed.append(channel)


def test_subscribe_resolves_on_subscribed():
    client = FakeSupabaseClient()

    async def scenario():
        channel = SupabasePresenceTransport(client).channel("venue:dr5ru7", "user_a")
        await channel.subscribe()

    asyncio.run(scenario())

    assert client.realtime.connects == 1
    [raw] = client.channels
    assert raw.topic == "venue:dr5ru7"
    assert raw.params == {"config": {"presence": {"key": "user_a"}}}


@pytest.mark.parametrize(
    "reply",
    [
        RealtimeSubscribeStates.CHANNEL_ERROR,
        RealtimeSubscribeStates.TIMED_OUT,
        RealtimeSubscribeStates.CLOSED,
    ],
)
def test_subscribe_failure_states_raise(reply):
    client = FakeSupabaseClient(reply=reply)

    async def scenario():
        await SupabasePresenceTransport(client).channel("venue:dr5ru7", "user_a").subscribe()

    with pytest.raises(PresenceTransportError, match="venue:dr5ru7"):
        asyncio.run(scenario())


def test_join_and_leave_forward_presence_lists():
    client = FakeSupabaseClient()
    channel = SupabasePresenceTransport(client).channel("venue:dr5ru7", "user_a")
    joined, left, syncs = [], [], []

    channel.on_join(joined.append).on_leave(left.append).on_sync(lambda: syncs.append(True))
    raw = client.channels[0]

    raw.handlers["join"]("user_b", [], [{"pattern_id": "neon-fox", "presence_ref": "1"}])
    raw.handlers["leave"]("user_c", [], [{"pattern_id": "green-wave", "presence_ref": "2"}])
    raw.handlers["join"]("user_d", [], None)
    raw.handlers["sync"]()

    assert joined == [[{"pattern_id": "neon-fox", "presence_ref": "1"}], []]
    assert left == [[{"pattern_id": "green-wave", "presence_ref": "2"}]]
    assert syncs == [True]


def test_track_errors_are_wrapped():
    client = FakeSupabaseClient(fail_track=True)

    async def scenario():
        channel = SupabasePresenceTransport(client).channel("venue:dr5ru7", "user_a")
        await channel.subscribe()
        await channel.track({"pattern_id": "neon-fox"})

    with pytest.raises(PresenceTransportError, match="socket closed"):
        asyncio.run(scenario())


def test_presence_state_is_copied():
    client = FakeSupabaseClient()
    channel = SupabasePresenceTransport(client).channel("venue:dr5ru7", "user_a")
    client.channels[0].presences = {"user_b": [{"pattern_id": "neon-fox"}]}

    state = channel.presence_state()
    state["user_b"][0]["pattern_id"] = "changed"

    assert client.channels[0].presences["user_b"][0]["pattern_id"] == "neon-fox"


def test_manager_over_supabase_channel(neon_pulse):
    client = FakeSupabaseClient()

    async def scenario():
        m = VenuePresenceManager(SupabasePresenceTransport(client), session_id="user_a")
        await m.join_venue(TIMES_SQUARE, neon_pulse, "neon-fox")
        tracked = client.channels[0].tracked
        await m.leave_venue()
        return tracked

    tracked = asyncio.run(scenario())

    assert tracked["session_id"] == "user_a"
    assert tracked["pattern_id"] == "neon-fox"
    assert client.removed == client.channels
    assert client.channels[0].tracked is None


def test_missing_config_raises():
    async def scenario():
        await create_supabase_transport()

    with pytest.raises(RuntimeError, match="SUPABASE_URL"):
        asyncio.run(scenario())


def test_presence_transport_falls_back_to_in_process_hub():
    transport = asyncio.run(create_presence_transport())
    assert isinstance(transport, InMemoryPresenceHub)


def test_presence_manager_uses_supabase_when_configured(monkeypatch):
    created = []

    async def fake_acreate_client(url, key):
        created.append((url, key))
        return FakeSupabaseClient()

    monkeypatch.setattr(supabase_transport, "acreate_client", fake_acreate_client)

    manager = asyncio.run(
        create_presence_manager(session_id="user_a", url="https://demo.supabase.co", key="anon")
    )

    assert created == [("https://demo.supabase.co", "anon")]
    assert isinstance(manager._transport, SupabasePresenceTransport)
    assert manager.session_id == "user_a"
