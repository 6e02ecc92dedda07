"""
In-process presence hub.

Every channel created from one hub shares membership per topic, so several
managers in one process can see each other. Used for local development
and tests; diff events mirror the realtime server (joins, then leaves,
then a sync).
"""
from __future__ import annotations

import itertools
from collections import defaultdict
from typing import Dict, List

from loguru import logger

from concert_finder.realtime.base import (
    DiffCallback,
    PresenceChannel,
    PresenceMeta,
    PresenceState,
    PresenceTransport,
    PresenceTransportError,
    SyncCallback,
)


class InMemoryPresenceChannel(PresenceChannel):
    def __init__(self, hub: "InMemoryPresenceHub", topic: str, presence_key: str):
        super().__init__(topic, presence_key)
        self._hub = hub
        self._sync_callbacks: List[SyncCallback] = []
        self._join_callbacks: List[DiffCallback] = []
        self._leave_callbacks: List[DiffCallback] = []
        self.subscribed = False

    def on_sync(self, callback: SyncCallback) -> "InMemoryPresenceChannel":
        self._sync_callbacks.append(callback)
        return self

    def on_join(self, callback: DiffCallback) -> "InMemoryPresenceChannel":
        self._join_callbacks.append(callback)
        return self

    def on_leave(self, callback: DiffCallback) -> "InMemoryPresenceChannel":
        self._leave_callbacks.append(callback)
        return self

    async def subscribe(self) -> None:
        if self.subscribed:
            return
        self._hub._attach(self)

    async def track(self, payload: PresenceMeta) -> None:
        if not self.subscribed:
            raise PresenceTransportError(f"track on unsubscribed channel {self.topic}")
        self._hub._track(self, payload)

    async def untrack(self) -> None:
        if self.subscribed:
            self._hub._untrack(self)

    async def unsubscribe(self) -> None:
        if self.subscribed:
            self._hub._detach(self)

    def presence_state(self) -> PresenceState:
        if not self.subscribed:
            return {}
        return self._hub.presence_state(self.topic)

    # -- delivery, called by the hub --
    def _deliver_sync(self) -> None:
        for cb in list(self._sync_callbacks):
            cb()

    def _deliver_join(self, metas: List[PresenceMeta]) -> None:
        for cb in list(self._join_callbacks):
            cb(list(metas))

    def _deliver_leave(self, metas: List[PresenceMeta]) -> None:
        for cb in list(self._leave_callbacks):
            cb(list(metas))


class InMemoryPresenceHub(PresenceTransport):
    def __init__(self):
        self._members: Dict[str, Dict[str, List[PresenceMeta]]] = defaultdict(dict)
        self._channels: Dict[str, List[InMemoryPresenceChannel]] = defaultdict(list)
        self._refs = itertools.count(1)

    def channel(self, topic: str, presence_key: str) -> InMemoryPresenceChannel:
        return InMemoryPresenceChannel(self, topic, presence_key)

    def presence_state(self, topic: str) -> PresenceState:
        return {key: [dict(m) for m in metas] for key, metas in self._members[topic].items()}

    def subscriber_count(self, topic: str) -> int:
        return len(self._channels[topic])

    # ------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------
    def _attach(self, channel: InMemoryPresenceChannel) -> None:
        channel.subscribed = True
        self._channels[channel.topic].append(channel)
        logger.debug(f"[hub] subscribe topic={channel.topic} key={channel.presence_key}")
        channel._deliver_sync()

    def _detach(self, channel: InMemoryPresenceChannel) -> None:
        # leaving the topic drops whatever the channel still tracks
        self._untrack(channel)
        channel.subscribed = False
        self._channels[channel.topic].remove(channel)
        logger.debug(f"[hub] unsubscribe topic={channel.topic} key={channel.presence_key}")

    def _track(self, channel: InMemoryPresenceChannel, payload: PresenceMeta) -> None:
        members = self._members[channel.topic]
        left = members.get(channel.presence_key, [])
        joined = [dict(payload, presence_ref=str(next(self._refs)))]
        members[channel.presence_key] = joined
        self._broadcast(channel.topic, joined=joined, left=left)

    def _untrack(self, channel: InMemoryPresenceChannel) -> None:
        left = self._members[channel.topic].pop(channel.presence_key, None)
        if left:
            self._broadcast(channel.topic, joined=[], left=left)

    def _broadcast(self, topic: str, joined: List[PresenceMeta], left: List[PresenceMeta]) -> None:
        for ch in list(self._channels[topic]):
            if joined:
                ch._deliver_join(joined)
            if left:
                ch._deliver_leave(left)
            ch._deliver_sync()
