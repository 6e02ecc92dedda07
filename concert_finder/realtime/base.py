"""
Presence transport interface.

A transport hands out channels keyed by topic. A channel is joined with
`subscribe()`, publishes one presence payload per key with `track()`, and
reports membership changes through sync/join/leave callbacks. Callbacks
are plain functions fired by the transport; nothing awaits them.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List

PresenceMeta = Dict[str, Any]
PresenceState = Dict[str, List[PresenceMeta]]

SyncCallback = Callable[[], None]
DiffCallback = Callable[[List[PresenceMeta]], None]


class PresenceTransportError(Exception):
    """Subscribe, track or untrack did not complete."""


class PresenceChannel(ABC):
    def __init__(self, topic: str, presence_key: str):
        self.topic = topic
        self.presence_key = presence_key

    @abstractmethod
    def on_sync(self, callback: SyncCallback) -> "PresenceChannel":
        ...

    @abstractmethod
    def on_join(self, callback: DiffCallback) -> "PresenceChannel":
        ...

    @abstractmethod
    def on_leave(self, callback: DiffCallback) -> "PresenceChannel":
        ...

    @abstractmethod
    async def subscribe(self) -> None:
        """Resolves once the channel is joined; raises PresenceTransportError otherwise."""

    @abstractmethod
    async def track(self, payload: PresenceMeta) -> None:
        ...

    @abstractmethod
    async def untrack(self) -> None:
        ...

    @abstractmethod
    async def unsubscribe(self) -> None:
        ...

    @abstractmethod
    def presence_state(self) -> PresenceState:
        """Current membership: presence key -> list of tracked payloads."""


class PresenceTransport(ABC):
    @abstractmethod
    def channel(self, topic: str, presence_key: str) -> PresenceChannel:
        ...
