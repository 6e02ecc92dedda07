"""
Supabase Realtime presence transport.

Wraps the async supabase client's realtime channels. `subscribe()` turns the
status callback into an awaitable: it returns on SUBSCRIBED and raises
PresenceTransportError on CHANNEL_ERROR, TIMED_OUT or CLOSED.
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

from loguru import logger
from realtime import RealtimeSubscribeStates
from supabase import AsyncClient, acreate_client

from concert_finder.core.config import SUPABASE_ANON_KEY, SUPABASE_URL
from concert_finder.realtime.base import (
    DiffCallback,
    PresenceChannel,
    PresenceMeta,
    PresenceState,
    PresenceTransport,
    PresenceTransportError,
    SyncCallback,
)


class SupabasePresenceChannel(PresenceChannel):
    def __init__(self, client: AsyncClient, topic: str, presence_key: str):
        super().__init__(topic, presence_key)
        self._client = client
        self._channel = client.channel(
            topic,
            {"config": {"presence": {"key": presence_key}}},
        )

    def on_sync(self, callback: SyncCallback) -> "SupabasePresenceChannel":
        self._channel.on_presence_sync(callback)
        return self

    def on_join(self, callback: DiffCallback) -> "SupabasePresenceChannel":
        self._channel.on_presence_join(
            lambda key, current, new: callback(list(new or []))
        )
        return self

    def on_leave(self, callback: DiffCallback) -> "SupabasePresenceChannel":
        self._channel.on_presence_leave(
            lambda key, current, left: callback(list(left or []))
        )
        return self

    async def subscribe(self) -> None:
        realtime = self._client.realtime
        if not realtime.is_connected:
            try:
                await realtime.connect()
            except Exception as e:
                raise PresenceTransportError(f"Realtime connect failed: {e}") from e

        loop = asyncio.get_running_loop()
        joined: asyncio.Future = loop.create_future()

        def _on_status(status: RealtimeSubscribeStates, err: Optional[Exception]) -> None:
            logger.debug(f"[realtime] topic={self.topic} status={status}")
            if joined.done():
                return
            if status == RealtimeSubscribeStates.SUBSCRIBED:
                joined.set_result(None)
            else:
                joined.set_exception(
                    PresenceTransportError(f"Subscribe to {self.topic} failed: {status} {err or ''}".strip())
                )

        try:
            await self._channel.subscribe(_on_status)
        except Exception as e:
            raise PresenceTransportError(f"Subscribe to {self.topic} failed: {e}") from e

        await joined

    async def track(self, payload: PresenceMeta) -> None:
        try:
            await self._channel.track(payload)
        except Exception as e:
            raise PresenceTransportError(f"Track on {self.topic} failed: {e}") from e

    async def untrack(self) -> None:
        try:
            await self._channel.untrack()
        except Exception as e:
            raise PresenceTransportError(f"Untrack on {self.topic} failed: {e}") from e

    async def unsubscribe(self) -> None:
        try:
            await self._client.remove_channel(self._channel)
        except Exception as e:
            raise PresenceTransportError(f"Unsubscribe from {self.topic} failed: {e}") from e

    def presence_state(self) -> PresenceState:
        state: Any = self._channel.presence_state() or {}
        return {key: [dict(meta) for meta in metas] for key, metas in state.items()}


class SupabasePresenceTransport(PresenceTransport):
    def __init__(self, client: AsyncClient):
        self._client = client

    def channel(self, topic: str, presence_key: str) -> SupabasePresenceChannel:
        return SupabasePresenceChannel(self._client, topic, presence_key)


async def create_supabase_transport(
    url: Optional[str] = None,
    key: Optional[str] = None,
) -> SupabasePresenceTransport:
    url = url or SUPABASE_URL
    key = key or SUPABASE_ANON_KEY
    if not url or not key:
        raise RuntimeError("Missing SUPABASE_URL or SUPABASE_ANON_KEY")

    client = await acreate_client(url, key)
    return SupabasePresenceTransport(client)
