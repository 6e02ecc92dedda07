from __future__ import annotations

import time
from typing import Any, Dict, Optional

import httpx
from loguru import logger
from pydantic import ValidationError

from concert_finder.core.config import VENUE_API_BASE_URL
from concert_finder.core.venue_config import VENUE_CACHE_TTL_SECONDS, VENUE_CLIENT_TIMEOUT_SECONDS
from concert_finder.schemas.location import Coordinates
from concert_finder.schemas.pattern import Pattern
from concert_finder.schemas.venue import VenueOut, VenueResponse
from concert_finder.services.venues import (
    build_venue_path,
    is_valid_venue_id,
    prepare_create_request,
    prepare_touch_request,
)


class VenueClient:
    """
    Client for the venue registry API.

    Bad input raises ValueError before any request goes out. Anything that
    goes wrong after that (network, 4xx/5xx, unexpected body) is logged and
    comes back as None: venue persistence never blocks presence.
    """

    def __init__(
        self,
        base_url: str = VENUE_API_BASE_URL,
        timeout: float = VENUE_CLIENT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cache_ttl_seconds: int = VENUE_CACHE_TTL_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._cache_ttl = cache_ttl_seconds
        self._cache: Dict[str, Dict[str, Any]] = {}

    # ------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------
    def _cache_get(self, venue_id: str) -> Optional[VenueResponse]:
        entry = self._cache.get(venue_id)
        if not entry:
            return None
        if time.time() - entry["ts"] >= self._cache_ttl:
            self._cache.pop(venue_id, None)
            return None
        return entry["venue"]

    def _cache_set(self, venue_id: str, venue: VenueResponse) -> None:
        now = time.time()
        expired = [k for k, entry in self._cache.items() if now - entry["ts"] >= self._cache_ttl]
        for k in expired:
            del self._cache[k]
        self._cache[venue_id] = {"ts": now, "venue": venue}

    def clear_cache(self) -> None:
        self._cache.clear()

    # ------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------
    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                resp = await client.request(method, path, json=json)
        except httpx.HTTPError as e:
            logger.warning(f"[venues] {method} {path} failed: {e!r}")
            return None

        try:
            data = resp.json()
        except ValueError:
            logger.warning(f"[venues] {method} {path} returned non-JSON (HTTP {resp.status_code})")
            return None

        if resp.status_code >= 400:
            error = data.get("error") if isinstance(data, dict) else None
            logger.warning(f"[venues] {method} {path} -> HTTP {resp.status_code} error={error}")
            return None

        return data

    # ------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------
    async def lookup(self, venue_id: str) -> Optional[VenueResponse]:
        if not is_valid_venue_id(venue_id):
            raise ValueError("Invalid venue ID format")
        venue_id = venue_id.lower()

        cached = self._cache_get(venue_id)
        if cached is not None:
            return cached

        data = await self._request("GET", build_venue_path(venue_id))
        venue = self._parse_response(data)
        if venue is not None:
            self._cache_set(venue_id, venue)
        return venue

    async def register(
        self,
        coordinates: Coordinates,
        label: Optional[str] = None,
        pattern_data: Optional[Pattern] = None,
    ) -> Optional[VenueResponse]:
        """Create the venue for these coordinates, or count another use of it."""
        request = prepare_create_request(coordinates, label, pattern_data)

        data = await self._request(request["method"], request["url"], request["json"])
        venue = self._parse_response(data)
        if venue is not None:
            self._cache_set(venue.venue.id, venue)
        return venue

    async def touch(self, venue_id: str, label: Optional[str] = None) -> Optional[VenueOut]:
        request = prepare_touch_request(venue_id, label)
        self._cache.pop(venue_id.lower(), None)

        data = await self._request(request["method"], request["url"], request["json"])
        if data is None:
            return None
        try:
            return VenueOut.model_validate(data["venue"])
        except (KeyError, TypeError, ValidationError) as e:
            logger.warning(f"[venues] unexpected PATCH body: {e}")
            return None

    @staticmethod
    def _parse_response(data: Optional[Dict[str, Any]]) -> Optional[VenueResponse]:
        if data is None:
            return None
        try:
            return VenueResponse.model_validate(data)
        except ValidationError as e:
            logger.warning(f"[venues] unexpected venue body: {e.errors()}")
            return None
