"""
Geolocation providers for Ghost Mode.

A provider answers one single-shot, high-accuracy location query. Timeouts
and caching are applied by GhostMode, not here.
"""

import logging
import time
from typing import Protocol

import httpx

from tagscan.errors import GeolocationError
from tagscan.models import GhostLocation

logger = logging.getLogger(__name__)


def now_epoch_ms() -> int:
    return int(time.time() * 1000)


class GeolocationProvider(Protocol):
    async def get_location(self) -> GhostLocation:
        """Return one fix or raise GeolocationError."""
        ...


class StaticLocationProvider:
    """Fixed coordinates (kiosks, bench setups and tests)."""

    def __init__(self, lat: float | None, lng: float | None, accuracy_meters: float = 25.0):
        self.lat = lat
        self.lng = lng
        self.accuracy_meters = accuracy_meters

    async def get_location(self) -> GhostLocation:
        if self.lat is None or self.lng is None:
            raise GeolocationError("Location unavailable: no static coordinates configured")
        return GhostLocation(
            lat=self.lat,
            lng=self.lng,
            accuracy_meters=self.accuracy_meters,
            captured_at_epoch_ms=now_epoch_ms(),
        )


class HttpGeolocationProvider:
    """
    Queries a JSON endpoint returning the device position.

    Accepts `lat`/`latitude`, `lng`/`lon`/`longitude` and an optional
    `accuracy` in meters.
    """

    def __init__(self, url: str, client: httpx.AsyncClient | None = None):
        if not url:
            raise ValueError("Geolocation URL is required")
        self.url = url
        self._client = client

    async def _fetch(self, client: httpx.AsyncClient) -> dict:
        try:
            r = await client.get(self.url, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise GeolocationError(f"Location request failed: {e}") from e
        if r.status_code in (401, 403):
            raise GeolocationError("Location permission denied")
        if r.status_code != 200:
            raise GeolocationError(f"Location service returned HTTP {r.status_code}")
        try:
            return r.json()
        except ValueError as e:
            raise GeolocationError("Location service returned invalid JSON") from e

    async def get_location(self) -> GhostLocation:
        if self._client is not None:
            data = await self._fetch(self._client)
        else:
            async with httpx.AsyncClient() as client:
                data = await self._fetch(client)

        if not isinstance(data, dict):
            raise GeolocationError("Location response is not a JSON object")
        lat = data.get("lat", data.get("latitude"))
        lng = data.get("lng", data.get("lon", data.get("longitude")))
        if lat is None or lng is None:
            raise GeolocationError("Location response missing coordinates")

        try:
            location = GhostLocation(
                lat=float(lat),
                lng=float(lng),
                accuracy_meters=float(data.get("accuracy", 0.0) or 0.0),
                captured_at_epoch_ms=now_epoch_ms(),
            )
        except (TypeError, ValueError) as e:
            raise GeolocationError(f"Location response has invalid coordinates: {e}") from e
        logger.debug(f"Location fix: {location.lat:.5f},{location.lng:.5f}")
        return location


def create_provider(
    name: str,
    lat: float | None = None,
    lng: float | None = None,
    accuracy_meters: float = 25.0,
    url: str = "",
) -> GeolocationProvider:
    """Build the configured provider ('static' or 'http')."""
    if name == "static":
        return StaticLocationProvider(lat, lng, accuracy_meters)
    if name == "http":
        return HttpGeolocationProvider(url)
    raise ValueError(f"Unknown geolocation provider: {name}")
