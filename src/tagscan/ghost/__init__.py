"""Ghost Mode arbitrage overlay and geolocation providers."""

from tagscan.ghost.geolocation import (
    GeolocationProvider,
    HttpGeolocationProvider,
    StaticLocationProvider,
    create_provider,
)
from tagscan.ghost.ghost_mode import GhostMode

__all__ = [
    "GhostMode",
    "GeolocationProvider",
    "HttpGeolocationProvider",
    "StaticLocationProvider",
    "create_provider",
]
