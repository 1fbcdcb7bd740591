"""
Ghost Mode - arbitrage economics overlay

While enabled, a draft GhostListing collects where an item was found (store,
location) and its shelf price. Once the valuation is known the listing yields
margin, margin percent and a velocity tier.

Location policy:
- One single-shot request, bounded by a timeout, never retried
- A fix younger than the cache age is reused without a new request
- The cached fix survives an off -> on toggle and is dropped by close()
  or refresh_location()
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable

from tagscan.errors import GeolocationError
from tagscan.ghost.geolocation import GeolocationProvider, create_provider, now_epoch_ms
from tagscan.models import (
    HANDLING_HOURS_CHOICES,
    GhostListing,
    GhostLocation,
    GhostOutcome,
    StoreInfo,
    StoreType,
)

logger = logging.getLogger(__name__)


class GhostMode:
    """Ghost Mode state and economics calculator."""

    def __init__(
        self,
        provider: GeolocationProvider,
        location_timeout_seconds: float = 10.0,
        location_max_age_seconds: float = 60.0,
        default_handling_hours: int = 48,
        clock: Callable[[], int] = now_epoch_ms,
    ):
        if default_handling_hours not in HANDLING_HOURS_CHOICES:
            raise ValueError(
                f"handling hours must be one of {HANDLING_HOURS_CHOICES}, got {default_handling_hours}"
            )
        self._provider = provider
        self.location_timeout_seconds = location_timeout_seconds
        self.location_max_age_ms = int(location_max_age_seconds * 1000)
        self.default_handling_hours = default_handling_hours
        self._clock = clock

        self._enabled = False
        self._listing: GhostListing | None = None
        self._cached_location: GhostLocation | None = None
        self._location_error: str | None = None
        self._is_locating = False
        self._enabled_at: float | None = None  # perf_counter seconds

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def listing(self) -> GhostListing | None:
        return self._listing

    @property
    def location(self) -> GhostLocation | None:
        return self._listing.location if self._listing else None

    @property
    def location_error(self) -> str | None:
        return self._location_error

    @property
    def is_locating(self) -> bool:
        return self._is_locating

    def _fresh_cached_location(self) -> GhostLocation | None:
        cached = self._cached_location
        if cached is None:
            return None
        if cached.age_ms(self._clock()) >= self.location_max_age_ms:
            return None
        return cached

    async def request_location(self) -> GhostLocation:
        """
        Single-shot location request (cache first).

        Raises:
            GeolocationError: On denial, failure or timeout. Ghost Mode stays
                enabled but not ready.
        """
        cached = self._fresh_cached_location()
        if cached is not None:
            logger.debug("Using cached location fix")
            self._apply_location(cached)
            return cached

        self._is_locating = True
        self._location_error = None
        try:
            location = await asyncio.wait_for(
                self._provider.get_location(), timeout=self.location_timeout_seconds
            )
        except asyncio.TimeoutError:
            self._location_error = (
                f"Location request timed out after {self.location_timeout_seconds:g}s"
            )
            logger.warning(self._location_error)
            raise GeolocationError(self._location_error)
        except GeolocationError as e:
            self._location_error = e.message or "Location unavailable"
            logger.warning(f"Location request failed: {self._location_error}")
            raise
        except Exception as e:
            self._location_error = f"Location unavailable: {e}"
            logger.error(f"Location provider error: {e}")
            raise GeolocationError(self._location_error) from e
        finally:
            self._is_locating = False

        self._cached_location = location
        self._apply_location(location)
        logger.info(
            f"Location captured: {location.lat:.5f},{location.lng:.5f} "
            f"(±{location.accuracy_meters:.0f}m)"
        )
        return location

    def _apply_location(self, location: GhostLocation) -> None:
        if self._listing is not None:
            self._listing.location = location
        self._location_error = None

    async def refresh_location(self) -> GhostLocation | None:
        """Force a new request, ignoring the cache. No-op while disabled."""
        if not self._enabled:
            return None
        self._cached_location = None
        return await self.request_location()

    async def toggle(self, enabled: bool) -> None:
        """
        Enable or disable Ghost Mode.

        Enabling creates a draft listing and requests a location unless a
        fresh fix is cached. A location failure is kept in location_error so
        the user can retry or disable. Disabling discards the draft.
        """
        if enabled == self._enabled:
            return

        if enabled:
            self._enabled = True
            self._enabled_at = time.perf_counter()
            self._listing = GhostListing(handling_hours=self.default_handling_hours)
            logger.info("Ghost Mode enabled")
            try:
                await self.request_location()
            except GeolocationError:
                pass  # surfaced through location_error
        else:
            self._enabled = False
            self._enabled_at = None
            self._listing = None
            self._location_error = None
            logger.info("Ghost Mode disabled, draft discarded")

    def _require_listing(self) -> GhostListing:
        if not self._enabled or self._listing is None:
            raise RuntimeError("Ghost Mode is not enabled")
        return self._listing

    def update_store(
        self,
        type: StoreType | str | None = None,
        name: str | None = None,
        aisle: str | None = None,
    ) -> StoreInfo:
        """Update the store details of the draft listing."""
        listing = self._require_listing()
        if type is not None:
            listing.store.type = StoreType(type)
        if name is not None:
            listing.store.name = name
        if aisle is not None:
            listing.store.aisle = aisle or None
        return listing.store

    def set_shelf_price(self, amount: float) -> None:
        listing = self._require_listing()
        if amount < 0:
            raise ValueError(f"shelf price must be non-negative, got {amount}")
        listing.shelf_price = float(amount)

    def set_handling_hours(self, hours: int) -> None:
        listing = self._require_listing()
        if hours not in HANDLING_HOURS_CHOICES:
            raise ValueError(f"handling hours must be one of {HANDLING_HOURS_CHOICES}, got {hours}")
        listing.handling_hours = hours

    def is_ready(self) -> bool:
        return self._enabled and self._listing is not None and self._listing.is_ready()

    def compute_outcome(self, estimated_value: float | None) -> GhostOutcome | None:
        if not self.is_ready():
            return None
        return self._listing.compute_outcome(estimated_value)

    def snapshot(self) -> GhostListing | None:
        """Immutable copy of the listing for a submission."""
        if self._listing is None:
            return None
        return self._listing.snapshot()

    def build_ghost_data(self, estimated_value: float) -> dict[str, Any] | None:
        """
        Listing record with timer and KPIs, or None if not ready.

        The timer starts now and expires after the handling time.
        """
        outcome = self.compute_outcome(estimated_value)
        if outcome is None:
            return None

        listing = self._listing
        created_at = datetime.now()
        timed = GhostListing(
            store=listing.store,
            location=listing.location,
            shelf_price=listing.shelf_price,
            handling_hours=listing.handling_hours,
            created_at=created_at,
        )
        toggle_to_submit_ms = (
            int((time.perf_counter() - self._enabled_at) * 1000) if self._enabled_at else 0
        )
        return {
            "is_ghost": True,
            "location": listing.location.to_dict(),
            "store": {
                "type": listing.store.type.value,
                "name": listing.store.name.strip(),
                "aisle": listing.store.aisle,
                "shelf_price": listing.shelf_price,
            },
            "timer": {
                "created_at": created_at.isoformat(),
                "expires_at": timed.expires_at.isoformat(),
                "handling_hours": listing.handling_hours,
            },
            "kpis": {
                "toggle_to_submit_ms": toggle_to_submit_ms,
                "estimated_margin": outcome.estimated_margin,
                "margin_percent": round(outcome.margin_percent, 2),
                "velocity_score": outcome.velocity.value,
            },
        }

    def close(self) -> None:
        """Discard all draft state and the cached location."""
        self._enabled = False
        self._enabled_at = None
        self._listing = None
        self._cached_location = None
        self._location_error = None
        logger.debug("Ghost Mode state closed")

    def get_status(self) -> dict:
        listing = self._listing
        return {
            "enabled": self._enabled,
            "ready": self.is_ready(),
            "locating": self._is_locating,
            "location": listing.location.to_dict() if listing and listing.location else None,
            "location_error": self._location_error,
            "store": (
                {
                    "type": listing.store.type.value,
                    "name": listing.store.name,
                    "aisle": listing.store.aisle,
                }
                if listing
                else None
            ),
            "shelf_price": listing.shelf_price if listing else None,
            "handling_hours": listing.handling_hours if listing else None,
        }


# Factory function
def _create_default_ghost_mode() -> GhostMode:
    """Create Ghost Mode from config."""
    from tagscan.config import ghost_config

    provider = create_provider(
        ghost_config.provider,
        lat=ghost_config.static_lat,
        lng=ghost_config.static_lng,
        accuracy_meters=ghost_config.static_accuracy_meters,
        url=ghost_config.geolocation_url,
    )
    return GhostMode(
        provider=provider,
        location_timeout_seconds=ghost_config.location_timeout_seconds,
        location_max_age_seconds=ghost_config.location_max_age_seconds,
        default_handling_hours=ghost_config.default_handling_hours,
    )
