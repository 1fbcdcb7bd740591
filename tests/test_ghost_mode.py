"""
Tests for Ghost Mode economics, location policy and providers.
"""

import asyncio

import httpx
import pytest

from conftest import FakeClock, FakeLocationProvider, mock_client
from tagscan.errors import GeolocationError
from tagscan.ghost.geolocation import (
    HttpGeolocationProvider,
    StaticLocationProvider,
    create_provider,
)
from tagscan.ghost.ghost_mode import GhostMode
from tagscan.models import GhostListing, GhostLocation, StoreInfo, StoreType, Velocity


def _ghost(clock=None, **provider_kwargs):
    clock = clock or FakeClock()
    provider = FakeLocationProvider(clock=clock, **provider_kwargs)
    return GhostMode(provider, location_timeout_seconds=0.2, clock=clock), provider


def _ready_listing(shelf_price: float = 10.0) -> GhostListing:
    return GhostListing(
        store=StoreInfo(type=StoreType.THRIFT, name="Goodwill"),
        location=GhostLocation(1.0, 2.0, 5.0, 0),
        shelf_price=shelf_price,
    )


class TestGhostListing:
    """Tests for readiness and margin math."""

    @pytest.mark.parametrize(
        "has_location,has_name,has_price",
        [
            (False, False, False),
            (False, False, True),
            (False, True, False),
            (False, True, True),
            (True, False, False),
            (True, False, True),
            (True, True, False),
        ],
    )
    def test_not_ready_when_incomplete(self, has_location, has_name, has_price):
        listing = GhostListing(
            store=StoreInfo(name="Goodwill" if has_name else ""),
            location=GhostLocation(1.0, 2.0, 5.0, 0) if has_location else None,
            shelf_price=5.0 if has_price else 0.0,
        )
        assert not listing.is_ready()

    def test_ready_when_complete(self):
        assert _ready_listing().is_ready()

    def test_blank_store_name_is_not_ready(self):
        listing = _ready_listing()
        listing.store.name = "   "
        assert not listing.is_ready()

    def test_five_dollar_find_worth_twenty(self):
        outcome = _ready_listing(5).compute_outcome(20)
        assert outcome.estimated_margin == 15
        assert outcome.margin_percent == 300
        assert outcome.velocity == Velocity.HIGH

    def test_outcome_high_velocity(self):
        outcome = _ready_listing(10).compute_outcome(25)
        assert outcome.estimated_margin == 15
        assert outcome.margin_percent == 150
        assert outcome.velocity == Velocity.HIGH

    @pytest.mark.parametrize(
        "value,velocity",
        [(20.0, Velocity.MEDIUM), (18.0, Velocity.MEDIUM), (15.0, Velocity.LOW), (8.0, Velocity.LOW)],
    )
    def test_velocity_tiers(self, value, velocity):
        # 100% margin is medium, 50% is low
        assert _ready_listing(10).compute_outcome(value).velocity == velocity

    def test_negative_margin(self):
        outcome = _ready_listing(10).compute_outcome(4)
        assert outcome.estimated_margin == -6
        assert outcome.velocity == Velocity.LOW

    def test_unknown_value_has_no_outcome(self):
        assert _ready_listing().compute_outcome(None) is None

    def test_rejects_invalid_handling_hours(self):
        with pytest.raises(ValueError):
            GhostListing(handling_hours=36)

    def test_expires_after_handling_hours(self):
        listing = GhostListing(handling_hours=24)
        assert (listing.expires_at - listing.created_at).total_seconds() == 24 * 3600

    def test_request_dict(self):
        listing = _ready_listing()
        listing.store.aisle = "7"
        data = listing.to_request_dict()
        assert data["storeName"] == "Goodwill"
        assert data["storeType"] == "thrift"
        assert data["storeAisle"] == "7"
        assert data["handlingHours"] == 48
        assert data["location"]["lat"] == 1.0


class TestGhostMode:
    """Tests for the Ghost Mode state machine."""

    def test_toggle_on_creates_draft_with_location(self):
        ghost, provider = _ghost()
        asyncio.run(ghost.toggle(True))

        assert ghost.enabled
        assert ghost.listing is not None
        assert ghost.location is not None
        assert ghost.listing.handling_hours == 48
        assert provider.calls == 1
        assert not ghost.is_ready()

    def test_ready_after_store_and_price(self):
        ghost, _ = _ghost()
        asyncio.run(ghost.toggle(True))
        ghost.update_store(type="antique", name="Corner Antiques", aisle="3")
        ghost.set_shelf_price(12.5)

        assert ghost.is_ready()
        assert ghost.listing.store.type == StoreType.ANTIQUE

    def test_denied_location_keeps_mode_enabled(self):
        ghost, _ = _ghost(fail="Location permission denied")
        asyncio.run(ghost.toggle(True))
        ghost.update_store(name="Goodwill")
        ghost.set_shelf_price(5)

        assert ghost.enabled
        assert ghost.location_error == "Location permission denied"
        assert not ghost.is_ready()

    @pytest.mark.parametrize(
        "body", [{"lat": "unknown", "lng": "unknown"}, [1, 2]], ids=["bad-coordinates", "array"]
    )
    def test_malformed_location_response_keeps_mode_enabled(self, body):
        provider = HttpGeolocationProvider(
            "https://geo.test/fix", client=mock_client(lambda r: httpx.Response(200, json=body))
        )
        ghost = GhostMode(provider)
        asyncio.run(ghost.toggle(True))

        assert ghost.enabled
        assert ghost.location is None
        assert ghost.location_error
        assert not ghost.is_ready()

    def test_unexpected_provider_error_becomes_location_error(self):
        class BrokenProvider:
            async def get_location(self):
                raise RuntimeError("sensor offline")

        ghost = GhostMode(BrokenProvider())

        async def scenario():
            await ghost.toggle(True)
            assert "sensor offline" in ghost.location_error
            assert not ghost.is_locating
            with pytest.raises(GeolocationError):
                await ghost.refresh_location()

        asyncio.run(scenario())

    def test_location_timeout(self):
        ghost, _ = _ghost(delay=1.0)

        async def scenario():
            await ghost.toggle(True)
            assert "timed out" in ghost.location_error
            assert not ghost.is_locating
            with pytest.raises(GeolocationError):
                await ghost.refresh_location()

        asyncio.run(scenario())

    def test_fresh_cache_skips_request(self):
        clock = FakeClock()
        ghost, provider = _ghost(clock)

        async def scenario():
            await ghost.request_location()
            clock.advance(30_000)
            await ghost.request_location()

        asyncio.run(scenario())
        assert provider.calls == 1

    def test_stale_cache_requests_again(self):
        clock = FakeClock()
        ghost, provider = _ghost(clock)

        async def scenario():
            await ghost.request_location()
            clock.advance(60_000)
            await ghost.request_location()

        asyncio.run(scenario())
        assert provider.calls == 2

    def test_cache_survives_off_on_toggle(self):
        ghost, provider = _ghost()

        async def scenario():
            await ghost.toggle(True)
            await ghost.toggle(False)
            await ghost.toggle(True)

        asyncio.run(scenario())
        assert provider.calls == 1
        assert ghost.location is not None

    def test_refresh_ignores_cache(self):
        ghost, provider = _ghost()

        async def scenario():
            await ghost.toggle(True)
            await ghost.refresh_location()

        asyncio.run(scenario())
        assert provider.calls == 2

    def test_refresh_while_disabled_is_noop(self):
        ghost, provider = _ghost()
        assert asyncio.run(ghost.refresh_location()) is None
        assert provider.calls == 0

    def test_toggle_off_discards_draft(self):
        ghost, _ = _ghost()
        asyncio.run(ghost.toggle(True))
        ghost.update_store(name="Goodwill")
        asyncio.run(ghost.toggle(False))

        assert not ghost.enabled
        assert ghost.listing is None
        with pytest.raises(RuntimeError):
            ghost.set_shelf_price(3)

    def test_close_drops_cache(self):
        ghost, provider = _ghost()

        async def scenario():
            await ghost.toggle(True)
            ghost.close()
            await ghost.toggle(True)

        asyncio.run(scenario())
        assert provider.calls == 2

    def test_rejects_bad_values(self):
        ghost, _ = _ghost()
        asyncio.run(ghost.toggle(True))

        with pytest.raises(ValueError):
            ghost.set_shelf_price(-1)
        with pytest.raises(ValueError):
            ghost.set_handling_hours(36)
        with pytest.raises(ValueError):
            ghost.update_store(type="supermarket")

    def test_rejects_bad_default_handling_hours(self):
        with pytest.raises(ValueError):
            GhostMode(FakeLocationProvider(), default_handling_hours=36)

    def test_snapshot_is_independent(self):
        ghost, _ = _ghost()
        asyncio.run(ghost.toggle(True))
        ghost.update_store(name="Goodwill")
        snapshot = ghost.snapshot()
        ghost.update_store(name="Salvation Army")

        assert snapshot.store.name == "Goodwill"

    def test_build_ghost_data(self):
        ghost, _ = _ghost()
        asyncio.run(ghost.toggle(True))
        ghost.update_store(name="Goodwill", aisle="4")
        ghost.set_shelf_price(10)
        ghost.set_handling_hours(72)

        data = ghost.build_ghost_data(30)
        assert data["is_ghost"] is True
        assert data["store"]["name"] == "Goodwill"
        assert data["timer"]["handling_hours"] == 72
        assert data["kpis"]["estimated_margin"] == 20
        assert data["kpis"]["margin_percent"] == 200
        assert data["kpis"]["velocity_score"] == "high"
        assert data["kpis"]["toggle_to_submit_ms"] >= 0

    def test_build_ghost_data_when_not_ready(self):
        ghost, _ = _ghost()
        asyncio.run(ghost.toggle(True))
        assert ghost.build_ghost_data(30) is None


class TestProviders:
    """Tests for geolocation providers."""

    def test_static_provider(self):
        location = asyncio.run(StaticLocationProvider(51.5, -0.12, 30).get_location())
        assert (location.lat, location.lng, location.accuracy_meters) == (51.5, -0.12, 30)

    def test_static_provider_without_coordinates(self):
        with pytest.raises(GeolocationError):
            asyncio.run(StaticLocationProvider(None, None).get_location())

    def test_http_provider_parses_long_names(self):
        def handler(request):
            return httpx.Response(200, json={"latitude": 48.85, "longitude": 2.35, "accuracy": 8})

        async def scenario():
            provider = HttpGeolocationProvider("https://geo.test/fix", client=mock_client(handler))
            return await provider.get_location()

        location = asyncio.run(scenario())
        assert (location.lat, location.lng, location.accuracy_meters) == (48.85, 2.35, 8.0)

    def test_http_provider_permission_denied(self):
        async def scenario():
            provider = HttpGeolocationProvider(
                "https://geo.test/fix", client=mock_client(lambda r: httpx.Response(403))
            )
            await provider.get_location()

        with pytest.raises(GeolocationError, match="denied"):
            asyncio.run(scenario())

    def test_http_provider_missing_coordinates(self):
        async def scenario():
            provider = HttpGeolocationProvider(
                "https://geo.test/fix",
                client=mock_client(lambda r: httpx.Response(200, json={"city": "Paris"})),
            )
            await provider.get_location()

        with pytest.raises(GeolocationError):
            asyncio.run(scenario())

    @pytest.mark.parametrize(
        "body", [{"lat": "unknown", "lng": "unknown"}, [1, 2]], ids=["bad-coordinates", "array"]
    )
    def test_http_provider_malformed_body(self, body):
        async def scenario():
            provider = HttpGeolocationProvider(
                "https://geo.test/fix",
                client=mock_client(lambda r: httpx.Response(200, json=body)),
            )
            await provider.get_location()

        with pytest.raises(GeolocationError):
            asyncio.run(scenario())

    def test_create_provider(self):
        assert isinstance(create_provider("static", lat=1, lng=2), StaticLocationProvider)
        assert isinstance(create_provider("http", url="https://geo.test"), HttpGeolocationProvider)
        with pytest.raises(ValueError):
            create_provider("gps")
