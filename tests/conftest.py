"""
Pytest configuration and shared fixtures for TagScan tests.
"""

import asyncio
import sys
from io import BytesIO
from pathlib import Path

import httpx
import numpy as np
import pytest
from PIL import Image

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tagscan.analysis.client import AnalysisClient
from tagscan.analysis.request_assembler import RequestAssembler
from tagscan.camera.backends import MockCameraBackend
from tagscan.camera.recorder import VideoRecorder
from tagscan.camera.session import CaptureSessionManager
from tagscan.capture.item_buffer import ItemBuffer
from tagscan.errors import GeolocationError
from tagscan.ghost.geolocation import now_epoch_ms
from tagscan.ghost.ghost_mode import GhostMode
from tagscan.models import CapturedItem, GhostLocation, ItemKind
from tagscan.pipeline import ScanPipeline
from tagscan.processing.frame_extractor import FrameExtractor
from tagscan.storage.durable_storage import DurableStorage
from tenacity import wait_none

STORAGE_URL = "https://storage.test"
ANALYSIS_URL = "https://analysis.test"

ANALYSIS_RESPONSE = {
    "id": "scan-123",
    "itemName": "Vintage Brass Lamp",
    "estimatedValue": 42.5,
    "decision": "BUY",
    "confidenceScore": 0.82,
    "summary_reasoning": "Solid brass, period wiring",
    "valuation_factors": ["Material", "Condition"],
    "hydraConsensus": {
        "votes": [
            {"providerName": "alpha", "estimatedValue": 40, "decision": "BUY", "confidence": 0.8},
            {"providerName": "beta", "estimatedValue": 45, "decision": "HOLD", "confidence": 0.7},
        ]
    },
}


def encode_image(img: Image.Image, fmt: str = "JPEG", **kwargs) -> bytes:
    buf = BytesIO()
    img.save(buf, fmt, **kwargs)
    return buf.getvalue()


def make_jpeg(width: int = 64, height: int = 48, quality: int = 90, noise: bool = False) -> bytes:
    """JPEG test image: a smooth gradient, or random noise (hard to compress)."""
    if noise:
        rng = np.random.default_rng(42)
        arr = rng.integers(0, 256, (height, width, 3), dtype=np.uint8)
    else:
        x = np.linspace(0, 255, width, dtype=np.uint8)
        arr = np.stack([np.tile(x, (height, 1))] * 3, axis=-1)
    return encode_image(Image.fromarray(arr), "JPEG", quality=quality)


@pytest.fixture
def jpeg_factory():
    return make_jpeg


@pytest.fixture
def small_jpeg():
    return make_jpeg()


class FakeClock:
    """Controllable epoch-millisecond clock."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeLocationProvider:
    """Geolocation provider with scripted failures and delays."""

    def __init__(self, clock=now_epoch_ms, fail: str | None = None, delay: float = 0.0):
        self.clock = clock
        self.fail = fail
        self.delay = delay
        self.calls = 0

    async def get_location(self) -> GhostLocation:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise GeolocationError(self.fail)
        return GhostLocation(
            lat=40.7128, lng=-74.006, accuracy_meters=12.0, captured_at_epoch_ms=self.clock()
        )


class FakeDecoder:
    """Scripted VideoDecoder recording every seek."""

    def __init__(
        self,
        duration: float = 10.0,
        fail_at: int | None = None,
        open_error: Exception | None = None,
        size: tuple[int, int] = (64, 48),
    ):
        self.duration = duration
        self.fail_at = fail_at
        self.open_error = open_error
        self.size = size
        self.seeks: list[float] = []
        self.open_count = 0
        self.close_count = 0

    def open(self, blob: bytes) -> float:
        self.open_count += 1
        self.seeks = []
        if self.open_error is not None:
            raise self.open_error
        return self.duration

    def read_at(self, seconds: float):
        if self.fail_at is not None and len(self.seeks) == self.fail_at:
            self.seeks.append(seconds)
            return None
        self.seeks.append(seconds)
        w, h = self.size
        return np.full((h, w, 3), (len(self.seeks) * 40) % 256, dtype=np.uint8)

    def close(self) -> None:
        self.close_count += 1


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def mock_backend():
    return MockCameraBackend()


@pytest.fixture
def make_item(small_jpeg):
    """Factory for captured items with tiny valid media."""

    def _make(
        kind: ItemKind = ItemKind.PHOTO,
        name: str = "Photo",
        payload: bytes | None = None,
        **kwargs,
    ) -> CapturedItem:
        return CapturedItem(
            kind=kind,
            payload=payload if payload is not None else small_jpeg,
            thumbnail=small_jpeg,
            name=name,
            **kwargs,
        )

    return _make


class RecordingHandler:
    """httpx.MockTransport handler that records requests and replays responses."""

    def __init__(self, responder):
        self.responder = responder
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def storage_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"Key": request.url.path})


def analysis_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json=ANALYSIS_RESPONSE)


@pytest.fixture
def make_storage():
    def _make(responder=storage_ok, retry_attempts: int = 3):
        handler = RecordingHandler(responder)
        storage = DurableStorage(
            base_url=STORAGE_URL,
            api_key="anon-key",
            retry_attempts=retry_attempts,
            retry_wait=wait_none(),
            client=mock_client(handler),
        )
        return storage, handler

    return _make


@pytest.fixture
def make_analysis():
    def _make(responder=analysis_ok):
        handler = RecordingHandler(responder)
        return AnalysisClient(base_url=ANALYSIS_URL, client=mock_client(handler)), handler

    return _make


@pytest.fixture
def make_pipeline(make_storage, make_analysis):
    """
    Factory for a fully wired pipeline over the mock camera, a fake decoder
    and mocked HTTP services.

    Returns (pipeline, storage_handler, analysis_handler).
    """

    def _make(
        storage_responder=storage_ok,
        analysis_responder=analysis_ok,
        max_items: int = 15,
        backend: MockCameraBackend | None = None,
        storage_retry_attempts: int = 3,
        location_fail: str | None = None,
    ):
        session = CaptureSessionManager(
            backend or MockCameraBackend(), resolution=(64, 48), acquire_timeout=2.0
        )
        storage, storage_handler = make_storage(storage_responder, storage_retry_attempts)
        analysis, analysis_handler = make_analysis(analysis_responder)
        pipeline = ScanPipeline(
            session=session,
            buffer=ItemBuffer(max_items=max_items),
            extractor=FrameExtractor(decoder=FakeDecoder(duration=2.0)),
            recorder=VideoRecorder(session, fps=20, max_duration_seconds=5),
            ghost=GhostMode(FakeLocationProvider(fail=location_fail)),
            storage=storage,
            assembler=RequestAssembler(),
            analysis=analysis,
        )
        return pipeline, storage_handler, analysis_handler

    return _make
