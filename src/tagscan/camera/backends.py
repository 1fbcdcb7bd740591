"""
Camera backends - device enumeration and raw stream acquisition

OpenCVCameraBackend drives real V4L2/AVFoundation/DirectShow devices through
cv2.VideoCapture. MockCameraBackend generates synthetic frames for
development and tests. The backend is chosen by configuration
(camera.backend), never by import probing.

All backend calls are blocking; the session manager runs them in its
dedicated executor.
"""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import cv2
import numpy as np

from tagscan.errors import DeviceAccessError

logger = logging.getLogger(__name__)

REAR_KEYWORDS = ("back", "rear", "environment")


@dataclass(frozen=True)
class CameraDevice:
    """One enumerated video input device."""

    device_id: str
    label: str
    is_rear: bool = False

    @classmethod
    def from_label(cls, device_id: str, label: str) -> "CameraDevice":
        lower = label.lower()
        return cls(
            device_id=device_id,
            label=label,
            is_rear=any(keyword in lower for keyword in REAR_KEYWORDS),
        )

    def to_dict(self) -> dict:
        return {"device_id": self.device_id, "label": self.label, "is_rear": self.is_rear}


class RawStream(Protocol):
    """An open device stream. close() must be safe to call more than once."""

    device_id: str
    resolution: tuple[int, int]
    has_audio: bool

    def read_frame(self) -> np.ndarray:
        """Return the current frame as an RGB array (H, W, 3)."""
        ...

    def close(self) -> None:
        ...


class CameraBackend(Protocol):
    def list_devices(self) -> list[CameraDevice]:
        ...

    def open(
        self,
        device: CameraDevice,
        resolution: tuple[int, int],
        framerate: int,
        audio: bool,
    ) -> RawStream:
        ...


class OpenCVStream:
    """RawStream over a cv2.VideoCapture."""

    def __init__(self, device_id: str, capture: cv2.VideoCapture, has_audio: bool):
        self.device_id = device_id
        self._capture = capture
        self.has_audio = has_audio
        self.resolution = (
            int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )
        self._lock = threading.Lock()

    def read_frame(self) -> np.ndarray:
        with self._lock:
            if self._capture is None:
                raise DeviceAccessError(f"Camera {self.device_id} is closed")
            ok, frame = self._capture.read()
        if not ok or frame is None:
            raise DeviceAccessError(f"Camera {self.device_id} returned no frame")
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def close(self) -> None:
        with self._lock:
            if self._capture is not None:
                self._capture.release()
                self._capture = None
                logger.debug(f"Released camera {self.device_id}")


class OpenCVCameraBackend:
    """
    Real device access through OpenCV.

    Devices are probed by index. On Linux the V4L2 device name is used as the
    label so rear-facing cameras can be recognised.
    """

    def __init__(self, max_devices: int = 4):
        self.max_devices = max_devices

    @staticmethod
    def _device_label(index: int) -> str:
        name_file = Path(f"/sys/class/video4linux/video{index}/name")
        try:
            return name_file.read_text().strip() or f"Camera {index}"
        except OSError:
            return f"Camera {index}"

    def list_devices(self) -> list[CameraDevice]:
        devices = []
        for index in range(self.max_devices):
            cap = cv2.VideoCapture(index)
            try:
                if cap.isOpened():
                    devices.append(CameraDevice.from_label(str(index), self._device_label(index)))
            finally:
                cap.release()
        logger.debug(f"Enumerated {len(devices)} camera device(s)")
        return devices

    def open(
        self,
        device: CameraDevice,
        resolution: tuple[int, int],
        framerate: int,
        audio: bool,
    ) -> OpenCVStream:
        try:
            index = int(device.device_id)
        except ValueError as e:
            raise DeviceAccessError(f"Invalid OpenCV device id: {device.device_id}") from e

        cap = cv2.VideoCapture(index)
        if not cap.isOpened():
            cap.release()
            raise DeviceAccessError(
                f"Could not open camera {device.device_id} ({device.label}): "
                "permission denied or device busy"
            )

        # Ideal constraints; the driver picks the nearest supported mode
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, resolution[0])
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, resolution[1])
        cap.set(cv2.CAP_PROP_FPS, framerate)

        if audio:
            logger.info("OpenCV streams carry no audio track; recording video only")

        stream = OpenCVStream(device.device_id, cap, has_audio=False)
        logger.info(
            f"Opened camera {device.device_id} ({device.label}) at "
            f"{stream.resolution[0]}x{stream.resolution[1]}"
        )
        return stream


class MockStream:
    """Synthetic stream producing random RGB frames."""

    def __init__(self, device_id: str, resolution: tuple[int, int], has_audio: bool):
        self.device_id = device_id
        self.resolution = resolution
        self.has_audio = has_audio
        self.closed = False
        self.frames_read = 0
        logger.info(f"[MOCK] Stream opened on device {device_id} (audio={has_audio})")

    def read_frame(self) -> np.ndarray:
        if self.closed:
            raise DeviceAccessError(f"[MOCK] Stream {self.device_id} is closed")
        self.frames_read += 1
        w, h = self.resolution
        return np.random.randint(0, 255, (h, w, 3), dtype=np.uint8)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            logger.info(f"[MOCK] Stream on device {self.device_id} closed")


class MockCameraBackend:
    """
    Mock camera backend for development/testing without hardware.

    Args:
        devices: Devices to report (defaults to one front and one rear camera)
        deny: Simulate a permission denial on open()
        gate: If given, open() blocks until the event is set
    """

    def __init__(
        self,
        devices: list[CameraDevice] | None = None,
        deny: bool = False,
        gate: threading.Event | None = None,
    ):
        self.devices = (
            devices
            if devices is not None
            else [
                CameraDevice.from_label("0", "Front Camera"),
                CameraDevice.from_label("1", "Back Camera"),
            ]
        )
        self.deny = deny
        self.gate = gate
        self.opened: list[MockStream] = []
        logger.info(f"[MOCK] Camera backend initialized with {len(self.devices)} device(s)")

    def list_devices(self) -> list[CameraDevice]:
        return list(self.devices)

    def open(
        self,
        device: CameraDevice,
        resolution: tuple[int, int],
        framerate: int,
        audio: bool,
    ) -> MockStream:
        if self.gate is not None:
            self.gate.wait()
        if self.deny:
            raise DeviceAccessError("[MOCK] Camera permission denied")
        stream = MockStream(device.device_id, resolution, audio)
        self.opened.append(stream)
        return stream

    @property
    def open_streams(self) -> list[MockStream]:
        return [s for s in self.opened if not s.closed]


def create_backend(name: str, max_devices: int = 4) -> CameraBackend:
    """Build the configured backend ('opencv' or 'mock')."""
    if name == "mock":
        return MockCameraBackend()
    if name == "opencv":
        return OpenCVCameraBackend(max_devices=max_devices)
    raise ValueError(f"Unknown camera backend: {name}")
