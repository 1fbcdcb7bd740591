"""
Capture Session Manager - single owner of the active camera stream

The manager holds at most one StreamHandle. Every acquisition releases the
previous handle first, and stop() invalidates any acquisition still in
flight: a stream that arrives after stop() is released on arrival and the
pending start() raises SessionClosedError.

States: IDLE -> ACQUIRING -> ACTIVE -> (ERROR | IDLE)
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from enum import Enum, auto

import numpy as np

from tagscan.camera.backends import CameraBackend, CameraDevice, RawStream, create_backend
from tagscan.errors import DeviceAccessError, SessionClosedError
from tagscan.processing.thumbnails import frame_to_jpeg

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = auto()
    ACQUIRING = auto()
    ACTIVE = auto()
    ERROR = auto()


class CaptureMode(Enum):
    """What the live stream is being used for."""

    IMAGE = "image"
    BARCODE = "barcode"
    VIDEO = "video"

    @property
    def needs_audio(self) -> bool:
        # Audio tracks are only requested while recording video
        return self is CaptureMode.VIDEO


class StreamHandle:
    """Owned device stream; release() is idempotent."""

    def __init__(self, stream: RawStream, device: CameraDevice, mode: CaptureMode):
        self._stream = stream
        self.device = device
        self.mode = mode
        self.has_audio = stream.has_audio
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def read_frame(self) -> np.ndarray:
        if self._released:
            raise DeviceAccessError("Stream has been released")
        return self._stream.read_frame()

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._stream.close()
        logger.debug(f"Stream handle for device {self.device.device_id} released")


def _close_late_stream(future: "asyncio.Future") -> None:
    """Done-callback releasing a stream nobody is waiting for anymore."""
    if future.cancelled() or future.exception() is not None:
        return
    stream, device = future.result()
    stream.close()
    logger.info(f"Released late-arriving stream from device {device.device_id}")


class CaptureSessionManager:
    """
    Owns the single active camera stream.

    Blocking backend calls run in a single-worker executor and are awaited.
    Use as `async with manager:` for scoped acquisition.
    """

    def __init__(
        self,
        backend: CameraBackend,
        resolution: tuple[int, int] = (1920, 1080),
        framerate: int = 30,
        prefer_rear_camera: bool = True,
        acquire_timeout: float = 10.0,
        capture_quality: int = 95,
    ):
        self._backend = backend
        self.resolution = resolution
        self.framerate = framerate
        self.prefer_rear_camera = prefer_rear_camera
        self.acquire_timeout = acquire_timeout
        self.capture_quality = capture_quality

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="camera")
        self._state = SessionState.IDLE
        self._mode = CaptureMode.IMAGE
        self._handle: StreamHandle | None = None
        self._generation = 0
        self._last_error: str | None = None

        logger.info(
            f"CaptureSessionManager initialized: resolution={resolution}, "
            f"fps={framerate}, prefer_rear={prefer_rear_camera}"
        )

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def mode(self) -> CaptureMode:
        return self._mode

    @property
    def is_active(self) -> bool:
        return self._state == SessionState.ACTIVE and self._handle is not None

    @property
    def device(self) -> CameraDevice | None:
        return self._handle.device if self._handle else None

    @property
    def last_error(self) -> str | None:
        return self._last_error

    async def _run(self, func, *args):
        return await asyncio.get_running_loop().run_in_executor(self._executor, func, *args)

    def _select_device(self, devices: list[CameraDevice], device_id: str | None) -> CameraDevice:
        if not devices:
            raise DeviceAccessError("No camera devices found")
        if device_id is not None:
            for device in devices:
                if device.device_id == device_id:
                    return device
            raise DeviceAccessError(f"Camera device '{device_id}' not found")
        if self.prefer_rear_camera:
            for device in devices:
                if device.is_rear:
                    return device
        return devices[0]

    def _acquire(self, device_id: str | None, audio: bool) -> tuple[RawStream, CameraDevice]:
        """Executor-side acquisition: enumerate, pick and open one device."""
        device = self._select_device(self._backend.list_devices(), device_id)
        stream = self._backend.open(device, self.resolution, self.framerate, audio)
        return stream, device

    def list_devices(self) -> list[CameraDevice]:
        return self._backend.list_devices()

    async def start(self, device_id: str | None = None, mode: CaptureMode | None = None) -> None:
        """
        Acquire a device stream, releasing any current one first.

        Args:
            device_id: Device to open (None picks rear camera if preferred)
            mode: Capture mode (None keeps the current mode)

        Raises:
            DeviceAccessError: Permission denied, missing device or hardware failure
            SessionClosedError: stop() was called while acquiring
        """
        if mode is not None:
            self._mode = mode
        self.stop()

        self._generation += 1
        generation = self._generation
        self._state = SessionState.ACQUIRING
        self._last_error = None
        audio = self._mode.needs_audio
        logger.info(
            f"Acquiring camera (device={device_id or 'auto'}, mode={self._mode.value}, audio={audio})"
        )

        future = asyncio.get_running_loop().run_in_executor(
            self._executor, self._acquire, device_id, audio
        )
        try:
            stream, device = await asyncio.wait_for(
                asyncio.shield(future), timeout=self.acquire_timeout
            )
        except asyncio.TimeoutError:
            future.add_done_callback(_close_late_stream)
            self._fail(generation, f"Camera did not open within {self.acquire_timeout}s")
            raise DeviceAccessError(f"Camera did not open within {self.acquire_timeout}s")
        except asyncio.CancelledError:
            future.add_done_callback(_close_late_stream)
            if generation == self._generation:
                self._state = SessionState.IDLE
            raise
        except Exception as e:
            self._fail(generation, str(e))
            if generation != self._generation:
                raise SessionClosedError("Session closed while the camera was being acquired") from e
            if isinstance(e, DeviceAccessError):
                raise
            raise DeviceAccessError(f"Camera acquisition failed: {e}") from e

        if generation != self._generation:
            stream.close()
            logger.info(f"Session closed during acquisition, released device {device.device_id}")
            raise SessionClosedError("Session closed while the camera was being acquired")

        self._handle = StreamHandle(stream, device, self._mode)
        self._state = SessionState.ACTIVE
        logger.info(f"Camera active: {device.label} ({device.device_id}), mode={self._mode.value}")

    def _fail(self, generation: int, message: str) -> None:
        if generation != self._generation:
            return
        self._last_error = message
        self._state = SessionState.ERROR
        logger.error(f"Camera acquisition failed: {message}")

    def stop(self) -> None:
        """Release all tracks. Idempotent; always ends in IDLE."""
        self._generation += 1
        if self._handle is not None:
            device = self._handle.device
            self._handle.release()
            self._handle = None
            logger.info(f"Camera stopped ({device.label})")
        self._state = SessionState.IDLE

    async def switch_device(self, device_id: str) -> None:
        """Restart the stream on another device, keeping the current mode."""
        self.stop()
        await self.start(device_id, self._mode)

    async def switch_camera(self) -> None:
        """Cycle to the next enumerated device (wraps around)."""
        devices = await self._run(self._backend.list_devices)
        if len(devices) <= 1:
            logger.info("Only one camera available, not switching")
            return

        current_id = self._handle.device.device_id if self._handle else None
        ids = [d.device_id for d in devices]
        index = ids.index(current_id) if current_id in ids else -1
        next_device = devices[(index + 1) % len(devices)]
        logger.info(f"Switching camera to {next_device.label}")
        await self.switch_device(next_device.device_id)

    async def switch_mode(self, mode: CaptureMode) -> None:
        """
        Change capture mode.

        The stream is only re-acquired when the audio requirement changes
        (entering or leaving video mode).
        """
        if mode == self._mode:
            return

        previous = self._mode
        self._mode = mode
        if self.is_active and previous.needs_audio != mode.needs_audio:
            logger.info(f"Mode {previous.value} -> {mode.value} changes audio, re-acquiring")
            await self.start(self._handle.device.device_id, mode)
        else:
            if self._handle is not None:
                self._handle.mode = mode
            logger.info(f"Mode {previous.value} -> {mode.value}")

    async def read_frame(self) -> np.ndarray:
        """Current RGB frame from the live stream."""
        if not self.is_active:
            raise DeviceAccessError("Camera is not active")
        return await self._run(self._handle.read_frame)

    async def capture_frame(self, quality: int | None = None) -> bytes:
        """
        Grab the current frame as full-resolution JPEG bytes.

        Raises:
            DeviceAccessError: If the camera is not active or returns no frame
        """
        frame = await self.read_frame()
        quality = quality or self.capture_quality
        jpeg = await self._run(frame_to_jpeg, frame, quality)
        logger.debug(f"Captured frame {frame.shape[1]}x{frame.shape[0]} ({len(jpeg)} bytes)")
        return jpeg

    def get_status(self) -> dict:
        """Get capture session status."""
        return {
            "state": self._state.name,
            "mode": self._mode.value,
            "device_id": self._handle.device.device_id if self._handle else None,
            "device_label": self._handle.device.label if self._handle else None,
            "audio": self._handle.has_audio if self._handle else False,
            "resolution": self.resolution,
            "last_error": self._last_error,
        }

    def cleanup(self) -> None:
        """Release the stream and the executor."""
        self.stop()
        self._executor.shutdown(wait=False)
        logger.info("Camera resources cleaned up")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.stop()


# Factory function
def _create_default_session() -> CaptureSessionManager:
    """Create capture session manager from config."""
    from tagscan.config import camera_config

    return CaptureSessionManager(
        backend=create_backend(camera_config.backend, camera_config.max_devices),
        resolution=camera_config.resolution,
        framerate=camera_config.framerate,
        prefer_rear_camera=camera_config.prefer_rear_camera,
        acquire_timeout=camera_config.acquire_timeout,
        capture_quality=camera_config.capture_quality,
    )


# Global instance (lazy)
_session_instance: CaptureSessionManager | None = None


def get_capture_session() -> CaptureSessionManager:
    """Get or create the global capture session manager."""
    global _session_instance
    if _session_instance is None:
        _session_instance = _create_default_session()
    return _session_instance
