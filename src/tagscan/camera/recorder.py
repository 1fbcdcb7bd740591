"""
Video Recorder

Records the live capture stream into an MP4 (mp4v) blob between start() and
stop(), using cv2.VideoWriter on a temporary file. Frames are pulled from the
session at a fixed rate and written in a dedicated single-worker executor.
Recording stops on its own after max_duration_seconds.
"""

import asyncio
import logging
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np

from tagscan.camera.session import CaptureSessionManager
from tagscan.errors import DeviceAccessError

logger = logging.getLogger(__name__)


@dataclass
class RecordedVideo:
    """A finished recording."""

    blob: bytes
    duration_seconds: float
    frame_count: int
    resolution: tuple[int, int]
    content_type: str = "video/mp4"


class VideoRecorder:
    """Pulls frames from the active session and encodes them to MP4."""

    def __init__(
        self,
        session: CaptureSessionManager,
        fps: float = 15.0,
        max_duration_seconds: float = 30.0,
        tmp_dir: str | Path | None = None,
    ):
        self._session = session
        self.fps = fps
        self.max_duration_seconds = max_duration_seconds
        self._tmp_dir = str(tmp_dir) if tmp_dir else None

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="recorder")
        self._task: asyncio.Task | None = None
        self._stop_requested = False
        self._writer: cv2.VideoWriter | None = None
        self._path: Path | None = None
        self._frames_written = 0
        self._resolution: tuple[int, int] = (0, 0)
        self._error: str | None = None

    @property
    def is_recording(self) -> bool:
        return self._task is not None

    def _write_frame(self, frame: np.ndarray) -> None:
        """Executor-side: lazily open the writer and append one RGB frame."""
        if self._path is None:
            return
        if self._writer is None:
            h, w = frame.shape[:2]
            fourcc = cv2.VideoWriter_fourcc(*"mp4v")
            self._writer = cv2.VideoWriter(str(self._path), fourcc, self.fps, (w, h))
            if not self._writer.isOpened():
                self._writer = None
                raise DeviceAccessError(f"Could not create video writer for {w}x{h}")
            self._resolution = (w, h)
        self._writer.write(cv2.cvtColor(frame, cv2.COLOR_RGB2BGR))
        self._frames_written += 1

    def _finish(self) -> bytes:
        """Executor-side: close the writer and read the file back."""
        if self._writer is not None:
            self._writer.release()
            self._writer = None
        data = b""
        if self._path is not None:
            if self._frames_written > 0:
                data = self._path.read_bytes()
            self._path.unlink(missing_ok=True)
            self._path = None
        return data

    async def start(self) -> None:
        """Begin recording from the active session."""
        if self._task is not None:
            raise RuntimeError("Recording already in progress")
        if not self._session.is_active:
            raise DeviceAccessError("Camera is not active")

        fd, path = tempfile.mkstemp(suffix=".mp4", dir=self._tmp_dir)
        os.close(fd)
        self._path = Path(path)
        self._frames_written = 0
        self._resolution = (0, 0)
        self._error = None
        self._stop_requested = False
        self._task = asyncio.create_task(self._record_loop(), name="video-recorder")
        logger.info(f"Recording started ({self.fps} fps, max {self.max_duration_seconds}s)")

    async def _record_loop(self) -> None:
        loop = asyncio.get_running_loop()
        interval = 1.0 / self.fps
        started = loop.time()

        while not self._stop_requested:
            tick = loop.time()
            if tick - started >= self.max_duration_seconds:
                logger.info(f"Max recording duration reached ({self.max_duration_seconds}s)")
                break
            try:
                frame = await self._session.read_frame()
                await loop.run_in_executor(self._executor, self._write_frame, frame)
            except DeviceAccessError as e:
                self._error = str(e)
                logger.error(f"Recording interrupted: {e}")
                break

            delay = interval - (loop.time() - tick)
            if delay > 0:
                await asyncio.sleep(delay)

    async def stop(self) -> RecordedVideo:
        """
        Stop recording and return the encoded clip.

        Raises:
            RuntimeError: If no recording is in progress
            DeviceAccessError: If no frame could be recorded
        """
        if self._task is None:
            raise RuntimeError("No recording in progress")

        self._stop_requested = True
        task, self._task = self._task, None
        await task

        frames = self._frames_written
        resolution = self._resolution
        blob = await asyncio.get_running_loop().run_in_executor(self._executor, self._finish)
        if frames == 0 or not blob:
            raise DeviceAccessError(self._error or "No frames were recorded")

        duration = frames / self.fps
        logger.info(
            f"Recording stopped: {frames} frames, {duration:.2f}s, {len(blob) / 1024:.0f}KB"
        )
        return RecordedVideo(
            blob=blob,
            duration_seconds=duration,
            frame_count=frames,
            resolution=resolution,
        )

    def abort(self) -> None:
        """Cancel an in-progress recording and discard its output."""
        if self._task is None:
            return
        self._stop_requested = True
        self._task.cancel()
        self._task = None
        # Queued behind any pending write
        self._executor.submit(self._finish)
        logger.info("Recording aborted, output discarded")

    def get_status(self) -> dict:
        return {
            "recording": self.is_recording,
            "frames_written": self._frames_written,
            "fps": self.fps,
            "max_duration_seconds": self.max_duration_seconds,
        }

    def cleanup(self) -> None:
        self.abort()
        self._executor.shutdown(wait=False)
