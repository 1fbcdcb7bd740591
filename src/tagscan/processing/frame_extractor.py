"""
Video Frame Extractor

Turns a recorded video blob into evenly spaced still frames plus a
mid-point thumbnail.

The decoder is a single shared resource: extractions are serialized with an
asyncio.Lock and every seek-and-decode step is awaited before the next seek
is issued. Decoding runs in a dedicated single-worker executor.
"""

import asyncio
import logging
import math
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Protocol

import cv2
import numpy as np

from tagscan.errors import FrameExtractionError
from tagscan.processing.thumbnails import frame_to_jpeg, make_thumbnail

logger = logging.getLogger(__name__)

FRAME_JPEG_QUALITY = 85


class VideoDecoder(Protocol):
    """Seekable decoder over one loaded video."""

    def open(self, blob: bytes) -> float:
        """Load a video and return its duration in seconds."""
        ...

    def read_at(self, seconds: float) -> np.ndarray | None:
        """Seek and decode one RGB frame, or None if the seek failed."""
        ...

    def close(self) -> None:
        ...


class OpenCVVideoDecoder:
    """VideoDecoder backed by cv2.VideoCapture over a temporary file."""

    def __init__(self, tmp_dir: str | Path | None = None):
        self._tmp_dir = str(tmp_dir) if tmp_dir else None
        self._capture: cv2.VideoCapture | None = None
        self._path: Path | None = None
        self._fps = 0.0
        self._total_frames = 0

    def open(self, blob: bytes) -> float:
        self.close()
        if not blob:
            raise FrameExtractionError("Empty video blob")

        fd, path = tempfile.mkstemp(suffix=".mp4", dir=self._tmp_dir)
        with os.fdopen(fd, "wb") as f:
            f.write(blob)
        self._path = Path(path)

        cap = cv2.VideoCapture(path)
        if not cap.isOpened():
            cap.release()
            self.close()
            raise FrameExtractionError("Could not open video")

        self._capture = cap
        self._fps = cap.get(cv2.CAP_PROP_FPS) or 0.0
        self._total_frames = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
        if self._fps <= 0 or self._total_frames <= 0:
            self.close()
            raise FrameExtractionError("Video has no decodable frames")

        duration = self._total_frames / self._fps
        logger.debug(
            f"Video loaded: {self._total_frames} frames @ {self._fps:.1f} FPS ({duration:.2f}s)"
        )
        return duration

    def read_at(self, seconds: float) -> np.ndarray | None:
        if self._capture is None:
            return None
        # Frame-index seeking is exact for mp4v, POS_MSEC is not
        index = min(int(round(seconds * self._fps)), self._total_frames - 1)
        self._capture.set(cv2.CAP_PROP_POS_FRAMES, index)
        ok, frame = self._capture.read()
        if not ok or frame is None:
            return None
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def close(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None
        if self._path is not None:
            self._path.unlink(missing_ok=True)
            self._path = None
        self._fps = 0.0
        self._total_frames = 0


class FrameExtractor:
    """
    Sequential still-frame extraction from recorded video.

    For N frames over duration D the seek positions are exactly
    0, D/N, 2D/N, ... (N-1)D/N, visited in order.
    """

    def __init__(
        self,
        decoder: VideoDecoder | None = None,
        jpeg_quality: int = FRAME_JPEG_QUALITY,
    ):
        self._decoder = decoder or OpenCVVideoDecoder()
        self.jpeg_quality = jpeg_quality
        self._lock = asyncio.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="frame-decode")
        self._extractions = 0

    async def _run(self, func, *args):
        return await asyncio.get_running_loop().run_in_executor(self._executor, func, *args)

    def _read_jpeg(self, seconds: float) -> bytes | None:
        frame = self._decoder.read_at(seconds)
        if frame is None:
            return None
        return frame_to_jpeg(frame, self.jpeg_quality)

    @staticmethod
    def _valid_duration(duration: float) -> bool:
        return duration is not None and math.isfinite(duration) and duration > 0

    async def extract_frames(self, video_blob: bytes, frame_count: int = 5) -> list[bytes]:
        """
        Extract evenly spaced JPEG frames.

        Args:
            video_blob: Encoded video bytes
            frame_count: Number of frames to extract (>= 1)

        Returns:
            Ordered JPEG frames, or [] if loading or any seek fails
        """
        if frame_count < 1:
            raise ValueError(f"frame_count must be >= 1, got {frame_count}")

        async with self._lock:
            self._extractions += 1
            try:
                duration = await self._run(self._decoder.open, video_blob)
            except Exception as e:
                logger.warning(f"Video load failed, no frames extracted: {e}")
                await self._run(self._decoder.close)
                return []

            try:
                if not self._valid_duration(duration):
                    logger.warning(f"Video has unusable duration {duration}, no frames extracted")
                    return []

                interval = duration / frame_count
                frames: list[bytes] = []
                for i in range(frame_count):
                    position = i * interval
                    try:
                        jpeg = await self._run(self._read_jpeg, position)
                    except Exception as e:
                        logger.warning(f"Seek to {position:.3f}s raised: {e}")
                        jpeg = None
                    if jpeg is None:
                        logger.warning(
                            f"Seek to {position:.3f}s failed after {len(frames)} frame(s), "
                            "discarding partial extraction"
                        )
                        return []
                    frames.append(jpeg)

                logger.info(f"Extracted {len(frames)} frames from {duration:.2f}s video")
                return frames
            finally:
                await self._run(self._decoder.close)

    async def thumbnail(self, video_blob: bytes) -> bytes:
        """
        Preview image from the frame at duration / 2.

        Raises:
            FrameExtractionError: If the video cannot be decoded
        """
        async with self._lock:
            try:
                duration = await self._run(self._decoder.open, video_blob)
                if not self._valid_duration(duration):
                    raise FrameExtractionError(f"Unusable video duration {duration}")
                jpeg = await self._run(self._read_jpeg, duration / 2)
                if jpeg is None:
                    raise FrameExtractionError("Could not decode the mid-point frame")
                return make_thumbnail(jpeg)
            except FrameExtractionError:
                raise
            except Exception as e:
                raise FrameExtractionError(f"Thumbnail extraction failed: {e}") from e
            finally:
                await self._run(self._decoder.close)

    def get_status(self) -> dict:
        return {
            "busy": self._lock.locked(),
            "extractions": self._extractions,
            "jpeg_quality": self.jpeg_quality,
        }

    def close(self) -> None:
        self._executor.shutdown(wait=False)
