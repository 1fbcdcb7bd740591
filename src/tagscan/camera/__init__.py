"""
Camera module for TagScan.

Provides:
- CaptureSessionManager: single owner of the active device stream
- Camera backends: OpenCV devices and a mock for development
- VideoRecorder: MP4 recording from the live stream
"""

from .backends import CameraDevice, MockCameraBackend, OpenCVCameraBackend, create_backend
from .recorder import RecordedVideo, VideoRecorder
from .session import (
    CaptureMode,
    CaptureSessionManager,
    SessionState,
    StreamHandle,
    get_capture_session,
)

__all__ = [
    "CameraDevice",
    "MockCameraBackend",
    "OpenCVCameraBackend",
    "create_backend",
    "CaptureMode",
    "CaptureSessionManager",
    "SessionState",
    "StreamHandle",
    "get_capture_session",
    "RecordedVideo",
    "VideoRecorder",
]
