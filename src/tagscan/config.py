"""
Configuration management for TagScan using Pydantic settings.

Loads configuration from:
1. .env file (if present)
2. config/config.json (defaults)
3. Environment variables (override with TAGSCAN_ prefix)
"""

import json
import logging
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
RUNTIME_DIR = PROJECT_ROOT / "runtime"

# Load .env file from project root (if exists)
_env_file = PROJECT_ROOT / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
    logger.debug(f"Loaded environment from {_env_file}")


def load_json_config() -> dict[str, Any]:
    """Load configuration from config.json file."""
    config_file = CONFIG_DIR / "config.json"
    if config_file.exists():
        with open(config_file) as f:
            return json.load(f)
    return {}


_json_config = load_json_config()


class CameraConfig(BaseSettings):
    """Camera device acquisition settings."""

    model_config = {"env_prefix": "TAGSCAN_CAMERA_"}

    backend: str = Field(
        default=_json_config.get("camera", {}).get("backend", "opencv"),
        description="Device backend: 'opencv' for real devices, 'mock' for development",
    )
    resolution: tuple[int, int] = Field(
        default=tuple(_json_config.get("camera", {}).get("resolution", [1920, 1080])),
        description="Target capture resolution (ideal, the device may pick the nearest)",
    )
    framerate: int = Field(
        default=_json_config.get("camera", {}).get("framerate", 30),
        description="Camera framerate",
    )
    prefer_rear_camera: bool = Field(
        default=_json_config.get("camera", {}).get("prefer_rear_camera", True),
        description="Pick a rear-facing device when none is requested",
    )
    max_devices: int = Field(
        default=_json_config.get("camera", {}).get("max_devices", 4),
        description="Number of device indexes probed during enumeration",
    )
    capture_quality: int = Field(
        default=_json_config.get("camera", {}).get("capture_quality", 95),
        description="JPEG quality for full-resolution photo captures",
    )
    acquire_timeout: float = Field(
        default=_json_config.get("camera", {}).get("acquire_timeout", 10.0),
        description="Seconds to wait for a device to open",
    )

    @field_validator("resolution", mode="before")
    @classmethod
    def parse_resolution(cls, v):
        if isinstance(v, list):
            return tuple(v)
        return v

    @field_validator("framerate")
    @classmethod
    def validate_framerate(cls, v):
        if v < 1 or v > 120:
            raise ValueError(f"framerate must be between 1 and 120, got {v}")
        return v

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v):
        if v not in ("opencv", "mock"):
            raise ValueError(f"backend must be 'opencv' or 'mock', got {v}")
        return v


class CompressionConfig(BaseSettings):
    """Payload budget settings for analysis-bound images."""

    model_config = {"env_prefix": "TAGSCAN_COMPRESSION_"}

    max_width_px: int = Field(
        default=_json_config.get("compression", {}).get("max_width_px", 1920),
        description="Bounding box width for resized images",
    )
    max_height_px: int = Field(
        default=_json_config.get("compression", {}).get("max_height_px", 1920),
        description="Bounding box height for resized images",
    )
    max_size_mb: float = Field(
        default=_json_config.get("compression", {}).get("max_size_mb", 2.5),
        description="Per-item payload budget at capture time",
    )
    quality: float = Field(
        default=_json_config.get("compression", {}).get("quality", 0.85),
        description="Starting JPEG quality (0.0 to 1.0)",
    )
    item_ceiling_mb: float = Field(
        default=_json_config.get("compression", {}).get("item_ceiling_mb", 2.0),
        description="Hard per-item ceiling enforced right before submission",
    )
    tight_max_size_mb: float = Field(
        default=_json_config.get("compression", {}).get("tight_max_size_mb", 1.5),
        description="Budget used when re-compressing items over the ceiling",
    )
    tight_quality: float = Field(
        default=_json_config.get("compression", {}).get("tight_quality", 0.75),
        description="Starting quality for the re-compression pass",
    )
    request_ceiling_mb: float = Field(
        default=_json_config.get("compression", {}).get("request_ceiling_mb", 4.5),
        description="Largest request body the analysis service accepts",
    )

    @field_validator("quality", "tight_quality")
    @classmethod
    def validate_quality(cls, v):
        if not 0.0 < v <= 1.0:
            raise ValueError(f"quality must be in (0.0, 1.0], got {v}")
        return v

    @field_validator("max_size_mb", "item_ceiling_mb", "tight_max_size_mb", "request_ceiling_mb")
    @classmethod
    def validate_size(cls, v):
        if v <= 0:
            raise ValueError(f"size budget must be positive, got {v}")
        return v


class VideoConfig(BaseSettings):
    """Video recording and frame extraction settings."""

    model_config = {"env_prefix": "TAGSCAN_VIDEO_"}

    frame_count: int = Field(
        default=_json_config.get("video", {}).get("frame_count", 5),
        description="Still frames extracted per recorded video",
    )
    max_duration_seconds: float = Field(
        default=_json_config.get("video", {}).get("max_duration_seconds", 30.0),
        description="Recording stops automatically after this duration",
    )
    fps: float = Field(
        default=_json_config.get("video", {}).get("fps", 15.0),
        description="Recording framerate for the MP4 writer",
    )
    frame_max_width_px: int = Field(
        default=_json_config.get("video", {}).get("frame_max_width_px", 1280),
        description="Width bound for compressed extracted frames",
    )
    frame_max_height_px: int = Field(
        default=_json_config.get("video", {}).get("frame_max_height_px", 1280),
        description="Height bound for compressed extracted frames",
    )
    frame_quality: float = Field(
        default=_json_config.get("video", {}).get("frame_quality", 0.8),
        description="Starting quality for extracted frame compression",
    )

    @field_validator("frame_count")
    @classmethod
    def validate_frame_count(cls, v):
        if v < 1 or v > 30:
            raise ValueError(f"frame_count must be 1-30, got {v}")
        return v


class BufferConfig(BaseSettings):
    """Item buffer settings."""

    model_config = {"env_prefix": "TAGSCAN_BUFFER_"}

    max_items: int = Field(
        default=_json_config.get("buffer", {}).get("max_items", 15),
        description="Maximum captured items held at once (oldest evicted)",
    )

    @field_validator("max_items")
    @classmethod
    def validate_max_items(cls, v):
        if v < 1 or v > 100:
            raise ValueError(f"max_items must be 1-100, got {v}")
        return v


class GhostConfig(BaseSettings):
    """Ghost Mode geolocation and listing defaults."""

    model_config = {"env_prefix": "TAGSCAN_GHOST_"}

    location_timeout_seconds: float = Field(
        default=_json_config.get("ghost", {}).get("location_timeout_seconds", 10.0),
        description="Single-shot geolocation timeout",
    )
    location_max_age_seconds: float = Field(
        default=_json_config.get("ghost", {}).get("location_max_age_seconds", 60.0),
        description="Cached fixes younger than this are reused",
    )
    default_handling_hours: int = Field(
        default=_json_config.get("ghost", {}).get("default_handling_hours", 48),
        description="Initial handling time for new listings",
    )
    provider: str = Field(
        default=_json_config.get("ghost", {}).get("provider", "static"),
        description="Geolocation provider: 'static' or 'http'",
    )
    static_lat: float | None = Field(
        default=_json_config.get("ghost", {}).get("static_lat"),
        description="Latitude reported by the static provider",
    )
    static_lng: float | None = Field(
        default=_json_config.get("ghost", {}).get("static_lng"),
        description="Longitude reported by the static provider",
    )
    static_accuracy_meters: float = Field(
        default=_json_config.get("ghost", {}).get("static_accuracy_meters", 25.0),
        description="Accuracy reported by the static provider",
    )
    geolocation_url: str = Field(
        default=_json_config.get("ghost", {}).get("geolocation_url", ""),
        description="JSON endpoint queried by the http provider",
    )

    @field_validator("default_handling_hours")
    @classmethod
    def validate_handling_hours(cls, v):
        if v not in (12, 24, 48, 72):
            raise ValueError(f"default_handling_hours must be 12, 24, 48 or 72, got {v}")
        return v


class StorageConfig(BaseSettings):
    """Durable object storage for original media."""

    model_config = {"env_prefix": "TAGSCAN_STORAGE_"}

    base_url: str = Field(
        default=_json_config.get("storage", {}).get("base_url", ""),
        description="Storage service base URL",
    )
    bucket: str = Field(
        default=_json_config.get("storage", {}).get("bucket", "user-uploads"),
        description="Bucket holding user uploads",
    )
    api_key: str = Field(
        default=_json_config.get("storage", {}).get("api_key", ""),
        description="Project API key sent alongside the user token",
    )
    timeout_seconds: float = Field(
        default=_json_config.get("storage", {}).get("timeout_seconds", 30.0),
        description="Per-request timeout",
    )
    retry_attempts: int = Field(
        default=_json_config.get("storage", {}).get("retry_attempts", 3),
        description="Attempts per item on transient network failures",
    )

    @field_validator("retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v):
        if v < 1 or v > 10:
            raise ValueError(f"retry_attempts must be 1-10, got {v}")
        return v


class AnalysisConfig(BaseSettings):
    """External analysis service."""

    model_config = {"env_prefix": "TAGSCAN_ANALYSIS_"}

    base_url: str = Field(
        default=_json_config.get("analysis", {}).get("base_url", "http://localhost:3000"),
        description="Analysis service base URL",
    )
    timeout_seconds: float = Field(
        default=_json_config.get("analysis", {}).get("timeout_seconds", 120.0),
        description="Submission timeout (multi-model consensus is slow)",
    )


class APIConfig(BaseSettings):
    """FastAPI control server configuration."""

    model_config = {"env_prefix": "TAGSCAN_API_"}

    enabled: bool = Field(
        default=_json_config.get("api", {}).get("enabled", True),
        description="Enable REST API server",
    )
    host: str = Field(
        default=_json_config.get("api", {}).get("host", "127.0.0.1"),
        description="API server bind host",
    )
    port: int = Field(
        default=_json_config.get("api", {}).get("port", 8080),
        description="API server port",
    )


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = {"env_prefix": "TAGSCAN_LOGGING_"}

    level: str = Field(
        default=_json_config.get("logging", {}).get("level", "INFO"),
        description="Log level",
    )
    file: str = Field(
        default=_json_config.get("logging", {}).get(
            "file", str(RUNTIME_DIR / "logs" / "tagscan.log")
        ),
        description="Log file path",
    )


# Global configuration instances
camera_config = CameraConfig()
compression_config = CompressionConfig()
video_config = VideoConfig()
buffer_config = BufferConfig()
ghost_config = GhostConfig()
storage_config = StorageConfig()
analysis_config = AnalysisConfig()
api_config = APIConfig()
logging_config = LoggingConfig()


def setup_logging() -> None:
    """Configure logging for the application with log rotation."""
    from logging.handlers import RotatingFileHandler

    log_dir = Path(logging_config.file).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    # 10 MB max, keep 5 backups
    file_handler = RotatingFileHandler(
        logging_config.file,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, logging_config.level.upper()))
    root_logger.addHandler(file_handler)
    root_logger.addHandler(logging.StreamHandler())

    logger.info(
        f"Logging configured: level={logging_config.level}, "
        f"file={logging_config.file} (rotating, 10MB max, 5 backups)"
    )
