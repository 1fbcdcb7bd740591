"""
Compression Engine - size-bounded JPEG re-encoding

Keeps every analysis-bound image under a payload budget:
1. Skip images already comfortably under budget (< 80%)
2. Aspect-preserving resize into a bounding box (never upscales)
3. Step JPEG quality down by 10 points until the budget is met
4. One final 30% dimension shrink at quality 80 if still over budget

Pure functions over encoded bytes; no state is kept between calls.
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from io import BytesIO

from PIL import Image, ImageOps, UnidentifiedImageError

from tagscan.errors import CompressionError

logger = logging.getLogger(__name__)

MAX_ENCODE_ATTEMPTS = 10
SKIP_RATIO = 0.8
QUALITY_STEP = 10  # percent points
QUALITY_FLOOR = 10  # stop stepping at or below this
SHRINK_FACTOR = 0.7
SHRINK_QUALITY = 80


@dataclass(frozen=True)
class CompressionOptions:
    """Budget and starting quality for one compression call."""

    max_width_px: int = 1920
    max_height_px: int = 1920
    max_size_mb: float = 2.5
    quality: float = 0.85

    def __post_init__(self):
        if self.max_width_px < 1 or self.max_height_px < 1:
            raise ValueError("Bounding box dimensions must be positive")
        if self.max_size_mb <= 0:
            raise ValueError(f"max_size_mb must be positive, got {self.max_size_mb}")
        if not 0.0 < self.quality <= 1.0:
            raise ValueError(f"quality must be in (0.0, 1.0], got {self.quality}")

    @property
    def max_size_bytes(self) -> int:
        return int(self.max_size_mb * 1024 * 1024)


# Tighter budget used for pre-submission re-compression
AGGRESSIVE_OPTIONS = CompressionOptions(
    max_width_px=1280, max_height_px=1280, max_size_mb=1.5, quality=0.75
)


@dataclass
class CompressionResult:
    """Outcome of a compression call."""

    compressed: bytes
    original_size: int
    compressed_size: int
    attempts: int = 0
    final_quality: float | None = None
    resized: bool = False

    @property
    def skipped(self) -> bool:
        """True when the input was returned unchanged."""
        return self.attempts == 0

    @property
    def ratio(self) -> float:
        if self.original_size == 0:
            return 1.0
        return self.compressed_size / self.original_size

    def to_dict(self) -> dict:
        return {
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "attempts": self.attempts,
            "final_quality": self.final_quality,
            "resized": self.resized,
            "ratio": round(self.ratio, 3),
        }


def _decode(image: bytes) -> Image.Image:
    """Decode encoded bytes into an upright RGB image."""
    if not image:
        raise CompressionError("Cannot compress an empty image")
    try:
        img = Image.open(BytesIO(image))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise CompressionError(f"Failed to decode image: {e}") from e

    img = ImageOps.exif_transpose(img)
    if img.mode != "RGB":
        img = img.convert("RGB")
    return img


def _encode_jpeg(img: Image.Image, quality_percent: int) -> bytes:
    buf = BytesIO()
    img.save(buf, "JPEG", quality=quality_percent, optimize=True)
    return buf.getvalue()


def fit_within(width: int, height: int, max_width: int, max_height: int) -> tuple[int, int]:
    """
    Aspect-preserving bounding-box fit that never upscales.

    Dimensions are floored and never drop below 1 pixel.
    """
    ratio = min(max_width / width, max_height / height, 1.0)
    return max(1, int(width * ratio)), max(1, int(height * ratio))


def compress(image: bytes, options: CompressionOptions | None = None) -> CompressionResult:
    """
    Compress an encoded image until it fits the byte budget.

    Args:
        image: Encoded image bytes (any format Pillow can decode)
        options: Budget, bounding box and starting quality

    Returns:
        CompressionResult with a valid JPEG (or the untouched input if small enough)

    Raises:
        CompressionError: If the input is not a decodable image
    """
    options = options or CompressionOptions()
    img = _decode(image)
    original_size = len(image)
    max_bytes = options.max_size_bytes

    if original_size < SKIP_RATIO * max_bytes:
        logger.debug(
            f"Image {format_bytes(original_size)} under {SKIP_RATIO:.0%} of "
            f"{format_bytes(max_bytes)} budget, skipping compression"
        )
        return CompressionResult(
            compressed=image,
            original_size=original_size,
            compressed_size=original_size,
        )

    width, height = img.size
    target = fit_within(width, height, options.max_width_px, options.max_height_px)
    resized = target != (width, height)
    if resized:
        img = img.resize(target, Image.Resampling.LANCZOS)
        logger.debug(f"Resized {width}x{height} -> {target[0]}x{target[1]}")

    quality = int(round(options.quality * 100))
    encoded = _encode_jpeg(img, quality)
    attempts = 1

    # Reserve the last attempt for the shrink pass
    while (
        len(encoded) > max_bytes
        and quality > QUALITY_FLOOR
        and attempts < MAX_ENCODE_ATTEMPTS - 1
    ):
        quality = max(quality - QUALITY_STEP, 1)
        encoded = _encode_jpeg(img, quality)
        attempts += 1
        logger.info(
            f"Compression attempt {attempts}: quality={quality / 100:.2f}, "
            f"size={format_bytes(len(encoded))}"
        )

    if len(encoded) > max_bytes:
        shrunk = (
            max(1, int(img.width * SHRINK_FACTOR)),
            max(1, int(img.height * SHRINK_FACTOR)),
        )
        img = img.resize(shrunk, Image.Resampling.LANCZOS)
        quality = SHRINK_QUALITY
        encoded = _encode_jpeg(img, quality)
        attempts += 1
        resized = True
        logger.info(
            f"Quality floor reached, shrunk to {shrunk[0]}x{shrunk[1]}: "
            f"size={format_bytes(len(encoded))}"
        )
        if len(encoded) > max_bytes:
            logger.warning(
                f"Image still {format_bytes(len(encoded))} after shrink "
                f"(budget {format_bytes(max_bytes)}), returning best effort"
            )

    logger.info(
        f"Compressed {format_bytes(original_size)} -> {format_bytes(len(encoded))} "
        f"in {attempts} attempt(s)"
    )
    return CompressionResult(
        compressed=encoded,
        original_size=original_size,
        compressed_size=len(encoded),
        attempts=attempts,
        final_quality=quality / 100,
        resized=resized,
    )


def needs_compression(image: bytes, max_size_mb: float = 2.5) -> bool:
    """Check whether encoded bytes exceed a budget."""
    return len(image) > max_size_mb * 1024 * 1024


def aggressive_compress(image: bytes) -> CompressionResult:
    """Compress with the tight 1280px / 1.5 MB / 0.75 budget."""
    return compress(image, AGGRESSIVE_OPTIONS)


def format_bytes(n: int) -> str:
    """Human readable byte count (e.g. '2.5 MB')."""
    if n <= 0:
        return "0 Bytes"
    size = float(n)
    for unit in ("Bytes", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            if unit == "Bytes":
                return f"{int(size)} Bytes"
            return f"{round(size, 2):g} {unit}"
        size /= 1024
    return f"{n} Bytes"


def to_data_url(data: bytes, mime_type: str = "image/jpeg") -> str:
    """Encode bytes as a base64 data URL."""
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def from_data_url(data_url: str) -> tuple[bytes, str]:
    """
    Decode a base64 data URL.

    Returns:
        Tuple of (raw bytes, mime type)

    Raises:
        ValueError: If the string is not a base64 data URL
    """
    if not data_url.startswith("data:") or "," not in data_url:
        raise ValueError("Not a data URL")
    header, encoded = data_url.split(",", 1)
    if not header.endswith(";base64"):
        raise ValueError("Only base64 data URLs are supported")
    mime_type = header[len("data:"):-len(";base64")] or "application/octet-stream"
    try:
        return base64.b64decode(encoded, validate=True), mime_type
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e


def estimate_data_url_size(data_url: str) -> int:
    """Approximate decoded size of a data URL (base64 length x 3/4)."""
    encoded = data_url.split(",", 1)[1] if "," in data_url else data_url
    return len(encoded) * 3 // 4
