"""
Thumbnail Utility

Builds the small previews every captured item carries:
- Downscaled JPEG previews for photos, frames and image documents
- Drawn placeholder cards for PDFs and other non-image documents
- A drawn video card when no frame could be decoded

Uses PIL ImageDraw for the placeholder cards.
"""

import logging
from io import BytesIO
from pathlib import PurePath

import numpy as np
from PIL import Image, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

THUMBNAIL_MAX_PX = 320
THUMBNAIL_QUALITY = 70

# Placeholder card colors
CARD_BACKGROUND = (26, 26, 46)  # #1a1a2e
CARD_BORDER = (74, 74, 106)  # #4a4a6a
CARD_TEXT = (224, 224, 240)
CARD_SIZE = (200, 260)

# Cached font instance
_cached_font: "ImageFont.FreeTypeFont | ImageFont.ImageFont | None" = None


def _get_font(size: int = 28) -> "ImageFont.FreeTypeFont | ImageFont.ImageFont":
    """Get font for card labels, with caching and fallback."""
    global _cached_font
    if _cached_font is not None:
        return _cached_font

    try:
        _cached_font = ImageFont.truetype(
            "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf", size
        )
    except OSError:
        logger.debug("DejaVuSans-Bold not found, using PIL default font")
        _cached_font = ImageFont.load_default()

    return _cached_font


def frame_to_jpeg(frame: np.ndarray, quality: int = 85) -> bytes:
    """
    Encode an RGB frame as JPEG bytes.

    Args:
        frame: RGB numpy array (H, W, 3)
        quality: JPEG quality (1-100)
    """
    img = Image.fromarray(frame.astype(np.uint8))
    if img.mode != "RGB":
        img = img.convert("RGB")
    buf = BytesIO()
    img.save(buf, "JPEG", quality=quality)
    return buf.getvalue()


def make_thumbnail(
    image: bytes,
    max_px: int = THUMBNAIL_MAX_PX,
    quality: int = THUMBNAIL_QUALITY,
) -> bytes:
    """
    Downscale an encoded image to a JPEG preview.

    Raises:
        ValueError: If the bytes are not a decodable image
    """
    try:
        img = Image.open(BytesIO(image))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Cannot build thumbnail: {e}") from e

    img = ImageOps.exif_transpose(img).convert("RGB")
    img.thumbnail((max_px, max_px), Image.Resampling.LANCZOS)
    buf = BytesIO()
    img.save(buf, "JPEG", quality=quality)
    return buf.getvalue()


def _draw_card(label: str, caption: str) -> bytes:
    img = Image.new("RGB", CARD_SIZE, CARD_BACKGROUND)
    draw = ImageDraw.Draw(img)
    w, h = CARD_SIZE

    draw.rectangle([4, 4, w - 5, h - 5], outline=CARD_BORDER, width=3)
    # Folded corner
    draw.polygon([(w - 50, 4), (w - 5, 49), (w - 50, 49)], fill=CARD_BORDER)

    font = _get_font()
    text_bbox = draw.textbbox((0, 0), label, font=font)
    text_w = text_bbox[2] - text_bbox[0]
    text_h = text_bbox[3] - text_bbox[1]
    draw.text(((w - text_w) / 2, (h - text_h) / 2), label, fill=CARD_TEXT, font=font)

    if caption:
        caption = caption if len(caption) <= 22 else caption[:19] + "..."
        small = ImageFont.load_default()
        cap_bbox = draw.textbbox((0, 0), caption, font=small)
        cap_w = cap_bbox[2] - cap_bbox[0]
        draw.text(((w - cap_w) / 2, h - 40), caption, fill=CARD_BORDER, font=small)

    buf = BytesIO()
    img.save(buf, "JPEG", quality=THUMBNAIL_QUALITY)
    return buf.getvalue()


def document_placeholder(filename: str) -> bytes:
    """Placeholder card showing the file extension (e.g. 'PDF')."""
    suffix = PurePath(filename).suffix.lstrip(".").upper()
    return _draw_card(suffix or "DOC", filename)


def video_placeholder(name: str = "") -> bytes:
    """Placeholder card for a video whose frames could not be decoded."""
    return _draw_card("VIDEO", name)
