"""
Media processing for TagScan.

Provides:
- Compression engine: size-bounded JPEG re-encoding
- FrameExtractor: sequential still-frame extraction from recorded video
- Thumbnail and placeholder card generation
"""

from .compression import (
    CompressionOptions,
    CompressionResult,
    aggressive_compress,
    compress,
    estimate_data_url_size,
    format_bytes,
    from_data_url,
    needs_compression,
    to_data_url,
)
from .frame_extractor import FrameExtractor, OpenCVVideoDecoder, VideoDecoder
from .thumbnails import document_placeholder, frame_to_jpeg, make_thumbnail, video_placeholder

__all__ = [
    "CompressionOptions",
    "CompressionResult",
    "compress",
    "aggressive_compress",
    "needs_compression",
    "format_bytes",
    "to_data_url",
    "from_data_url",
    "estimate_data_url_size",
    "FrameExtractor",
    "OpenCVVideoDecoder",
    "VideoDecoder",
    "make_thumbnail",
    "frame_to_jpeg",
    "document_placeholder",
    "video_placeholder",
]
