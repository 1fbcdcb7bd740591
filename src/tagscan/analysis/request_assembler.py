"""
Analysis Request Assembler

Reduces the selected items to their analysis-bound form and builds one
SubmissionRequest per submit call. Validation happens before anything
touches the network:
- the selection must not be empty
- an enabled Ghost Mode must be ready

Each payload is held under the per-item ceiling (re-compressed with the
tighter budget if needed) and the rendered request is checked against the
service's body limit.
"""

import json
import logging

from tagscan.errors import CompressionError, PayloadTooLargeError, SubmissionValidationError
from tagscan.ghost.ghost_mode import GhostMode
from tagscan.models import CapturedItem, ItemKind, SubmissionItem, SubmissionRequest
from tagscan.processing.compression import (
    CompressionOptions,
    compress,
    format_bytes,
    to_data_url,
)

logger = logging.getLogger(__name__)

MB = 1024 * 1024
PAYLOAD_WARNING_BYTES = 4 * MB


class RequestAssembler:
    """Builds SubmissionRequests from selected items."""

    def __init__(
        self,
        item_ceiling_mb: float = 2.0,
        tight_options: CompressionOptions | None = None,
        request_ceiling_mb: float = 4.5,
    ):
        self.item_ceiling_bytes = int(item_ceiling_mb * MB)
        self.tight_options = tight_options or CompressionOptions(max_size_mb=1.5, quality=0.75)
        self.request_ceiling_bytes = int(request_ceiling_mb * MB)

    def _bounded(self, data: bytes, name: str) -> bytes:
        """Re-compress a still over the per-item ceiling."""
        if len(data) <= self.item_ceiling_bytes:
            return data
        logger.warning(
            f"Re-compressing large payload for '{name}': {format_bytes(len(data))}"
        )
        return compress(data, self.tight_options).compressed

    def _submission_item(self, item: CapturedItem) -> SubmissionItem:
        metadata = item.metadata.to_dict()

        if item.kind == ItemKind.VIDEO:
            frames = item.metadata.video_frames
            if frames:
                stills = [self._bounded(f, item.name) for f in frames]
                payload, additional = stills[0], stills[1:]
            else:
                payload, additional = item.thumbnail, []
            return SubmissionItem(
                kind=item.kind,
                name=item.name,
                payload=to_data_url(payload),
                additional_frames=[to_data_url(f) for f in additional],
                metadata=metadata,
            )

        if item.content_type.startswith("image/"):
            try:
                data = self._bounded(item.payload, item.name)
                content_type = "image/jpeg" if data is not item.payload else item.content_type
            except CompressionError as e:
                logger.warning(f"Could not re-compress '{item.name}', sending as captured: {e}")
                data, content_type = item.payload, item.content_type
        else:
            data, content_type = item.payload, item.content_type

        return SubmissionItem(
            kind=item.kind,
            name=item.name,
            payload=to_data_url(data, content_type),
            metadata=metadata,
        )

    def build(
        self,
        selected_items: list[CapturedItem],
        durable_urls: list[str] | None = None,
        ghost: GhostMode | None = None,
        category: str = "general",
        subcategory: str = "general",
    ) -> SubmissionRequest:
        """
        Build the request for one submission.

        Raises:
            SubmissionValidationError: Empty selection, or Ghost Mode enabled but not ready
            PayloadTooLargeError: Rendered request exceeds the service body limit
        """
        self.validate(selected_items, ghost)

        items = [self._submission_item(item) for item in selected_items]
        request = SubmissionRequest(
            items=items,
            durable_urls=list(durable_urls or []),
            ghost=ghost.snapshot() if ghost is not None and ghost.is_ready() else None,
            category=category or "general",
            subcategory=subcategory or "general",
        )

        size = self.encoded_size(request)
        if size > self.request_ceiling_bytes:
            raise PayloadTooLargeError(
                f"Request is {format_bytes(size)}, limit is {format_bytes(self.request_ceiling_bytes)}: "
                "reduce item count or size and retry",
                size_bytes=size,
            )
        if size > PAYLOAD_WARNING_BYTES:
            logger.warning(f"Large payload ({format_bytes(size)}), analysis may take longer")

        logger.info(
            f"Assembled request: {len(items)} item(s), {len(request.durable_urls)} durable URL(s), "
            f"ghost={'yes' if request.ghost else 'no'}, {format_bytes(size)}"
        )
        return request

    @staticmethod
    def validate(selected_items: list[CapturedItem], ghost: GhostMode | None) -> None:
        if not selected_items:
            raise SubmissionValidationError("Select at least one item")
        if ghost is not None and ghost.enabled and not ghost.is_ready():
            raise SubmissionValidationError(
                "Complete ghost listing details: location, store name and shelf price"
            )

    @staticmethod
    def encoded_size(request: SubmissionRequest) -> int:
        return len(json.dumps(request.to_payload()).encode("utf-8"))


# Factory function
def _create_default_assembler() -> RequestAssembler:
    """Create request assembler from config."""
    from tagscan.config import compression_config

    return RequestAssembler(
        item_ceiling_mb=compression_config.item_ceiling_mb,
        tight_options=CompressionOptions(
            max_width_px=compression_config.max_width_px,
            max_height_px=compression_config.max_height_px,
            max_size_mb=compression_config.tight_max_size_mb,
            quality=compression_config.tight_quality,
        ),
        request_ceiling_mb=compression_config.request_ceiling_mb,
    )
