"""
Error taxonomy for the capture-and-submission pipeline.

Item-scoped errors (compression, frame extraction, per-item upload) are
caught at the item boundary. Session-scoped errors (camera access, final
submission) propagate to the caller.
"""


class TagScanError(Exception):
    """Base class for all pipeline errors."""

    retriable: bool = False

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class DeviceAccessError(TagScanError):
    """Camera permission denied, no device, or hardware failure. Fatal to the session."""


class SessionClosedError(TagScanError):
    """A pending camera acquisition was cancelled because the session closed."""


class CompressionError(TagScanError):
    """Input could not be decoded as an image. Aborts only the affected capture."""


class FrameExtractionError(TagScanError):
    """Recorded video could not be decoded into still frames."""


class UploadError(TagScanError):
    """Durable storage rejected or failed a single item upload."""

    retriable = True


class GeolocationError(TagScanError):
    """Location fix failed, was denied, or timed out."""

    retriable = True


class SubmissionValidationError(TagScanError):
    """Submission rejected before any network call (empty selection, Ghost not ready)."""


class PayloadTooLargeError(TagScanError):
    """Request exceeds the analysis service payload limit."""

    retriable = True

    def __init__(self, message: str = "", size_bytes: int | None = None):
        super().__init__(
            message or "Payload too large: reduce item count or size and retry"
        )
        self.size_bytes = size_bytes


class AnalysisServiceError(TagScanError):
    """Analysis service returned a non-2xx response."""

    def __init__(self, message: str = "", status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.retriable = status_code is not None and status_code >= 500
