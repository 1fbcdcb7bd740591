"""
Scan Pipeline - caller-facing capture and submission contract

Wires the capture session, compression, frame extraction, item buffer,
Ghost Mode, durable uploads and the analysis service together.

Closing the session is the single cancellation signal: it releases the
camera, aborts an in-progress recording, discards Ghost Mode drafts and
clears the captured items.
"""

import asyncio
import logging
import mimetypes
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tagscan.analysis.client import AnalysisClient
from tagscan.analysis.request_assembler import RequestAssembler
from tagscan.analysis.result import AnalysisResult
from tagscan.camera.recorder import VideoRecorder
from tagscan.camera.session import CaptureMode, CaptureSessionManager
from tagscan.capture.item_buffer import ItemBuffer
from tagscan.errors import (
    CompressionError,
    DeviceAccessError,
    FrameExtractionError,
    SubmissionValidationError,
)
from tagscan.ghost.ghost_mode import GhostMode
from tagscan.models import (
    CapturedItem,
    DocumentType,
    GhostOutcome,
    ItemKind,
    ItemMetadata,
    SubmissionRequest,
)
from tagscan.processing.compression import CompressionOptions, CompressionResult, compress
from tagscan.processing.frame_extractor import FrameExtractor
from tagscan.processing.thumbnails import document_placeholder, make_thumbnail, video_placeholder
from tagscan.storage.durable_storage import DurableStorage
from tagscan.storage.upload_orchestrator import ProgressCallback, UploadOrchestrator

logger = logging.getLogger(__name__)

# Imported photos use a slightly tighter budget than camera captures
IMPORT_OPTIONS = CompressionOptions(max_size_mb=2.0, quality=0.85)
FRAME_OPTIONS = CompressionOptions(max_width_px=1280, max_height_px=1280, quality=0.8)


def _payload_type(result: CompressionResult, mime_type: str) -> str:
    """Skipped inputs keep their own format, everything else is re-encoded JPEG."""
    if result.skipped and mime_type.startswith("image/"):
        return mime_type
    return "image/jpeg"


@dataclass
class SubmissionOutcome:
    """Result of one submit() call."""

    request: SubmissionRequest
    result: AnalysisResult
    ghost_outcome: GhostOutcome | None = None
    upload_failures: int = 0
    ghost_data: dict[str, Any] | None = None
    durable_urls: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "result": self.result.model_dump(mode="json", exclude={"raw"}),
            "ghost_outcome": self.ghost_outcome.to_dict() if self.ghost_outcome else None,
            "ghost": self.ghost_data,
            "upload_failures": self.upload_failures,
            "durable_urls": list(self.durable_urls),
            "item_count": len(self.request.items),
        }


class ScanPipeline:
    """
    Capture-and-submission pipeline.

    All components are injected; use create_pipeline() to build one from
    configuration.
    """

    def __init__(
        self,
        session: CaptureSessionManager,
        buffer: ItemBuffer,
        extractor: FrameExtractor,
        recorder: VideoRecorder,
        ghost: GhostMode,
        storage: DurableStorage,
        assembler: RequestAssembler,
        analysis: AnalysisClient,
        capture_options: CompressionOptions | None = None,
        frame_options: CompressionOptions = FRAME_OPTIONS,
        frame_count: int = 5,
    ):
        self.session = session
        self.buffer = buffer
        self.extractor = extractor
        self.recorder = recorder
        self.ghost = ghost
        self.storage = storage
        self.uploader = UploadOrchestrator(storage)
        self.assembler = assembler
        self.analysis = analysis
        self.capture_options = capture_options or CompressionOptions()
        self.frame_options = frame_options
        self.frame_count = frame_count

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="compress")
        self._submitting = False
        self._last_outcome: SubmissionOutcome | None = None

    async def _run(self, func, *args):
        return await asyncio.get_running_loop().run_in_executor(self._executor, func, *args)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def start_session(
        self, device_id: str | None = None, mode: CaptureMode | None = None
    ) -> None:
        """Acquire the camera. On DeviceAccessError the camera is released."""
        try:
            await self.session.start(device_id, mode)
        except DeviceAccessError:
            self.session.stop()
            raise

    def stop_session(self) -> None:
        """Close the session: camera, recording, Ghost draft and items."""
        self.recorder.abort()
        self.session.stop()
        self.ghost.close()
        self.buffer.clear()
        logger.info("Scan session closed")

    async def switch_mode(self, mode: CaptureMode) -> None:
        if mode != CaptureMode.VIDEO and self.recorder.is_recording:
            self.recorder.abort()
        await self.session.switch_mode(mode)

    async def switch_device(self, device_id: str) -> None:
        if self.recorder.is_recording:
            self.recorder.abort()
        await self.session.switch_device(device_id)

    async def switch_camera(self) -> None:
        if self.recorder.is_recording:
            self.recorder.abort()
        await self.session.switch_camera()

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def _next_name(self, kind: ItemKind, label: str) -> str:
        return f"{label} {self.buffer.counts_by_kind().get(kind.value, 0) + 1}"

    async def capture_photo(self) -> CapturedItem:
        """
        Capture the current frame as a photo item.

        Raises:
            DeviceAccessError: Camera not active
            CompressionError: Captured frame could not be processed
        """
        original = await self.session.capture_frame()
        try:
            result = await self._run(compress, original, self.capture_options)
            thumbnail = await self._run(make_thumbnail, result.compressed)
        except (CompressionError, ValueError) as e:
            logger.error(f"Photo capture discarded: {e}")
            raise CompressionError(f"Photo capture failed: {e}") from e

        item = CapturedItem(
            kind=ItemKind.PHOTO,
            payload=result.compressed,
            thumbnail=thumbnail,
            name=self._next_name(ItemKind.PHOTO, "Photo"),
            original_payload=original,
            metadata=ItemMetadata(
                original_size=result.original_size,
                compressed_size=result.compressed_size,
            ),
        )
        self.buffer.add(item)
        logger.info(f"Captured {item}")
        return item

    async def start_video_recording(self) -> None:
        """Switch to video mode if needed and start recording."""
        if self.session.mode != CaptureMode.VIDEO:
            await self.session.switch_mode(CaptureMode.VIDEO)
        await self.recorder.start()

    async def stop_video_recording(self) -> CapturedItem:
        """
        Stop recording and turn the clip into a video item.

        The item's payload is always a still frame. If no frame can be
        decoded the item carries a placeholder thumbnail as its payload.
        """
        video = await self.recorder.stop()
        frames = await self.extractor.extract_frames(video.blob, self.frame_count)

        compressed_frames = []
        for frame in frames:
            try:
                compressed_frames.append((await self._run(compress, frame, self.frame_options)).compressed)
            except CompressionError as e:
                logger.warning(f"Dropping undecodable frame: {e}")

        name = self._next_name(ItemKind.VIDEO, "Video")
        try:
            thumbnail = await self.extractor.thumbnail(video.blob)
        except FrameExtractionError as e:
            logger.warning(f"Video thumbnail failed: {e}")
            if compressed_frames:
                thumbnail = await self._run(make_thumbnail, compressed_frames[0])
            else:
                thumbnail = await self._run(video_placeholder, name)

        item = CapturedItem(
            kind=ItemKind.VIDEO,
            payload=compressed_frames[0] if compressed_frames else thumbnail,
            thumbnail=thumbnail,
            name=name,
            metadata=ItemMetadata(
                video_frames=compressed_frames,
                original_size=len(video.blob),
                compressed_size=sum(len(f) for f in compressed_frames),
                duration_seconds=video.duration_seconds,
            ),
        )
        self.buffer.add(item)
        logger.info(f"Captured {item} with {len(compressed_frames)} frame(s)")
        return item

    async def upload_file(
        self,
        source: str | Path | bytes,
        name: str | None = None,
        as_document: bool = False,
    ) -> CapturedItem:
        """
        Import a file as a photo or supporting document.

        Args:
            source: File path or raw bytes
            name: Display name (defaults to the file name)
            as_document: Treat the file as a supporting document

        Raises:
            CompressionError: A photo import is not a decodable image
        """
        if isinstance(source, (str, Path)):
            path = Path(source)
            data = await asyncio.get_running_loop().run_in_executor(None, path.read_bytes)
            name = name or path.name
        else:
            data = source
        if not name:
            if as_document:
                name = self._next_name(ItemKind.DOCUMENT, "Document")
            else:
                name = self._next_name(ItemKind.PHOTO, "Photo")
        mime_type = mimetypes.guess_type(name)[0] or "application/octet-stream"

        if as_document:
            item = await self._document_item(data, name, mime_type)
        else:
            result = await self._run(compress, data, IMPORT_OPTIONS)
            thumbnail = await self._run(make_thumbnail, result.compressed)
            item = CapturedItem(
                kind=ItemKind.PHOTO,
                payload=result.compressed,
                thumbnail=thumbnail,
                name=name,
                original_payload=data,
                content_type=_payload_type(result, mime_type),
                original_content_type=mime_type if mime_type.startswith("image/") else "image/jpeg",
                metadata=ItemMetadata(
                    original_size=result.original_size,
                    compressed_size=result.compressed_size,
                ),
            )

        self.buffer.add(item)
        logger.info(f"Imported {item}")
        return item

    async def _document_item(self, data: bytes, name: str, mime_type: str) -> CapturedItem:
        document_type = DocumentType.from_filename(name)
        kind = ItemKind.CERTIFICATE if document_type == DocumentType.CERTIFICATE else ItemKind.DOCUMENT
        metadata = ItemMetadata(
            document_type=document_type,
            description=f"{document_type.value} document",
            original_size=len(data),
        )

        if mime_type.startswith("image/"):
            result = await self._run(compress, data, self.capture_options)
            thumbnail = await self._run(make_thumbnail, result.compressed)
            metadata.compressed_size = result.compressed_size
            return CapturedItem(
                kind=kind,
                payload=result.compressed,
                thumbnail=thumbnail,
                name=name,
                original_payload=data,
                content_type=_payload_type(result, mime_type),
                original_content_type=mime_type,
                metadata=metadata,
            )

        thumbnail = await self._run(document_placeholder, name)
        return CapturedItem(
            kind=kind,
            payload=data,
            thumbnail=thumbnail,
            name=name,
            content_type=mime_type,
            metadata=metadata,
        )

    # ------------------------------------------------------------------
    # Item selection
    # ------------------------------------------------------------------

    def toggle_select(self, item_id: str) -> bool:
        return self.buffer.toggle_select(item_id)

    def select_all(self) -> None:
        self.buffer.select_all()

    def deselect_all(self) -> None:
        self.buffer.deselect_all()

    def remove_item(self, item_id: str) -> bool:
        return self.buffer.remove(item_id)

    def clear_items(self) -> None:
        self.buffer.clear()

    # ------------------------------------------------------------------
    # Ghost Mode
    # ------------------------------------------------------------------

    async def toggle_ghost_mode(self, enabled: bool) -> dict:
        await self.ghost.toggle(enabled)
        return self.ghost.get_status()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self,
        owner_id: str,
        token: str,
        category: str = "general",
        subcategory: str = "general",
        on_progress: ProgressCallback | None = None,
    ) -> SubmissionOutcome:
        """
        Upload originals and submit the selected items for analysis.

        Validation and the request size check run before any network call,
        so a rejected submission persists nothing. Per-item upload failures
        are counted in the outcome, not raised.

        Raises:
            SubmissionValidationError: Empty selection, Ghost Mode not ready,
                or missing credentials
            PayloadTooLargeError: Request over the service limit
            AnalysisServiceError: Analysis service failure
        """
        selected = self.buffer.selected_items()
        self.assembler.validate(selected, self.ghost)
        if not owner_id or not token:
            raise SubmissionValidationError("Please sign in")
        if self._submitting:
            raise SubmissionValidationError("A submission is already in progress")

        self._submitting = True
        try:
            # Size pre-flight runs before anything is persisted
            request = await self._run(
                self.assembler.build, selected, None, self.ghost, category, subcategory
            )

            if self.storage.enabled:
                urls = await self.uploader.upload_all(selected, owner_id, on_progress, token=token)
                upload_failures = self.uploader.last_failures
            else:
                logger.warning("Durable storage disabled, submitting without original URLs")
                urls = []
                upload_failures = 0
            request.durable_urls = list(urls)
            if upload_failures:
                logger.warning(f"{upload_failures} original(s) failed to upload")

            result = await self.analysis.analyze(request, token)

            ghost_outcome = None
            ghost_data = None
            if request.ghost is not None:
                ghost_outcome = request.ghost.compute_outcome(result.estimated_value)
                ghost_data = self.ghost.build_ghost_data(result.estimated_value)

            outcome = SubmissionOutcome(
                request=request,
                result=result,
                ghost_outcome=ghost_outcome,
                upload_failures=upload_failures,
                ghost_data=ghost_data,
                durable_urls=list(urls),
            )
            self._last_outcome = outcome
            return outcome
        finally:
            self._submitting = False

    @property
    def last_outcome(self) -> SubmissionOutcome | None:
        return self._last_outcome

    def get_status(self) -> dict:
        """Get full pipeline status."""
        return {
            "session": self.session.get_status(),
            "recorder": self.recorder.get_status(),
            "buffer": self.buffer.get_status(),
            "ghost": self.ghost.get_status(),
            "storage": self.storage.get_status(),
            "analysis": self.analysis.get_status(),
            "submitting": self._submitting,
        }

    async def close(self) -> None:
        """Release every resource held by the pipeline."""
        self.stop_session()
        self.recorder.cleanup()
        self.session.cleanup()
        self.extractor.close()
        self._executor.shutdown(wait=False)
        await self.storage.aclose()
        await self.analysis.aclose()
        logger.info("Pipeline closed")


def frame_options_from(video) -> CompressionOptions:
    """Compression options for extracted video frames."""
    return CompressionOptions(
        max_width_px=video.frame_max_width_px,
        max_height_px=video.frame_max_height_px,
        quality=video.frame_quality,
    )


def create_pipeline() -> ScanPipeline:
    """Build a pipeline from configuration."""
    from tagscan.analysis.client import _create_default_client
    from tagscan.analysis.request_assembler import _create_default_assembler
    from tagscan.camera.session import _create_default_session
    from tagscan.config import buffer_config, compression_config, video_config
    from tagscan.ghost.ghost_mode import _create_default_ghost_mode
    from tagscan.storage.durable_storage import _create_default_storage

    session = _create_default_session()
    return ScanPipeline(
        session=session,
        buffer=ItemBuffer(max_items=buffer_config.max_items),
        extractor=FrameExtractor(),
        recorder=VideoRecorder(
            session,
            fps=video_config.fps,
            max_duration_seconds=video_config.max_duration_seconds,
        ),
        ghost=_create_default_ghost_mode(),
        storage=_create_default_storage(),
        assembler=_create_default_assembler(),
        analysis=_create_default_client(),
        capture_options=CompressionOptions(
            max_width_px=compression_config.max_width_px,
            max_height_px=compression_config.max_height_px,
            max_size_mb=compression_config.max_size_mb,
            quality=compression_config.quality,
        ),
        frame_options=frame_options_from(video_config),
        frame_count=video_config.frame_count,
    )
