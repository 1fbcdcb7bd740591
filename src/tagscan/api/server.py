"""
FastAPI Server - REST API over the scan pipeline

Provides HTTP endpoints for:
- Health and status
- Capture session control (start, stop, mode, camera switch)
- Photo capture, video recording and file import
- Item selection and removal
- Ghost Mode toggling and listing details
- Submission to the analysis service

Security: Designed for localhost or a trusted kiosk network.
Do NOT expose directly to the internet without authentication.
"""

import logging
from datetime import datetime
from typing import Any

import psutil
import uvicorn
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from tagscan import __version__
from tagscan.camera.session import CaptureMode
from tagscan.errors import (
    AnalysisServiceError,
    CompressionError,
    DeviceAccessError,
    FrameExtractionError,
    GeolocationError,
    PayloadTooLargeError,
    SessionClosedError,
    SubmissionValidationError,
    TagScanError,
    UploadError,
)
from tagscan.processing.compression import from_data_url

logger = logging.getLogger(__name__)

# Exception type -> HTTP status
ERROR_STATUS: dict[type[TagScanError], int] = {
    SubmissionValidationError: 422,
    CompressionError: 422,
    PayloadTooLargeError: 413,
    DeviceAccessError: 503,
    GeolocationError: 503,
    SessionClosedError: 409,
    FrameExtractionError: 422,
    UploadError: 502,
    AnalysisServiceError: 502,
}


class StatusResponse(BaseModel):
    """Pipeline status response."""

    timestamp: str
    system: dict[str, Any]
    session: dict[str, Any] | None
    recorder: dict[str, Any] | None
    buffer: dict[str, Any] | None
    ghost: dict[str, Any] | None


class ActionResponse(BaseModel):
    """Action result response."""

    success: bool
    message: str
    timestamp: str


class SessionStartRequest(BaseModel):
    device_id: str | None = None
    mode: CaptureMode | None = None


class ModeRequest(BaseModel):
    mode: CaptureMode


class FileUploadRequest(BaseModel):
    """File import body; `data` is a base64 data URL."""

    name: str
    data: str
    as_document: bool = False


class GhostToggleRequest(BaseModel):
    enabled: bool


class GhostListingRequest(BaseModel):
    store_type: str | None = None
    store_name: str | None = None
    store_aisle: str | None = None
    shelf_price: float | None = None
    handling_hours: int | None = None


class SubmitRequest(BaseModel):
    owner_id: str
    token: str
    category: str = "general"
    subcategory: str = "general"


# Global component references
_pipeline = None


def set_components(pipeline=None) -> None:
    """Set reference to the scan pipeline."""
    global _pipeline
    _pipeline = pipeline


def _require_pipeline():
    if _pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline not available")
    return _pipeline


def _action(message: str, success: bool = True) -> ActionResponse:
    return ActionResponse(success=success, message=message, timestamp=datetime.now().isoformat())


def _error_status(error: TagScanError) -> int:
    for error_type in type(error).__mro__:
        if error_type in ERROR_STATUS:
            return ERROR_STATUS[error_type]
    return 500


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="TagScan API",
        description="Multi-modal capture and submission pipeline",
        version=__version__,
    )

    @app.exception_handler(TagScanError)
    async def tagscan_error_handler(request: Request, exc: TagScanError):
        status = _error_status(exc)
        logger.warning(f"{request.method} {request.url.path} -> {status}: {exc.message}")
        return JSONResponse(
            status_code=status,
            content={
                "error": type(exc).__name__,
                "detail": exc.message,
                "retriable": exc.retriable,
            },
        )

    # ==================== Status Endpoints ====================

    @app.get("/", response_model=dict)
    async def root():
        """Root endpoint - basic health check."""
        return {
            "service": "TagScan",
            "version": __version__,
            "status": "running",
            "timestamp": datetime.now().isoformat(),
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}

    @app.get("/status", response_model=StatusResponse)
    async def get_status():
        """Get full pipeline status."""
        pipeline = _pipeline
        status = pipeline.get_status() if pipeline else {}
        return StatusResponse(
            timestamp=datetime.now().isoformat(),
            system={
                "cpu_percent": psutil.cpu_percent(),
                "memory_percent": psutil.virtual_memory().percent,
            },
            session=status.get("session"),
            recorder=status.get("recorder"),
            buffer=status.get("buffer"),
            ghost=status.get("ghost"),
        )

    # ==================== Session Control ====================

    @app.post("/session/start", response_model=ActionResponse)
    async def start_session(request: SessionStartRequest | None = None):
        """Acquire the camera."""
        pipeline = _require_pipeline()
        request = request or SessionStartRequest()
        await pipeline.start_session(request.device_id, request.mode)
        device = pipeline.session.device
        return _action(f"Camera active: {device.label if device else 'unknown'}")

    @app.post("/session/stop", response_model=ActionResponse)
    async def stop_session():
        """Close the session and discard captured state."""
        pipeline = _require_pipeline()
        pipeline.stop_session()
        return _action("Session closed")

    @app.post("/session/mode", response_model=ActionResponse)
    async def switch_mode(request: ModeRequest):
        """Switch capture mode (image, barcode, video)."""
        pipeline = _require_pipeline()
        await pipeline.switch_mode(request.mode)
        return _action(f"Mode set to {request.mode.value}")

    @app.post("/session/switch-camera", response_model=ActionResponse)
    async def switch_camera():
        """Cycle to the next camera."""
        pipeline = _require_pipeline()
        await pipeline.switch_camera()
        device = pipeline.session.device
        return _action(f"Camera: {device.label if device else 'none'}")

    @app.get("/session/devices")
    async def list_devices():
        """Enumerate camera devices."""
        pipeline = _require_pipeline()
        return {"devices": [d.to_dict() for d in pipeline.session.list_devices()]}

    # ==================== Capture ====================

    @app.post("/capture/photo")
    async def capture_photo():
        """Capture the current frame as a photo item."""
        pipeline = _require_pipeline()
        item = await pipeline.capture_photo()
        return item.to_dict()

    @app.post("/capture/video/start", response_model=ActionResponse)
    async def start_video():
        """Start recording video."""
        pipeline = _require_pipeline()
        try:
            await pipeline.start_video_recording()
        except RuntimeError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return _action("Recording started")

    @app.post("/capture/video/stop")
    async def stop_video():
        """Stop recording and add the video item."""
        pipeline = _require_pipeline()
        try:
            item = await pipeline.stop_video_recording()
        except RuntimeError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return item.to_dict()

    # ==================== Items ====================

    @app.get("/items")
    async def list_items():
        """List captured items."""
        pipeline = _require_pipeline()
        return {
            "items": [item.to_dict() for item in pipeline.buffer],
            **pipeline.buffer.get_status(),
        }

    @app.get("/items/{item_id}/thumbnail")
    async def item_thumbnail(item_id: str):
        """Return an item's JPEG thumbnail."""
        pipeline = _require_pipeline()
        item = pipeline.buffer.get(item_id)
        if item is None:
            raise HTTPException(status_code=404, detail="Item not found")
        return Response(
            content=item.thumbnail,
            media_type="image/jpeg",
            headers={"Content-Disposition": f'inline; filename="{item_id}.jpg"'},
        )

    @app.post("/items/upload")
    async def upload_item(request: FileUploadRequest):
        """Import a photo or document from a base64 data URL."""
        pipeline = _require_pipeline()
        try:
            data, _ = from_data_url(request.data)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        item = await pipeline.upload_file(data, request.name, as_document=request.as_document)
        return item.to_dict()

    @app.post("/items/select-all", response_model=ActionResponse)
    async def select_all():
        pipeline = _require_pipeline()
        pipeline.select_all()
        return _action(f"Selected {len(pipeline.buffer)} item(s)")

    @app.post("/items/deselect-all", response_model=ActionResponse)
    async def deselect_all():
        pipeline = _require_pipeline()
        pipeline.deselect_all()
        return _action("All items deselected")

    @app.post("/items/{item_id}/toggle", response_model=ActionResponse)
    async def toggle_item(item_id: str):
        """Toggle an item's selection."""
        pipeline = _require_pipeline()
        if not pipeline.toggle_select(item_id):
            raise HTTPException(status_code=404, detail="Item not found")
        item = pipeline.buffer.get(item_id)
        return _action(f"{item.name} {'selected' if item.selected else 'deselected'}")

    @app.delete("/items/{item_id}", response_model=ActionResponse)
    async def delete_item(item_id: str):
        pipeline = _require_pipeline()
        if not pipeline.remove_item(item_id):
            raise HTTPException(status_code=404, detail="Item not found")
        return _action("Item removed")

    @app.delete("/items", response_model=ActionResponse)
    async def clear_items():
        pipeline = _require_pipeline()
        pipeline.clear_items()
        return _action("All items cleared")

    # ==================== Ghost Mode ====================

    @app.get("/ghost")
    async def ghost_status():
        pipeline = _require_pipeline()
        return pipeline.ghost.get_status()

    @app.post("/ghost")
    async def toggle_ghost(request: GhostToggleRequest):
        """Enable or disable Ghost Mode."""
        pipeline = _require_pipeline()
        return await pipeline.toggle_ghost_mode(request.enabled)

    @app.post("/ghost/store")
    async def update_ghost_listing(request: GhostListingRequest):
        """Update store details, shelf price and handling time."""
        pipeline = _require_pipeline()
        ghost = pipeline.ghost
        if not ghost.enabled:
            raise HTTPException(status_code=409, detail="Ghost Mode is not enabled")
        try:
            ghost.update_store(
                type=request.store_type, name=request.store_name, aisle=request.store_aisle
            )
            if request.shelf_price is not None:
                ghost.set_shelf_price(request.shelf_price)
            if request.handling_hours is not None:
                ghost.set_handling_hours(request.handling_hours)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return ghost.get_status()

    @app.post("/ghost/refresh")
    async def refresh_location():
        """Request a fresh location fix."""
        pipeline = _require_pipeline()
        if not pipeline.ghost.enabled:
            raise HTTPException(status_code=409, detail="Ghost Mode is not enabled")
        await pipeline.ghost.refresh_location()
        return pipeline.ghost.get_status()

    # ==================== Submission ====================

    @app.post("/submit")
    async def submit(request: SubmitRequest):
        """Upload originals and submit selected items for analysis."""
        pipeline = _require_pipeline()
        outcome = await pipeline.submit(
            owner_id=request.owner_id,
            token=request.token,
            category=request.category,
            subcategory=request.subcategory,
        )
        return outcome.to_dict()

    return app


async def start_server(host: str = "127.0.0.1", port: int = 8080, pipeline=None) -> None:
    """
    Start the API server.

    Args:
        host: Bind host
        port: Bind port
        pipeline: ScanPipeline instance
    """
    set_components(pipeline)
    app = create_app()

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
        access_log=True,
    )
    server = uvicorn.Server(config)

    logger.info(f"Starting API server on {host}:{port}")
    await server.serve()
