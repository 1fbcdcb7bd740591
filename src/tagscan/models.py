"""
Data structures for captured items, Ghost Mode listings and submissions.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

# Buffer capacity shared by the item buffer and the file-import path
MAX_ITEMS = 15

HANDLING_HOURS_CHOICES = (12, 24, 48, 72)


class ItemKind(Enum):
    """Kind of captured evidence."""

    PHOTO = "photo"
    VIDEO = "video"
    DOCUMENT = "document"
    CERTIFICATE = "certificate"


class DocumentType(Enum):
    """Supporting document classification."""

    CERTIFICATE = "certificate"
    GRADING = "grading"
    APPRAISAL = "appraisal"
    RECEIPT = "receipt"
    AUTHENTICITY = "authenticity"
    OTHER = "other"

    @classmethod
    def from_filename(cls, filename: str) -> "DocumentType":
        """Guess the document type from keywords in a file name."""
        lower = filename.lower()
        if "cert" in lower or "coa" in lower:
            return cls.CERTIFICATE
        if "grade" in lower or "psa" in lower or "bgs" in lower:
            return cls.GRADING
        if "apprais" in lower:
            return cls.APPRAISAL
        if "receipt" in lower or "invoice" in lower:
            return cls.RECEIPT
        if "auth" in lower:
            return cls.AUTHENTICITY
        return cls.OTHER


class StoreType(Enum):
    """Where a Ghost Mode item was found."""

    THRIFT = "thrift"
    ANTIQUE = "antique"
    ESTATE = "estate"
    GARAGE = "garage"
    FLEA = "flea"
    PAWN = "pawn"
    AUCTION = "auction"
    RETAIL = "retail"
    OTHER = "other"


class Velocity(Enum):
    """Resale velocity tier derived from margin percent."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_margin_percent(cls, margin_percent: float) -> "Velocity":
        if margin_percent > 100:
            return cls.HIGH
        if margin_percent > 50:
            return cls.MEDIUM
        return cls.LOW


@dataclass
class ItemMetadata:
    """Optional structured extras attached to a captured item."""

    document_type: DocumentType | None = None
    video_frames: list[bytes] = field(default_factory=list)
    original_size: int | None = None
    compressed_size: int | None = None
    duration_seconds: float | None = None
    description: str = ""
    extracted_text: str = ""
    barcodes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the analysis request (frames travel separately)."""
        data: dict[str, Any] = {
            "extractedText": self.extracted_text,
            "barcodes": list(self.barcodes),
        }
        if self.document_type is not None:
            data["documentType"] = self.document_type.value
        if self.original_size is not None:
            data["originalSize"] = self.original_size
        if self.compressed_size is not None:
            data["compressedSize"] = self.compressed_size
        if self.duration_seconds is not None:
            data["durationSeconds"] = round(self.duration_seconds, 2)
        if self.video_frames:
            data["frameCount"] = len(self.video_frames)
        if self.description:
            data["description"] = self.description
        return data


@dataclass
class CapturedItem:
    """One piece of captured evidence held in the item buffer."""

    kind: ItemKind
    payload: bytes  # Compressed, analysis-bound
    thumbnail: bytes
    name: str
    original_payload: bytes | None = None  # As captured, for durable storage
    content_type: str = "image/jpeg"
    original_content_type: str | None = None
    selected: bool = True
    metadata: ItemMetadata = field(default_factory=ItemMetadata)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not self.thumbnail:
            raise ValueError(f"Captured item '{self.name}' has an empty thumbnail")

    @property
    def upload_payload(self) -> bytes:
        """Bytes to persist in durable storage (original if available)."""
        return self.original_payload or self.payload

    @property
    def upload_content_type(self) -> str:
        if self.original_payload:
            return self.original_content_type or self.content_type
        return self.content_type

    def to_dict(self) -> dict[str, Any]:
        """Summary for status endpoints (no media bytes)."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "name": self.name,
            "selected": self.selected,
            "content_type": self.content_type,
            "payload_bytes": len(self.payload),
            "original_bytes": len(self.original_payload) if self.original_payload else None,
            "thumbnail_bytes": len(self.thumbnail),
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata.to_dict(),
        }

    def __str__(self) -> str:
        state = "selected" if self.selected else "unselected"
        return f"{self.kind.value} '{self.name}' ({len(self.payload)} bytes, {state})"


@dataclass(frozen=True)
class GhostLocation:
    """Single geolocation fix."""

    lat: float
    lng: float
    accuracy_meters: float
    captured_at_epoch_ms: int

    def age_ms(self, now_epoch_ms: int) -> int:
        return now_epoch_ms - self.captured_at_epoch_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "lat": self.lat,
            "lng": self.lng,
            "accuracy": self.accuracy_meters,
            "capturedAt": datetime.fromtimestamp(self.captured_at_epoch_ms / 1000).isoformat(),
        }


@dataclass
class StoreInfo:
    """Store details entered by the user."""

    type: StoreType = StoreType.THRIFT
    name: str = ""
    aisle: str | None = None


@dataclass(frozen=True)
class GhostOutcome:
    """Margin and velocity computed once the valuation is known."""

    estimated_value: float
    shelf_price: float
    estimated_margin: float
    margin_percent: float
    velocity: Velocity

    def to_dict(self) -> dict[str, Any]:
        return {
            "estimatedValue": self.estimated_value,
            "shelfPrice": self.shelf_price,
            "estimatedMargin": self.estimated_margin,
            "marginPercent": round(self.margin_percent, 2),
            "velocity": self.velocity.value,
        }


@dataclass
class GhostListing:
    """Arbitrage overlay draft, alive only while Ghost Mode is enabled."""

    store: StoreInfo = field(default_factory=StoreInfo)
    location: GhostLocation | None = None
    shelf_price: float = 0.0
    handling_hours: int = 48
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if self.shelf_price < 0:
            raise ValueError(f"shelf_price must be non-negative, got {self.shelf_price}")
        if self.handling_hours not in HANDLING_HOURS_CHOICES:
            raise ValueError(
                f"handling_hours must be one of {HANDLING_HOURS_CHOICES}, got {self.handling_hours}"
            )

    @property
    def expires_at(self) -> datetime:
        return self.created_at + timedelta(hours=self.handling_hours)

    def is_ready(self) -> bool:
        """True when location, store name and a positive shelf price are all present."""
        return (
            self.location is not None
            and bool(self.store.name.strip())
            and self.shelf_price > 0
        )

    def compute_outcome(self, estimated_value: float | None) -> GhostOutcome | None:
        """
        Derive margin and velocity for a known valuation.

        Args:
            estimated_value: Valuation from the analysis service (None if unknown)

        Returns:
            GhostOutcome, or None if the listing is not ready or value unknown
        """
        if estimated_value is None or not self.is_ready():
            return None

        margin = estimated_value - self.shelf_price
        margin_percent = (margin / self.shelf_price) * 100 if self.shelf_price > 0 else 0.0
        return GhostOutcome(
            estimated_value=estimated_value,
            shelf_price=self.shelf_price,
            estimated_margin=margin,
            margin_percent=margin_percent,
            velocity=Velocity.from_margin_percent(margin_percent),
        )

    def snapshot(self) -> "GhostListing":
        """Independent copy safe to embed in a submission."""
        return replace(self, store=replace(self.store))

    def to_request_dict(self) -> dict[str, Any]:
        """Wire format for the analysis request `ghostMode` field."""
        data: dict[str, Any] = {
            "shelfPrice": self.shelf_price,
            "handlingHours": self.handling_hours,
            "storeType": self.store.type.value,
            "storeName": self.store.name.strip(),
            "location": self.location.to_dict() if self.location else None,
        }
        if self.store.aisle:
            data["storeAisle"] = self.store.aisle
        return data


@dataclass
class SubmissionItem:
    """One item reduced to its analysis-bound form (data URLs)."""

    kind: ItemKind
    name: str
    payload: str
    additional_frames: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "name": self.name,
            "data": self.payload,
            "additionalFrames": list(self.additional_frames),
            "metadata": self.metadata,
        }


@dataclass
class SubmissionRequest:
    """Ephemeral request built once per submit call."""

    items: list[SubmissionItem]
    durable_urls: list[str] = field(default_factory=list)
    ghost: GhostListing | None = None
    category: str = "general"
    subcategory: str = "general"

    def to_payload(self) -> dict[str, Any]:
        """Render the analysis service request body."""
        payload: dict[str, Any] = {
            "scanType": "multi-modal",
            "originalImageUrls": list(self.durable_urls),
            "items": [item.to_dict() for item in self.items],
            "category_id": self.category,
            "subcategory_id": self.subcategory,
        }
        if self.ghost is not None:
            payload["ghostMode"] = self.ghost.to_request_dict()
        return payload


@dataclass(frozen=True)
class UploadProgress:
    """Progress report emitted by the upload orchestrator."""

    uploaded: int
    total: int
    current_name: str | None = None
