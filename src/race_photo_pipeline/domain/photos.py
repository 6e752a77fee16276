"""Domain models for events, photos and their analysis rows."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class EventRecord:
    """Race event owning uploaded photos."""

    id: UUID
    user_id: UUID
    name: str
    upload_started_at: datetime | None = None
    upload_completed_at: datetime | None = None


@dataclass(frozen=True)
class PhotoRecord:
    """Represents a stored photo and its analysis fields."""

    id: UUID
    event_id: UUID
    filename: str
    original_name: str
    storage_key: str
    web_key: str | None
    credit_deducted: bool = False
    credit_refunded: bool = False
    quality_score: int | None = None
    is_blurry: bool | None = None
    auto_edited: bool = False
    thumbnail_key: str | None = None
    micro_thumbnail_key: str | None = None
    ocr_provider: str | None = None
    face_indexed: bool = False
    labels: list[dict[str, object]] | None = None
    processed_at: datetime | None = None


@dataclass
class PhotoUpdate:
    """Pending analysis fields collected while a photo moves through stages."""

    quality_score: int | None = None
    is_blurry: bool | None = None
    auto_edited: bool | None = None
    thumbnail_key: str | None = None
    micro_thumbnail_key: str | None = None
    ocr_provider: str | None = None
    face_indexed: bool | None = None
    labels: list[dict[str, object]] | None = None
    processed_at: datetime | None = None

    def as_fields(self) -> dict[str, object]:
        """Return only the fields that were set."""
        return {
            name: value
            for name, value in self.__dict__.items()
            if value is not None
        }


@dataclass(frozen=True)
class BoundingBox:
    """Relative (0-1) face bounding box."""

    left: float
    top: float
    width: float
    height: float


@dataclass(frozen=True)
class DetectedFace:
    """Face returned by the face-indexing collaborator."""

    face_id: str
    confidence: float
    bounding_box: BoundingBox


@dataclass(frozen=True)
class FaceMatch:
    """Indexed face similar to a searched image."""

    face_id: str
    external_image_id: str
    similarity: float


@dataclass(frozen=True)
class PhotoFaceRecord:
    """Persisted face row for a photo."""

    id: UUID
    photo_id: UUID
    face_id: str
    confidence: float
    bounding_box: BoundingBox
    crop_key: str | None = None


@dataclass(frozen=True)
class DetectedLabel:
    """Generic object label with confidence (0-100)."""

    name: str
    confidence: float


@dataclass(frozen=True)
class BibNumberRecord:
    """Detected bib number attached to a photo."""

    photo_id: UUID
    number: str
    confidence: float
    source: str


@dataclass(frozen=True)
class WatermarkSettings:
    """Operator watermark configuration."""

    image_key: str | None = None
    opacity: float = 0.3


@dataclass(frozen=True)
class UploadedFile:
    """Raw file received from a client."""

    filename: str
    content: bytes
    content_type: str | None = None


@dataclass(frozen=True)
class PreparedImage:
    """Derived copies of an uploaded image ready for storage and analysis."""

    jpeg: bytes
    web: bytes
    width: int
    height: int
