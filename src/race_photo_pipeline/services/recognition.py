"""Interfaces for the face-indexing and label-tagging collaborators."""

from typing import Protocol

from race_photo_pipeline.domain.photos import DetectedFace, DetectedLabel, FaceMatch


class FaceIndexClient(Protocol):
    """Interface for a face-recognition collection."""

    async def index_faces(
        self, image_bytes: bytes, external_id: str
    ) -> list[DetectedFace]:
        """Index faces of an image under an external id."""

    async def search_faces(
        self, image_bytes: bytes, max_faces: int, threshold: float
    ) -> list[FaceMatch]:
        """Return indexed faces similar to the largest face of an image."""


class LabelClient(Protocol):
    """Interface for generic object/label detection."""

    async def detect_labels(
        self, image_bytes: bytes, max_labels: int, min_confidence: float
    ) -> list[DetectedLabel]:
        """Return labels at or above ``min_confidence``."""


def parse_external_id(external_id: str) -> tuple[str, str] | None:
    """Split an ``<event_id>:<photo_id>`` face external id."""
    parts = external_id.split(":")
    if len(parts) != 2 or not all(parts):
        return None
    return parts[0], parts[1]
