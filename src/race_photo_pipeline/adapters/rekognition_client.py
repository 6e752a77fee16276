"""AWS Rekognition adapters for bib text, faces and labels.

boto3 is synchronous, so every call runs in a worker thread.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import boto3

from race_photo_pipeline.domain.photos import (
    BoundingBox,
    DetectedFace,
    DetectedLabel,
    FaceMatch,
)
from race_photo_pipeline.domain.pipeline import BibDetection
from race_photo_pipeline.services.ocr import (
    BibReader,
    average_confidence,
    extract_bib_numbers,
)
from race_photo_pipeline.services.recognition import FaceIndexClient, LabelClient

_logger = logging.getLogger(__name__)

PROVIDER = "aws-rekognition"
MAX_FACES = 10


def create_rekognition(region: str) -> Any:
    """Create a boto3 Rekognition client for a region."""
    return boto3.client("rekognition", region_name=region)


@dataclass
class RekognitionBibReader(BibReader):
    """Bib reader backed by Rekognition DetectText."""

    client: Any

    async def detect_bibs(
        self, image_bytes: bytes, hints: frozenset[str] | None = None
    ) -> BibDetection:
        """Detect LINE text and keep bib-like numbers."""
        response = await asyncio.to_thread(
            self.client.detect_text, Image={"Bytes": image_bytes}
        )
        lines = [
            detection
            for detection in response.get("TextDetections", [])
            if detection.get("Type") == "LINE"
        ]
        numbers = extract_bib_numbers(
            [line.get("DetectedText", "") for line in lines], hints
        )
        confidence = average_confidence(
            line.get("Confidence", 0.0)
            for line in lines
            if any(number in line.get("DetectedText", "") for number in numbers)
        )
        return BibDetection(numbers=numbers, confidence=confidence, provider=PROVIDER)


@dataclass
class RekognitionFaceIndex(FaceIndexClient):
    """Indexes faces into a Rekognition collection."""

    client: Any
    collection_id: str
    _collection_ready: bool = field(default=False, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    async def index_faces(
        self, image_bytes: bytes, external_id: str
    ) -> list[DetectedFace]:
        """Index up to ``MAX_FACES`` faces of an image."""
        await self._ensure_collection()
        response = await asyncio.to_thread(
            self.client.index_faces,
            CollectionId=self.collection_id,
            Image={"Bytes": image_bytes},
            ExternalImageId=external_id,
            MaxFaces=MAX_FACES,
            QualityFilter="AUTO",
            DetectionAttributes=["DEFAULT"],
        )
        faces = []
        for record in response.get("FaceRecords", []):
            face = record.get("Face", {})
            box = face.get("BoundingBox", {})
            faces.append(
                DetectedFace(
                    face_id=face["FaceId"],
                    confidence=float(face.get("Confidence", 0.0)),
                    bounding_box=BoundingBox(
                        left=float(box.get("Left", 0.0)),
                        top=float(box.get("Top", 0.0)),
                        width=float(box.get("Width", 0.0)),
                        height=float(box.get("Height", 0.0)),
                    ),
                )
            )
        return faces

    async def search_faces(
        self, image_bytes: bytes, max_faces: int, threshold: float
    ) -> list[FaceMatch]:
        """Search the collection with the largest face of an image."""
        await self._ensure_collection()
        try:
            response = await asyncio.to_thread(
                self.client.search_faces_by_image,
                CollectionId=self.collection_id,
                Image={"Bytes": image_bytes},
                MaxFaces=max_faces,
                FaceMatchThreshold=threshold,
            )
        except self.client.exceptions.InvalidParameterException:
            return []
        return [
            FaceMatch(
                face_id=match.get("Face", {}).get("FaceId", ""),
                external_image_id=match.get("Face", {}).get("ExternalImageId", ""),
                similarity=float(match.get("Similarity", 0.0)),
            )
            for match in response.get("FaceMatches", [])
        ]

    async def _ensure_collection(self) -> None:
        async with self._lock:
            if self._collection_ready:
                return
            try:
                await asyncio.to_thread(
                    self.client.describe_collection, CollectionId=self.collection_id
                )
            except self.client.exceptions.ResourceNotFoundException:
                _logger.info("Creating face collection %s", self.collection_id)
                await asyncio.to_thread(
                    self.client.create_collection, CollectionId=self.collection_id
                )
            self._collection_ready = True


@dataclass
class RekognitionLabelClient(LabelClient):
    """Generic label detection backed by Rekognition DetectLabels."""

    client: Any

    async def detect_labels(
        self, image_bytes: bytes, max_labels: int, min_confidence: float
    ) -> list[DetectedLabel]:
        """Return labels at or above ``min_confidence``."""
        response = await asyncio.to_thread(
            self.client.detect_labels,
            Image={"Bytes": image_bytes},
            MaxLabels=max_labels,
            MinConfidence=min_confidence,
        )
        return [
            DetectedLabel(name=label["Name"], confidence=float(label.get("Confidence", 0.0)))
            for label in response.get("Labels", [])
        ]
