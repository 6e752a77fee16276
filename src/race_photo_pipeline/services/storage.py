"""Durable object storage interface and key layout."""

from pathlib import PurePosixPath
from typing import Protocol
from uuid import UUID


class StorageClient(Protocol):
    """Interface for binary object storage."""

    def put(self, data: bytes, key: str, content_type: str) -> str:
        """Store bytes under a key and return the key."""

    def get(self, key: str) -> bytes:
        """Return stored bytes; raises ``StorageObjectNotFoundError``."""

    def delete(self, key: str) -> None:
        """Remove a stored object."""


def original_key(event_id: UUID, filename: str) -> str:
    return f"events/{event_id}/originals/{filename}"


def web_key(event_id: UUID, filename: str) -> str:
    return f"events/{event_id}/web/{PurePosixPath(filename).stem}.webp"


def thumbnail_key(event_id: UUID, filename: str) -> str:
    return f"events/{event_id}/thumbs/wm_{PurePosixPath(filename).stem}.jpg"


def micro_thumbnail_key(event_id: UUID, filename: str) -> str:
    return f"events/{event_id}/thumbs/micro_{PurePosixPath(filename).stem}.jpg"


def face_crop_key(event_id: UUID, photo_id: UUID, face_index: int) -> str:
    return f"events/{event_id}/crops/{photo_id}_face{face_index}.webp"


WATERMARK_IMAGE_KEY = "platform/watermark.png"
