"""Supabase-backed photo repository."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from supabase import Client

from race_photo_pipeline.domain.photos import (
    BoundingBox,
    DetectedFace,
    PhotoFaceRecord,
    PhotoRecord,
)
from race_photo_pipeline.services.pipeline import PhotoRepository

_PHOTO_COLUMNS = (
    "id, event_id, filename, original_name, storage_key, web_key, "
    "credit_deducted, credit_refunded, quality_score, is_blurry, auto_edited, "
    "thumbnail_key, micro_thumbnail_key, ocr_provider, face_indexed, labels, "
    "processed_at"
)


@dataclass
class SupabasePhotoRepository(PhotoRepository):
    """Supabase implementation for photos, bib numbers and faces."""

    client: Client

    def create_photo(  # noqa: PLR0913
        self,
        event_id: UUID,
        filename: str,
        original_name: str,
        storage_key: str,
        web_key: str | None,
        credit_deducted: bool,
    ) -> PhotoRecord:
        """Create a photo row and return it."""
        response = (
            self.client.table("photos")
            .insert(
                {
                    "event_id": str(event_id),
                    "filename": filename,
                    "original_name": original_name,
                    "storage_key": storage_key,
                    "web_key": web_key,
                    "credit_deducted": credit_deducted,
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create photo")
        return _photo_from_row(response.data[0])

    def get_photo(self, photo_id: UUID) -> PhotoRecord | None:
        """Return a photo by id, if present."""
        response = (
            self.client.table("photos")
            .select(_PHOTO_COLUMNS)
            .eq("id", str(photo_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _photo_from_row(response.data[0])

    def update_photo(self, photo_id: UUID, fields: dict[str, object]) -> None:
        """Write analysis fields of a photo."""
        if not fields:
            return
        payload = {
            name: value.isoformat() if isinstance(value, datetime) else value
            for name, value in fields.items()
        }
        self.client.table("photos").update(payload).eq("id", str(photo_id)).execute()

    def delete_photo(self, photo_id: UUID) -> None:
        """Delete a photo row and its bib rows."""
        self.client.table("bib_numbers").delete().eq("photo_id", str(photo_id)).execute()
        self.client.table("photos").delete().eq("id", str(photo_id)).execute()

    def list_bib_numbers(self, photo_ids: list[UUID]) -> list[str]:
        """Return the distinct bib numbers attached to any of the photos."""
        if not photo_ids:
            return []
        response = (
            self.client.table("bib_numbers")
            .select("number")
            .in_("photo_id", [str(photo_id) for photo_id in photo_ids])
            .execute()
        )
        numbers: list[str] = []
        for row in response.data or []:
            number = str(row["number"])
            if number not in numbers:
                numbers.append(number)
        return numbers

    def replace_bib_numbers(
        self, photo_id: UUID, numbers: list[str], confidence: float, source: str
    ) -> None:
        """Replace the bib rows of a photo."""
        self.client.table("bib_numbers").delete().eq("photo_id", str(photo_id)).execute()
        if not numbers:
            return
        self.client.table("bib_numbers").insert(
            [
                {
                    "photo_id": str(photo_id),
                    "number": number,
                    "confidence": confidence,
                    "source": source,
                }
                for number in numbers
            ]
        ).execute()

    def create_faces(
        self, photo_id: UUID, faces: list[DetectedFace]
    ) -> list[PhotoFaceRecord]:
        """Insert face rows and return them with their ids."""
        if not faces:
            return []
        response = (
            self.client.table("photo_faces")
            .insert(
                [
                    {
                        "photo_id": str(photo_id),
                        "face_id": face.face_id,
                        "confidence": face.confidence,
                        "bounding_box": {
                            "left": face.bounding_box.left,
                            "top": face.bounding_box.top,
                            "width": face.bounding_box.width,
                            "height": face.bounding_box.height,
                        },
                    }
                    for face in faces
                ]
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create photo faces")
        return [_face_from_row(row) for row in response.data]

    def set_face_crop(self, face_row_id: UUID, crop_key: str) -> None:
        """Attach a crop image to a face row."""
        self.client.table("photo_faces").update({"crop_key": crop_key}).eq(
            "id", str(face_row_id)
        ).execute()


def _photo_from_row(row: dict[str, object]) -> PhotoRecord:
    processed_raw = row.get("processed_at")
    return PhotoRecord(
        id=UUID(str(row["id"])),
        event_id=UUID(str(row["event_id"])),
        filename=str(row["filename"]),
        original_name=str(row.get("original_name") or row["filename"]),
        storage_key=str(row["storage_key"]),
        web_key=row.get("web_key"),
        credit_deducted=bool(row.get("credit_deducted")),
        credit_refunded=bool(row.get("credit_refunded")),
        quality_score=row.get("quality_score"),
        is_blurry=row.get("is_blurry"),
        auto_edited=bool(row.get("auto_edited")),
        thumbnail_key=row.get("thumbnail_key"),
        micro_thumbnail_key=row.get("micro_thumbnail_key"),
        ocr_provider=row.get("ocr_provider"),
        face_indexed=bool(row.get("face_indexed")),
        labels=row.get("labels"),
        processed_at=datetime.fromisoformat(processed_raw) if processed_raw else None,
    )


def _face_from_row(row: dict[str, object]) -> PhotoFaceRecord:
    box = row.get("bounding_box") or {}
    return PhotoFaceRecord(
        id=UUID(str(row["id"])),
        photo_id=UUID(str(row["photo_id"])),
        face_id=str(row["face_id"]),
        confidence=float(row.get("confidence") or 0.0),
        bounding_box=BoundingBox(
            left=float(box.get("left", 0.0)),
            top=float(box.get("top", 0.0)),
            width=float(box.get("width", 0.0)),
            height=float(box.get("height", 0.0)),
        ),
        crop_key=row.get("crop_key"),
    )
