"""Supabase Storage client over a single bucket."""

from dataclasses import dataclass

from supabase import Client

from race_photo_pipeline.errors import StorageObjectNotFoundError
from race_photo_pipeline.services.storage import StorageClient


@dataclass
class SupabaseStorageClient(StorageClient):
    """Stores objects in one Supabase Storage bucket."""

    client: Client
    bucket: str

    def put(self, data: bytes, key: str, content_type: str) -> str:
        """Upload bytes, replacing any existing object."""
        self.client.storage.from_(self.bucket).upload(
            key,
            data,
            file_options={"content-type": content_type, "upsert": "true"},
        )
        return key

    def get(self, key: str) -> bytes:
        """Download an object."""
        try:
            return self.client.storage.from_(self.bucket).download(key)
        except Exception as exc:
            if _is_not_found(exc):
                raise StorageObjectNotFoundError(key) from exc
            raise

    def delete(self, key: str) -> None:
        """Remove an object."""
        self.client.storage.from_(self.bucket).remove([key])


def _is_not_found(exc: Exception) -> bool:
    status = getattr(exc, "status", None) or getattr(exc, "status_code", None)
    if str(status) == "404":
        return True
    return "not found" in str(exc).lower()
