"""Supabase-backed event repository."""

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from supabase import Client

from race_photo_pipeline.domain.photos import EventRecord
from race_photo_pipeline.services.pipeline import EventRepository


@dataclass
class SupabaseEventRepository(EventRepository):
    """Supabase implementation for events and start lists."""

    client: Client

    def get_event(self, event_id: UUID) -> EventRecord | None:
        """Return an event by id, if present."""
        response = (
            self.client.table("events")
            .select("id, user_id, name, upload_started_at, upload_completed_at")
            .eq("id", str(event_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        row = response.data[0]
        return EventRecord(
            id=UUID(row["id"]),
            user_id=UUID(row["user_id"]),
            name=row.get("name") or "",
            upload_started_at=_parse_timestamp(row.get("upload_started_at")),
            upload_completed_at=_parse_timestamp(row.get("upload_completed_at")),
        )

    def list_start_list_bibs(self, event_id: UUID) -> set[str]:
        """Return the bib numbers on an event's start list."""
        response = (
            self.client.table("start_list_entries")
            .select("bib_number")
            .eq("event_id", str(event_id))
            .execute()
        )
        return {str(row["bib_number"]) for row in response.data or [] if row.get("bib_number")}

    def mark_upload_started(self, event_id: UUID) -> None:
        """Set upload_started_at unless it is already set."""
        self.client.table("events").update(
            {"upload_started_at": datetime.now(tz=UTC).isoformat()}
        ).eq("id", str(event_id)).is_("upload_started_at", "null").execute()

    def mark_upload_completed(self, event_id: UUID) -> None:
        """Set upload_completed_at to now."""
        self.client.table("events").update(
            {"upload_completed_at": datetime.now(tz=UTC).isoformat()}
        ).eq("id", str(event_id)).execute()


def _parse_timestamp(raw: str | None) -> datetime | None:
    if not raw:
        return None
    return datetime.fromisoformat(raw)
