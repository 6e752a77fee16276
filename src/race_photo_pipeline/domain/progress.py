"""Domain models for in-memory upload progress."""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

RECENT_PHOTOS_LIMIT = 20


@dataclass
class UploadSession:
    """Progress of one upload batch."""

    id: UUID
    user_id: UUID
    event_id: UUID
    total: int
    processed: int = 0
    current_step: str = "Starting..."
    credits_refunded: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
    complete: bool = False

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 0
        return round(self.processed / self.total * 100)

    def snapshot(self) -> dict[str, object]:
        """Return a JSON-ready copy of the counters."""
        return {
            "session_id": str(self.id),
            "total": self.total,
            "processed": self.processed,
            "percent": self.percent,
            "current_step": self.current_step,
            "credits_refunded": self.credits_refunded,
            "errors": len(self.errors),
            "complete": self.complete,
        }


@dataclass(frozen=True)
class RecentPhoto:
    """Entry of the live-mode recent activity buffer."""

    id: UUID
    filename: str
    bib_numbers: list[str]
    timestamp: datetime

    def as_payload(self) -> dict[str, object]:
        return {
            "id": str(self.id),
            "filename": self.filename,
            "bib_numbers": list(self.bib_numbers),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class LiveUploadStatus:
    """Per-event live-mode counters."""

    event_id: UUID
    total_photos: int = 0
    processed: int = 0
    last_photo_at: datetime | None = None
    is_active: bool = False
    recent_photos: deque[RecentPhoto] = field(
        default_factory=lambda: deque(maxlen=RECENT_PHOTOS_LIMIT)
    )

    def stats(self) -> dict[str, object]:
        return {
            "total_photos": self.total_photos,
            "processed": self.processed,
            "is_active": self.is_active,
        }

    def snapshot(self) -> dict[str, object]:
        """Return a JSON-ready copy of the status and recent activity."""
        return {
            "stats": self.stats(),
            "last_photo_at": self.last_photo_at.isoformat()
            if self.last_photo_at
            else None,
            "recent_photos": [photo.as_payload() for photo in self.recent_photos],
        }
