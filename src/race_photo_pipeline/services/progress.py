"""Progress tracking for upload batches and live-mode events.

Every mutation is synchronous, so a single event loop serializes writers and
subscribers never see a half-applied update. Each mutation is published to
the notification hub under the session or event key.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID, uuid4

from race_photo_pipeline.domain.progress import (
    LiveUploadStatus,
    RecentPhoto,
    UploadSession,
)
from race_photo_pipeline.errors import SessionNotFoundError
from race_photo_pipeline.services.notifications import NotificationHub, Subscription

_logger = logging.getLogger(__name__)

STEP_PROCESSING = "Processing..."
STEP_DONE = "Done"


def session_key(session_id: UUID) -> tuple[str, UUID]:
    return ("session", session_id)


def live_key(event_id: UUID) -> tuple[str, UUID]:
    return ("live", event_id)


@dataclass
class ProgressTracker:
    """Owns batch sessions and live statuses and publishes their changes."""

    hub: NotificationHub
    retention_seconds: float = 300.0
    _sessions: dict[UUID, UploadSession] = field(default_factory=dict, init=False)
    _expired: set[UUID] = field(default_factory=set, init=False)
    _live: dict[UUID, LiveUploadStatus] = field(default_factory=dict, init=False)
    _expired_live: set[UUID] = field(default_factory=set, init=False)

    # Batch sessions

    def create_session(
        self, user_id: UUID, event_id: UUID, total: int, session_id: UUID | None = None
    ) -> UploadSession:
        """Create a progress session for a new batch."""
        session = UploadSession(
            id=session_id or uuid4(), user_id=user_id, event_id=event_id, total=total
        )
        self._sessions[session.id] = session
        return session

    def get_session(self, session_id: UUID) -> UploadSession | None:
        """Return a session, if still tracked."""
        return self._sessions.get(session_id)

    def set_step(self, session_id: UUID, step: str) -> None:
        """Update the human-readable step label."""
        session = self._sessions.get(session_id)
        if session is None or session.complete:
            return
        session.current_step = step
        self._publish_session(session)

    def record_refund(self, session_id: UUID) -> None:
        """Count a credit refund posted for the session."""
        session = self._sessions.get(session_id)
        if session is None:
            return
        session.credits_refunded += 1
        self._publish_session(session)

    def record_error(self, session_id: UUID, photo_id: UUID, message: str) -> None:
        """Record a task-level failure for a photo."""
        session = self._sessions.get(session_id)
        if session is None:
            return
        session.errors.append({"photo_id": str(photo_id), "error": message})
        payload = {"type": "photo_error", "photo_id": str(photo_id), "error": message}
        payload.update(session.snapshot())
        self.hub.publish(session_key(session_id), payload)

    def complete_task(self, session_id: UUID) -> UploadSession | None:
        """Count one finished task; marks the session complete on the last one."""
        session = self._sessions.get(session_id)
        if session is None or session.complete:
            return session
        session.processed = min(session.processed + 1, session.total)
        if session.processed >= session.total:
            session.complete = True
            session.current_step = STEP_DONE
        else:
            session.current_step = STEP_PROCESSING
        self._publish_session(session)
        if session.complete:
            _logger.info(
                "Upload session %s complete (%s photos, %s refunds)",
                session.id,
                session.total,
                session.credits_refunded,
            )
            asyncio.get_running_loop().call_later(
                self.retention_seconds, self._expire_session, session.id
            )
        return session

    def attach_session(
        self, session_id: UUID
    ) -> tuple[dict[str, object], Subscription]:
        """Subscribe to a session and return the snapshot taken at attach time."""
        session = self._require(session_id)
        subscription = self.hub.subscribe(session_key(session_id))
        snapshot = {"type": "init", **session.snapshot()}
        return snapshot, subscription

    def detach(self, subscription: Subscription) -> None:
        """Remove a subscriber and collect its session or live status if idle."""
        self.hub.unsubscribe(subscription)
        kind, identifier = subscription.key
        if kind == "session" and identifier in self._expired:
            self._collect_session(identifier)
        elif kind == "live" and identifier in self._expired_live:
            self._collect_live(identifier)

    def _expire_session(self, session_id: UUID) -> None:
        self._expired.add(session_id)
        self._collect_session(session_id)

    def _collect_session(self, session_id: UUID) -> None:
        session = self._sessions.get(session_id)
        if session is None or not session.complete:
            return
        if self.hub.subscriber_count(session_key(session_id)):
            return
        self._sessions.pop(session_id, None)
        self._expired.discard(session_id)
        self.hub.close_key(session_key(session_id))

    def _require(self, session_id: UUID) -> UploadSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _publish_session(self, session: UploadSession) -> None:
        self.hub.publish(session_key(session.id), {"type": "progress", **session.snapshot()})

    # Live mode

    def live_status(self, event_id: UUID) -> LiveUploadStatus:
        """Return the live status of an event, creating it on first use."""
        status = self._live.get(event_id)
        if status is None:
            status = LiveUploadStatus(event_id=event_id)
            self._live[event_id] = status
        return status

    def record_live_received(
        self, event_id: UUID, photo_id: UUID, filename: str
    ) -> LiveUploadStatus:
        """Count a photo arriving in live mode."""
        status = self.live_status(event_id)
        status.total_photos += 1
        status.last_photo_at = datetime.now(tz=UTC)
        status.is_active = True
        self.hub.publish(
            live_key(event_id),
            {
                "type": "photo_received",
                "photo_id": str(photo_id),
                "filename": filename,
                "stats": status.stats(),
            },
        )
        return status

    def record_live_processed(
        self, event_id: UUID, photo_id: UUID, filename: str, bib_numbers: list[str]
    ) -> RecentPhoto:
        """Count a finished live photo and add it to the recent buffer."""
        status = self.live_status(event_id)
        entry = RecentPhoto(
            id=photo_id,
            filename=filename,
            bib_numbers=list(bib_numbers),
            timestamp=datetime.now(tz=UTC),
        )
        status.recent_photos.appendleft(entry)
        self._finish_live(status)
        self.hub.publish(
            live_key(event_id),
            {
                "type": "photo_processed",
                "photo": entry.as_payload(),
                "stats": status.stats(),
            },
        )
        self._schedule_live_expiry(status)
        return entry

    def record_live_error(self, event_id: UUID, photo_id: UUID, message: str) -> None:
        """Count a live photo whose processing failed."""
        status = self.live_status(event_id)
        self._finish_live(status)
        self.hub.publish(
            live_key(event_id),
            {
                "type": "photo_error",
                "photo_id": str(photo_id),
                "error": message,
                "stats": status.stats(),
            },
        )
        self._schedule_live_expiry(status)

    def attach_live(self, event_id: UUID) -> tuple[dict[str, object], Subscription]:
        """Subscribe to an event's live stream with an initial snapshot."""
        status = self.live_status(event_id)
        subscription = self.hub.subscribe(live_key(event_id))
        snapshot = {"type": "init", **status.snapshot()}
        return snapshot, subscription

    @staticmethod
    def _finish_live(status: LiveUploadStatus) -> None:
        status.processed = min(status.processed + 1, status.total_photos)
        status.is_active = status.processed < status.total_photos

    def _schedule_live_expiry(self, status: LiveUploadStatus) -> None:
        if status.is_active:
            return
        asyncio.get_running_loop().call_later(
            self.retention_seconds, self._expire_live, status.event_id
        )

    def _expire_live(self, event_id: UUID) -> None:
        self._expired_live.add(event_id)
        self._collect_live(event_id)

    def _collect_live(self, event_id: UUID) -> None:
        status = self._live.get(event_id)
        if status is None or status.is_active:
            self._expired_live.discard(event_id)
            return
        if self.hub.subscriber_count(live_key(event_id)):
            return
        self._live.pop(event_id, None)
        self._expired_live.discard(event_id)
        self.hub.close_key(live_key(event_id))
