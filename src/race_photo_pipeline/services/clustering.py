"""Debounced face-clustering trigger per event."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol
from uuid import UUID

from race_photo_pipeline.services.queue import ProcessingQueue

_logger = logging.getLogger(__name__)


class ClusteringClient(Protocol):
    """Interface for the face-clustering collaborator."""

    async def needs_clustering(self, event_id: UUID) -> bool:
        """Return whether an event has unclustered faces."""

    async def cluster(self, event_id: UUID) -> None:
        """Cluster the faces of an event."""


@dataclass
class AutoClusterScheduler:
    """Runs clustering once per event after uploads go quiet."""

    queue: ProcessingQueue
    client: ClusteringClient | None
    delay_seconds: float = 30.0
    enabled: bool = True
    _timers: dict[UUID, asyncio.TimerHandle] = field(default_factory=dict, init=False)
    _running: set[UUID] = field(default_factory=set, init=False)

    @property
    def active(self) -> bool:
        return self.enabled and self.client is not None

    def schedule_auto_clustering(self, event_id: UUID) -> None:
        """(Re)arm the timer for an event, dropping any pending one."""
        if not self.active:
            return
        pending = self._timers.pop(event_id, None)
        if pending is not None:
            pending.cancel()
        loop = asyncio.get_running_loop()
        self._timers[event_id] = loop.call_later(self.delay_seconds, self._fire, event_id)

    def pending_events(self) -> list[UUID]:
        """Events with an armed timer."""
        return list(self._timers)

    def cancel_all(self) -> None:
        """Drop every armed timer."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def _fire(self, event_id: UUID) -> None:
        self._timers.pop(event_id, None)
        if event_id in self._running:
            _logger.info("Clustering already running for %s, re-arming", event_id)
            self.schedule_auto_clustering(event_id)
            return
        self._running.add(event_id)
        self.queue.enqueue(lambda: self._run(event_id))

    async def _run(self, event_id: UUID) -> None:
        try:
            if not await self.client.needs_clustering(event_id):
                _logger.info("Event %s has no faces to cluster", event_id)
                return
            await self.client.cluster(event_id)
            _logger.info("Auto-clustering finished for event %s", event_id)
        finally:
            self._running.discard(event_id)
