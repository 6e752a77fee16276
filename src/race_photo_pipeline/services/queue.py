"""Bounded processing queue for the photo analysis pipeline.

Limits how many photo tasks run at once so image decoding and remote
vision calls do not saturate the process. Work is kept in memory only.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

Task = Callable[[], Awaitable[None]]

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueStats:
    """Point-in-time view of the queue."""

    running: int
    queued: int
    max_concurrent: int


@dataclass
class ProcessingQueue:
    """Runs at most ``max_concurrent`` queued tasks at a time."""

    max_concurrent: int = 4
    _backlog: deque[Task] = field(default_factory=deque, init=False, repr=False)
    _running: int = field(default=0, init=False)
    _max_running: int = field(default=0, init=False)
    _tasks: set[asyncio.Task[None]] = field(default_factory=set, init=False, repr=False)
    _idle: asyncio.Event | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

    def enqueue(self, task: Task) -> None:
        """Queue a task and start it immediately if a slot is free."""
        self._backlog.append(task)
        self._try_run_next()

    @property
    def stats(self) -> QueueStats:
        """Current queue stats for monitoring."""
        return QueueStats(
            running=self._running,
            queued=len(self._backlog),
            max_concurrent=self.max_concurrent,
        )

    @property
    def max_running(self) -> int:
        """Highest number of tasks seen running at once."""
        return self._max_running

    async def drain(self) -> None:
        """Wait until no task is running or queued."""
        while self._running or self._backlog:
            if self._idle is None or self._idle.is_set():
                self._idle = asyncio.Event()
            await self._idle.wait()

    def _try_run_next(self) -> None:
        loop = asyncio.get_running_loop()
        while self._running < self.max_concurrent and self._backlog:
            task = self._backlog.popleft()
            self._running += 1
            self._max_running = max(self._max_running, self._running)
            running = loop.create_task(self._run(task))
            self._tasks.add(running)
            running.add_done_callback(self._tasks.discard)

    async def _run(self, task: Task) -> None:
        try:
            await task()
        except Exception:
            _logger.exception("Queued task failed")
        finally:
            self._running -= 1
            self._try_run_next()
            if not self._running and not self._backlog and self._idle is not None:
                self._idle.set()
