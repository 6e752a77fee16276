"""Server-sent event framing for progress streams."""

import json
from collections.abc import AsyncIterator, Callable

from fastapi import Request

from race_photo_pipeline.services.notifications import EndOfStream, Subscription

HEARTBEAT = ": heartbeat\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_event(message: dict[str, object]) -> str:
    """Frame a JSON message as one SSE data event."""
    return f"data: {json.dumps(message, default=str)}\n\n"


def is_complete(message: dict[str, object]) -> bool:
    """Batch streams end with the first complete message."""
    return bool(message.get("complete"))


async def stream_events(  # noqa: PLR0913
    request: Request,
    snapshot: dict[str, object],
    subscription: Subscription,
    on_close: Callable[[Subscription], None],
    heartbeat_seconds: float,
    stop_when: Callable[[dict[str, object]], bool] | None = None,
) -> AsyncIterator[str]:
    """Yield the snapshot, then every published message, with heartbeats.

    The stream also ends once the hub has dropped the subscription and its
    mailbox is drained.
    """
    try:
        yield format_event(snapshot)
        if stop_when is not None and stop_when(snapshot):
            return
        while True:
            if await request.is_disconnected():
                return
            # Evicted subscribers receive nothing further.
            if subscription.closed and subscription.mailbox.empty():
                return
            try:
                message = await subscription.receive(timeout=heartbeat_seconds)
            except TimeoutError:
                yield HEARTBEAT
                continue
            if isinstance(message, EndOfStream):
                return
            yield format_event(message)
            if stop_when is not None and stop_when(message):
                return
    finally:
        on_close(subscription)
