"""ASGI entrypoint for the race photo pipeline API."""

import uvicorn

from race_photo_pipeline.api.app import create_app
from race_photo_pipeline.containers import build_container

container = build_container()
app = create_app(container)


def run() -> None:
    """Serve the API from one long-lived process; the queue lives in memory."""
    uvicorn.run(
        app,
        host=container.settings.http_host,
        port=container.settings.http_port,
        workers=1,
    )
