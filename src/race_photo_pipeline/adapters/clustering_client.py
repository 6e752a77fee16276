"""HTTP client for the face-clustering collaborator."""

from dataclasses import dataclass
from uuid import UUID

import httpx

from race_photo_pipeline.services.clustering import ClusteringClient


@dataclass
class HttpxClusteringClient(ClusteringClient):
    """HTTPX-backed clustering client."""

    base_url: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(cls, base_url: str) -> "HttpxClusteringClient":
        """Create a clustering client with a managed httpx session."""
        return cls(base_url=base_url.rstrip("/"), http_client=httpx.AsyncClient())

    async def needs_clustering(self, event_id: UUID) -> bool:
        """Ask whether an event has unclustered faces."""
        response = await self.http_client.post(
            f"{self.base_url}/needs-clustering",
            json={"event_id": str(event_id)},
            timeout=15,
        )
        response.raise_for_status()
        return bool(response.json().get("needs_clustering"))

    async def cluster(self, event_id: UUID) -> None:
        """Trigger clustering for an event."""
        response = await self.http_client.post(
            f"{self.base_url}/cluster",
            json={"event_id": str(event_id)},
            timeout=120,
        )
        response.raise_for_status()

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()
