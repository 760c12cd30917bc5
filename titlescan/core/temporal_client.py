"""Temporal client connection management.

Shared by the API (to start analysis workflows) and by the worker.
"""

from typing import Optional

from temporalio.client import Client as TemporalClient

from titlescan.core.config import settings
from titlescan.utils.logging import get_logger

LOGGER = get_logger(__name__)


class TemporalClientManager:
    """Lazily creates a Temporal client and keeps it around for reuse."""

    _client: Optional[TemporalClient] = None

    async def get_client(self) -> TemporalClient:
        """Get or create Temporal client instance."""
        if self._client is None:
            target = f"{settings.temporal_host}:{settings.temporal_port}"
            LOGGER.info(f"Connecting to Temporal at {target} (namespace: {settings.temporal_namespace})")
            self._client = await TemporalClient.connect(target, namespace=settings.temporal_namespace)
        return self._client

    def reset(self) -> None:
        """Drop the cached client; the next call reconnects."""
        self._client = None


_temporal_manager = TemporalClientManager()


async def get_temporal_client() -> TemporalClient:
    """FastAPI dependency returning the shared Temporal client."""
    return await _temporal_manager.get_client()


def reset_temporal_client() -> None:
    _temporal_manager.reset()
