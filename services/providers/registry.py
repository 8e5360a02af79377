"""
Provider Registry

Maps provider ids to client adapters so routing and orchestration never
switch on provider names. Adding a provider means registering a client.
"""

import logging
from typing import Iterator, Optional

from core.config import Config, get_config
from core.errors import UnknownProvider

from .base import ProviderClient

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Ordered collection of provider clients keyed by provider id."""

    def __init__(self, clients: Optional[list[ProviderClient]] = None):
        self._clients: dict[str, ProviderClient] = {}
        for client in clients or []:
            self.register(client)

    def register(self, client: ProviderClient) -> None:
        if not client.provider_id:
            raise ValueError(f"{type(client).__name__} has no provider_id")
        if client.provider_id in self._clients:
            logger.warning(f"Replacing registered provider {client.provider_id}")
        self._clients[client.provider_id] = client

    def get(self, provider_id: str) -> ProviderClient:
        try:
            return self._clients[provider_id]
        except KeyError:
            raise UnknownProvider(provider_id) from None

    def require(self, *provider_ids: str) -> None:
        """Fail fast if any of the given ids is not registered."""
        for provider_id in provider_ids:
            self.get(provider_id)

    def ids(self) -> list[str]:
        return list(self._clients)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._clients

    def __iter__(self) -> Iterator[ProviderClient]:
        return iter(self._clients.values())

    def __len__(self) -> int:
        return len(self._clients)

    async def close_all(self) -> None:
        for client in self._clients.values():
            await client.close()


def build_default_registry(config: Optional[Config] = None) -> ProviderRegistry:
    """Registry with the Runway, Stability and Veo 3 adapters."""
    from .runway import RunwayClient
    from .stability import StabilityClient
    from .veo3 import Veo3Client

    config = config or get_config()
    return ProviderRegistry([
        RunwayClient(config),
        StabilityClient(config),
        Veo3Client(config),
    ])
