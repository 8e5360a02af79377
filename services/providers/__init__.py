"""
Generation Provider Clients

Thin adapters for the external video generation services plus the
registry that routing and orchestration look providers up in.
"""

from .base import (
    HTTPProviderClient,
    ProviderClient,
    ProviderTaskStatus,
    TaskState,
)
from .registry import ProviderRegistry, build_default_registry
from .runway import RUNWAY, RunwayClient
from .stability import STABILITY, StabilityClient
from .veo3 import VEO3, Veo3Client

__all__ = [
    "HTTPProviderClient",
    "ProviderClient",
    "ProviderTaskStatus",
    "TaskState",
    "ProviderRegistry",
    "build_default_registry",
    "RUNWAY",
    "RunwayClient",
    "STABILITY",
    "StabilityClient",
    "VEO3",
    "Veo3Client",
]
