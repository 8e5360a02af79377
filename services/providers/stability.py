"""
Stability AI (Stable Video Diffusion) adapter.

The cheapest provider and the designated default/fallback.
"""

import logging
import random
from typing import Optional

import httpx

from core.config import Config, get_config

from .base import HTTPProviderClient, ProviderTaskStatus, TaskState

logger = logging.getLogger(__name__)

STABILITY = "stability"


class StabilityClient(HTTPProviderClient):
    """Client for the Stability generation API."""

    provider_id = STABILITY

    def __init__(
        self,
        config: Optional[Config] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        config = config or get_config()
        super().__init__(
            api_key=config.api.stability_api_key,
            api_url=config.api.stability_api_url,
            http_client=http_client,
            timeout=config.timeouts_for(STABILITY).submit_timeout,
        )

    async def submit(self, prompt: str, duration_seconds: float, resolution: str) -> str:
        # SVD takes no duration or resolution; clip length is fixed by the model
        data = await self._request(
            "POST",
            "/generation/stable-video-diffusion",
            json={
                "text_prompts": [{"text": prompt, "weight": 1}],
                "cfg_scale": 7,
                "motion_bucket_id": 127,  # motion intensity
                "noise_aug_strength": 0.02,
                "seed": random.randint(0, 4294967295),
                "steps": 25,
            },
        )
        task_id = self._require_task_id(data.get("id"), data)
        logger.info(f"Stability task created: {task_id}")
        return task_id

    async def poll(self, task_id: str) -> ProviderTaskStatus:
        data = await self._get_with_retry(f"/generation/{task_id}")
        artifacts = data.get("artifacts") or []
        return ProviderTaskStatus(
            task_id=task_id,
            # Stability omits status once the artifact is ready
            status=TaskState.parse(data.get("status") or "completed"),
            result_url=artifacts[0].get("url") if artifacts else None,
            progress=data.get("progress"),
            error=data.get("error"),
        )
