"""
Runway Gen-2 video generation adapter.

The only provider with a remote cancel endpoint.
"""

import logging
from typing import Optional

import httpx

from core.config import Config, get_config
from core.errors import ProviderError

from .base import HTTPProviderClient, ProviderTaskStatus, TaskState

logger = logging.getLogger(__name__)

RUNWAY = "runway"


class RunwayClient(HTTPProviderClient):
    """Client for the Runway generation API."""

    provider_id = RUNWAY

    def __init__(
        self,
        config: Optional[Config] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        aspect_ratio: str = "16:9",
    ):
        config = config or get_config()
        super().__init__(
            api_key=config.api.runway_api_key,
            api_url=config.api.runway_api_url,
            http_client=http_client,
            timeout=config.timeouts_for(RUNWAY).submit_timeout,
        )
        self.aspect_ratio = aspect_ratio

    async def submit(self, prompt: str, duration_seconds: float, resolution: str) -> str:
        data = await self._request(
            "POST",
            "/generate",
            json={
                "text_prompt": prompt,
                "duration": duration_seconds,
                "resolution": resolution,
                "aspect_ratio": self.aspect_ratio,
            },
        )
        task_id = self._require_task_id(data.get("id"), data)
        logger.info(f"Runway task created: {task_id}")
        return task_id

    async def poll(self, task_id: str) -> ProviderTaskStatus:
        data = await self._get_with_retry(f"/tasks/{task_id}")
        output = data.get("output") or {}
        return ProviderTaskStatus(
            task_id=task_id,
            status=TaskState.parse(data.get("status")),
            result_url=output.get("video_url"),
            progress=data.get("progress"),
            error=data.get("error"),
        )

    async def cancel(self, task_id: str) -> None:
        try:
            await self._request("POST", f"/tasks/{task_id}/cancel", json={})
            logger.info(f"Runway task cancelled: {task_id}")
        except ProviderError as e:
            logger.warning(f"Runway cancel failed for {task_id}: {e}")
