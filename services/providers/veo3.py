"""
Google DeepMind Veo 3 adapter.

Veo runs generation as a long-running operation: the task id is the
operation name and completion is signalled by `done`.
"""

import logging
from typing import Optional

import httpx

from core.config import Config, get_config

from .base import HTTPProviderClient, ProviderTaskStatus, TaskState

logger = logging.getLogger(__name__)

VEO3 = "veo3"


class Veo3Client(HTTPProviderClient):
    """Client for the Veo 3 generation API."""

    provider_id = VEO3

    def __init__(
        self,
        config: Optional[Config] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        style: str = "realistic",
    ):
        config = config or get_config()
        super().__init__(
            api_key=config.api.veo3_api_key,
            api_url=config.api.veo3_api_url,
            http_client=http_client,
            timeout=config.timeouts_for(VEO3).submit_timeout,
        )
        self.project_id = config.api.veo3_project_id
        self.style = style

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["x-goog-user-project"] = self.project_id
        return headers

    async def submit(self, prompt: str, duration_seconds: float, resolution: str) -> str:
        data = await self._request(
            "POST",
            f"/projects/{self.project_id}/videos:generate",
            json={
                "prompt": prompt,
                "duration_seconds": duration_seconds,
                "resolution": resolution,
                "aspect_ratio": "16:9",
                "style": self.style,
                "quality": "high",
            },
        )
        task_id = self._require_task_id(data.get("name"), data)
        logger.info(f"Veo3 operation created: {task_id}")
        return task_id

    async def poll(self, task_id: str) -> ProviderTaskStatus:
        data = await self._get_with_retry(f"/{task_id}")
        error = data.get("error") or {}

        status = TaskState.PROCESSING
        if data.get("done"):
            status = TaskState.FAILED if error else TaskState.COMPLETED

        return ProviderTaskStatus(
            task_id=task_id,
            status=status,
            result_url=(data.get("response") or {}).get("video_uri"),
            progress=(data.get("metadata") or {}).get("progress_percent"),
            error=error.get("message"),
        )
