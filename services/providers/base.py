"""
Provider Client Contract

Every external generation service is wrapped in a thin adapter exposing:
- submit(prompt, duration_seconds, resolution) -> task_id
- poll(task_id) -> ProviderTaskStatus
- cancel(task_id) -> None (best-effort)

Adapters translate transport errors and HTTP status codes into
ProviderError so the orchestrator never sees httpx exceptions.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from core.errors import ProviderError

logger = logging.getLogger(__name__)

# Rejections that will fail the same way on any provider
PERMANENT_STATUS_CODES = frozenset({400, 413, 422})


class TaskState(str, Enum):
    """Normalized provider task state."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.FAILED)

    @classmethod
    def parse(cls, raw: Optional[str]) -> "TaskState":
        """Map a provider status string, treating unknown values as in-progress."""
        status_map = {
            "pending": cls.QUEUED,
            "queued": cls.QUEUED,
            "running": cls.PROCESSING,
            "processing": cls.PROCESSING,
            "in_progress": cls.PROCESSING,
            "completed": cls.COMPLETED,
            "complete": cls.COMPLETED,
            "succeeded": cls.COMPLETED,
            "success": cls.COMPLETED,
            "failed": cls.FAILED,
            "error": cls.FAILED,
            "cancelled": cls.FAILED,
        }
        return status_map.get((raw or "").lower(), cls.PROCESSING)


class ProviderTaskStatus(BaseModel):
    """Result of polling a provider task."""
    task_id: str
    status: TaskState
    result_url: Optional[str] = None
    progress: Optional[int] = None
    error: Optional[str] = None


def is_transient(error: BaseException) -> bool:
    return isinstance(error, ProviderError) and error.transient


class ProviderClient(ABC):
    """Uniform capability implemented by each generation provider."""

    provider_id: str = ""

    @abstractmethod
    async def submit(self, prompt: str, duration_seconds: float, resolution: str) -> str:
        """Start a generation task and return the provider's task id."""

    @abstractmethod
    async def poll(self, task_id: str) -> ProviderTaskStatus:
        """Fetch the current state of a task."""

    async def cancel(self, task_id: str) -> None:
        """Best-effort cancellation. Providers without a cancel API do nothing."""
        logger.info(f"[{self.provider_id}] cancel not supported, ignoring task {task_id}")

    async def close(self) -> None:
        """Release any held connections."""


class HTTPProviderClient(ProviderClient):
    """Shared plumbing for providers reached over HTTP."""

    def __init__(
        self,
        api_key: str,
        api_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        """Send a request and return the decoded JSON body."""
        client = await self._get_client()
        url = f"{self.api_url}/{path.lstrip('/')}"

        try:
            response = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderError(
                f"{self.provider_id} API timeout: {type(e).__name__}",
                provider=self.provider_id,
                error_code="TIMEOUT",
            )
        except httpx.RequestError as e:
            raise ProviderError(
                f"{self.provider_id} API request failed: {type(e).__name__}: {e}",
                provider=self.provider_id,
                error_code="REQUEST_ERROR",
            )

        if response.status_code >= 400:
            raise ProviderError(
                f"{self.provider_id} API error {response.status_code}: {response.text[:200]}",
                provider=self.provider_id,
                error_code=f"HTTP_{response.status_code}",
                permanent=response.status_code in PERMANENT_STATUS_CODES,
            )

        if not response.content:
            return {}

        try:
            return response.json()
        except ValueError:
            raise ProviderError(
                f"{self.provider_id} API returned non-JSON body",
                provider=self.provider_id,
                error_code="BAD_RESPONSE",
            )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=8),
        retry=retry_if_exception(is_transient),
        reraise=True,
    )
    async def _get_with_retry(self, path: str) -> dict:
        """GET for status endpoints, retried on transient failures."""
        return await self._request("GET", path)

    def _require_task_id(self, task_id: Optional[str], data: dict) -> str:
        if not task_id:
            logger.error(f"[{self.provider_id}] no task id in response: {data}")
            raise ProviderError(
                f"No task id in {self.provider_id} response",
                provider=self.provider_id,
                error_code="NO_TASK_ID",
            )
        return str(task_id)
