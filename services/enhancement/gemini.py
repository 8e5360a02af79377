"""
Prompt Enhancement - Gemini 2.0 Flash

Rewrites a user's raw prompt into a generation-ready one (lighting, camera,
style) and returns structured output via a Pydantic response schema.

Usage:
    enhancer = GeminiPromptEnhancer()
    enhanced = await enhancer.enhance("a cat on a skateboard", 30, "PRO")

Failures propagate; the orchestrator falls back to the raw prompt.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from google import genai
from google.genai import types
from pydantic import BaseModel, Field

from core.config import Config, get_config

logger = logging.getLogger(__name__)


class PromptEnhancement(BaseModel):
    """Structured enhancement result"""
    enhanced_prompt: str = Field(description="Optimized prompt for video generation")
    warnings: List[str] = Field(default_factory=list, description="Issues found in the original prompt")
    optimizations: List[str] = Field(default_factory=list, description="Improvements made")
    suggested_provider: Optional[str] = Field(default=None, description="runway, stability or veo3")
    suggested_resolution: Optional[str] = Field(default=None, description="720p, 1080p or 4K")


class PromptEnhancer(ABC):
    """Collaborator that turns a raw prompt into an enhanced one."""

    @abstractmethod
    async def enhance(self, raw_prompt: str, duration_seconds: float, user_plan: str) -> str:
        """Return the enhanced prompt. May raise on failure."""


SYSTEM_PROMPT = """You are a video generation prompt expert. Enhance the user's prompt to generate better AI videos.

Rules:
1. Add cinematic details (lighting, camera angles, mood)
2. Specify visual style clearly
3. Break down into clear scenes if needed
4. Add technical terms for better AI understanding
5. Keep it concise but descriptive
6. Remove ambiguous language

Video Type: {video_type}
Duration: {duration} seconds
User Plan: {user_plan}
"""


class GeminiPromptEnhancer(PromptEnhancer):
    """Prompt enhancement backed by the Google GenAI SDK."""

    def __init__(
        self,
        config: Optional[Config] = None,
        client: Optional[genai.Client] = None,
        video_type: str = "standard",
    ):
        self.config = config or get_config()
        self.video_type = video_type
        self._client = client

    def _get_client(self) -> genai.Client:
        """Get or create the Gemini client (lazy-loaded)."""
        if self._client is None:
            if not self.config.api.google_api_key:
                raise ValueError("GOOGLE_API_KEY environment variable not set")
            self._client = genai.Client(api_key=self.config.api.google_api_key)
        return self._client

    async def enhance_detailed(
        self,
        raw_prompt: str,
        duration_seconds: float,
        user_plan: str,
    ) -> PromptEnhancement:
        """Enhance a prompt and return the full structured result."""
        system_prompt = SYSTEM_PROMPT.format(
            video_type=self.video_type,
            duration=duration_seconds,
            user_plan=user_plan,
        )

        response = await self._get_client().aio.models.generate_content(
            model=self.config.api.enhancement_model,
            contents=raw_prompt,
            config=types.GenerateContentConfig(
                system_instruction=system_prompt,
                response_mime_type="application/json",
                response_schema=PromptEnhancement,
                temperature=0.7,
                max_output_tokens=1024,
            ),
        )

        result = PromptEnhancement.model_validate_json(response.text)
        for warning in result.warnings:
            logger.info(f"Prompt warning: {warning}")
        return result

    async def enhance(self, raw_prompt: str, duration_seconds: float, user_plan: str) -> str:
        result = await self.enhance_detailed(raw_prompt, duration_seconds, user_plan)
        if not result.enhanced_prompt.strip():
            raise ValueError("Enhancement returned an empty prompt")
        return result.enhanced_prompt
