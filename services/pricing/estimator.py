"""
Credit Cost Estimator

Maps (duration, resolution, provider) to an integer credit price:

    base  = ceil(duration / 60 * credits_per_minute)
    cost  = ceil(base * resolution_multiplier)
    cost  = ceil(cost * provider_multiplier)
    cost  = max(1, cost)

Every stage rounds up so a job is never undersold. Multipliers are applied
as decimals so configured values like 1.2 do not pick up float error.
"""

import logging
from decimal import ROUND_CEILING, Decimal
from typing import Optional, Union

from core.config import Config, PricingConfig, get_config
from core.errors import UnknownProvider
from services.models import Resolution

logger = logging.getLogger(__name__)


def _ceil(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_CEILING))


class CostEstimator:
    """Pure credit pricing. No I/O, no state beyond the tariff."""

    def __init__(self, pricing: Optional[PricingConfig] = None):
        self.pricing = pricing or get_config().pricing

    @classmethod
    def from_config(cls, config: Config) -> "CostEstimator":
        return cls(config.pricing)

    def _resolution_multiplier(self, resolution: Resolution) -> Decimal:
        multiplier = self.pricing.resolution_multipliers.get(resolution.value)
        if multiplier is None:
            raise ValueError(f"No price multiplier for resolution {resolution.value}")
        return Decimal(str(multiplier))

    def _provider_multiplier(self, provider_id: str) -> Decimal:
        multiplier = self.pricing.provider_multipliers.get(provider_id)
        if multiplier is None:
            raise UnknownProvider(provider_id)
        return Decimal(str(multiplier))

    def estimate(
        self,
        duration_seconds: float,
        resolution: Union[Resolution, str],
        provider_id: str,
    ) -> int:
        """
        Price a generation job in credits.

        Args:
            duration_seconds: Requested clip length, must be positive
            resolution: Output resolution
            provider_id: Provider that will run the job

        Returns:
            Credit cost, at least 1

        Raises:
            ValueError: Non-positive duration or unpriced resolution
            UnknownProvider: Provider has no price multiplier
        """
        if duration_seconds <= 0:
            raise ValueError(f"duration_seconds must be positive, got {duration_seconds}")

        resolution = Resolution(resolution)
        minutes = Decimal(str(duration_seconds)) / Decimal(60)

        credits = _ceil(minutes * self.pricing.credits_per_minute)
        credits = _ceil(credits * self._resolution_multiplier(resolution))
        credits = _ceil(credits * self._provider_multiplier(provider_id))

        return max(1, credits)

    def reprompt_cost(self, scene_duration_seconds: float) -> int:
        """Flat price for re-prompting one scene: under 10s, up to 30s, longer."""
        if scene_duration_seconds < 0:
            raise ValueError(f"scene_duration_seconds must be non-negative, got {scene_duration_seconds}")
        if scene_duration_seconds < 10:
            return self.pricing.reprompt_short
        if scene_duration_seconds <= 30:
            return self.pricing.reprompt_medium
        return self.pricing.reprompt_long

    def credit_costs(self) -> dict:
        """Published price list for every billable operation."""
        return {
            "video": {
                "per_minute": self.pricing.credits_per_minute,
                **{f"{seconds}s": credits for seconds, credits in sorted(self.pricing.video_presets.items())},
            },
            "reprompt": {
                "short": self.pricing.reprompt_short,
                "medium": self.pricing.reprompt_medium,
                "long": self.pricing.reprompt_long,
            },
            "thumbnail": self.pricing.thumbnail,
            "music_ai": self.pricing.music_ai,
            "policy_scan": self.pricing.policy_scan,
        }

    def cost_table(
        self,
        durations: tuple[int, ...] = (5, 15, 30, 60),
    ) -> dict[str, dict[str, dict[int, int]]]:
        """Price schedule as {provider: {resolution: {seconds: credits}}}."""
        return {
            provider_id: {
                resolution.value: {
                    seconds: self.estimate(seconds, resolution, provider_id)
                    for seconds in durations
                }
                for resolution in Resolution
                if resolution.value in self.pricing.resolution_multipliers
            }
            for provider_id in self.pricing.provider_multipliers
        }
