"""
Configuration management for the generation router.

Centralizes all configuration including:
- Provider API keys and endpoints
- Credit pricing
- Routing guardrails
- Health tracking thresholds
- Provider call timeouts
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass
class APIConfig:
    """API configuration for the external generation services."""

    runway_api_key: str = field(default_factory=lambda: os.getenv("RUNWAY_API_KEY", ""))
    runway_api_url: str = field(
        default_factory=lambda: os.getenv("RUNWAY_API_URL", "https://api.runwayml.com/v1")
    )

    stability_api_key: str = field(default_factory=lambda: os.getenv("STABILITY_API_KEY", ""))
    stability_api_url: str = field(
        default_factory=lambda: os.getenv("STABILITY_API_URL", "https://api.stability.ai/v1")
    )

    veo3_api_key: str = field(default_factory=lambda: os.getenv("VEO3_API_KEY", ""))
    veo3_project_id: str = field(default_factory=lambda: os.getenv("VEO3_PROJECT_ID", ""))
    veo3_api_url: str = field(
        default_factory=lambda: os.getenv("VEO3_API_URL", "https://veo.googleapis.com/v1")
    )

    # Prompt enhancement
    google_api_key: str = field(default_factory=lambda: os.getenv("GOOGLE_API_KEY", ""))
    enhancement_model: str = field(
        default_factory=lambda: os.getenv("ENHANCEMENT_MODEL", "gemini-2.0-flash")
    )


@dataclass
class DatabaseConfig:
    """Database configuration for the persistent credit ledger."""
    url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", ""))
    pool_min_size: int = 2
    pool_max_size: int = 10


@dataclass
class PricingConfig:
    """Credit pricing for video generation."""

    credits_per_minute: int = field(
        default_factory=lambda: _env_int("CREDIT_VIDEO_PER_MINUTE", 10)
    )

    resolution_multipliers: dict[str, float] = field(default_factory=lambda: {
        "720p": 1.0,
        "1080p": 1.5,
        "4K": 3.0,
    })

    # Relative cost of each provider (stability is the cheap default)
    provider_multipliers: dict[str, float] = field(default_factory=lambda: {
        "stability": 1.0,
        "runway": 1.2,
        "veo3": 1.5,
    })

    # Published prices for the common clip lengths, in seconds
    video_presets: dict[int, int] = field(default_factory=lambda: {
        5: _env_int("CREDIT_VIDEO_5S", 1),
        15: _env_int("CREDIT_VIDEO_15S", 3),
        30: _env_int("CREDIT_VIDEO_30S", 5),
        60: _env_int("CREDIT_VIDEO_60S", 10),
    })

    # Re-prompting a single scene, by scene length
    reprompt_short: int = field(default_factory=lambda: _env_int("CREDIT_REPROMPT_SHORT", 1))
    reprompt_medium: int = field(default_factory=lambda: _env_int("CREDIT_REPROMPT_MEDIUM", 2))
    reprompt_long: int = field(default_factory=lambda: _env_int("CREDIT_REPROMPT_LONG", 4))

    thumbnail: int = field(default_factory=lambda: _env_int("CREDIT_THUMBNAIL", 1))
    music_ai: int = field(default_factory=lambda: _env_int("CREDIT_MUSIC_AI", 2))
    policy_scan: int = field(default_factory=lambda: _env_int("CREDIT_POLICY_SCAN", 1))

    # Operations above this many credits need an explicit confirmation
    confirmation_threshold: int = field(
        default_factory=lambda: _env_int("CREDIT_CONFIRMATION_THRESHOLD", 50)
    )


@dataclass
class RoutingConfig:
    """Guardrails for automatic provider selection."""

    # Cheapest provider; also the fallback and total-outage choice
    default_provider: str = field(
        default_factory=lambda: os.getenv("ROUTER_DEFAULT_PROVIDER", "stability")
    )
    # Highest-quality provider for premium, urgent jobs
    premium_provider: str = field(
        default_factory=lambda: os.getenv("ROUTER_PREMIUM_PROVIDER", "veo3")
    )
    free_plan: str = "FREE"
    top_tier_plan: str = field(
        default_factory=lambda: os.getenv("ROUTER_TOP_TIER_PLAN", "ENTERPRISE")
    )
    low_credit_threshold: int = field(
        default_factory=lambda: _env_int("ROUTER_LOW_CREDIT_THRESHOLD", 50)
    )


@dataclass
class HealthConfig:
    """Provider health tracking thresholds."""
    smoothing_factor: float = 0.1
    availability_threshold: float = 0.5  # below this a provider is unavailable
    eligibility_threshold: float = 0.8  # below this a provider is not offered
    seed_response_time_ms: float = 10000.0
    refresh_interval_seconds: float = field(
        default_factory=lambda: _env_float("HEALTH_REFRESH_INTERVAL", 300.0)
    )


@dataclass
class ProviderTimeoutConfig:
    """Bounded timeouts for calls into one provider."""
    submit_timeout: float = 30.0
    poll_timeout: float = 30.0
    cancel_timeout: float = 10.0


@dataclass
class OrchestratorConfig:
    """Job monitoring settings."""
    poll_interval_seconds: float = field(
        default_factory=lambda: _env_float("JOB_POLL_INTERVAL", 5.0)
    )
    # A job still processing after this long is treated as a provider failure
    max_processing_seconds: float = field(
        default_factory=lambda: _env_float("JOB_MAX_PROCESSING_SECONDS", 900.0)
    )


def _default_timeouts() -> dict[str, ProviderTimeoutConfig]:
    return {
        "runway": ProviderTimeoutConfig(submit_timeout=30.0, poll_timeout=30.0),
        "stability": ProviderTimeoutConfig(submit_timeout=60.0, poll_timeout=30.0),
        "veo3": ProviderTimeoutConfig(submit_timeout=30.0, poll_timeout=30.0),
    }


@dataclass
class Config:
    """Main configuration class."""

    api: APIConfig = field(default_factory=APIConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    timeouts: dict[str, ProviderTimeoutConfig] = field(default_factory=_default_timeouts)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def timeouts_for(self, provider_id: str) -> ProviderTimeoutConfig:
        """Timeouts for a provider, falling back to the defaults."""
        return self.timeouts.get(provider_id, ProviderTimeoutConfig())

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if not (
            self.api.runway_api_key
            or self.api.stability_api_key
            or self.api.veo3_api_key
        ):
            issues.append("No generation provider API key configured")

        if self.routing.default_provider not in self.pricing.provider_multipliers:
            issues.append(
                f"Default provider {self.routing.default_provider!r} has no price multiplier"
            )

        if self.routing.premium_provider not in self.pricing.provider_multipliers:
            issues.append(
                f"Premium provider {self.routing.premium_provider!r} has no price multiplier"
            )

        if not (
            0 < self.health.availability_threshold
            <= self.health.eligibility_threshold < 1
        ):
            issues.append("Health thresholds must satisfy 0 < availability <= eligibility < 1")

        if not self.api.google_api_key:
            issues.append("GOOGLE_API_KEY not configured (prompt enhancement disabled)")

        return issues


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reload_config():
    """Reload configuration from environment."""
    global _config
    _config = Config.from_env()
