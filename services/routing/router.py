"""
Job Router

Decides which provider handles a job, and which provider takes over when
the first choice fails.

Usage:
    router = JobRouter(registry.ids(), health_tracker)

    provider = router.select(job)
    fallback = router.select_fallback(job, failed_provider_id=provider)
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from core.config import RoutingConfig, get_config
from core.errors import UnknownProvider
from services.health import ProviderHealthTracker
from services.models import GenerationJob

from .rules import SELECTION_RULES, RoutingContext, RoutingRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoutingDecision:
    """Which provider was picked and by which rule."""
    provider_id: str
    rule: str


class JobRouter:
    """
    Evaluates the selection decision table against a job.

    The table always ends in a catch-all rule, so selection is total and
    never searches: every call returns exactly one provider.
    """

    def __init__(
        self,
        provider_ids: Iterable[str],
        health: ProviderHealthTracker,
        config: Optional[RoutingConfig] = None,
        rules: Optional[tuple[RoutingRule, ...]] = None,
    ):
        self.config = config or get_config().routing
        self.health = health
        self.rules = rules or SELECTION_RULES
        self._context = RoutingContext(
            config=self.config,
            health=health,
            provider_ids=tuple(provider_ids),
        )

        for provider_id in (self.config.default_provider, self.config.premium_provider):
            if provider_id not in self._context.provider_ids:
                raise UnknownProvider(provider_id)

    @property
    def provider_ids(self) -> tuple[str, ...]:
        return self._context.provider_ids

    def decide(self, job: GenerationJob) -> RoutingDecision:
        """Run the decision table and report the matching rule."""
        for rule in self.rules:
            if rule.applies(job, self._context):
                decision = RoutingDecision(rule.choose(job, self._context), rule.name)
                logger.info(
                    f"Routing job {job.job_id} to {decision.provider_id} (rule: {decision.rule})"
                )
                return decision

        # Unreachable with the default table, whose last rule always applies
        return RoutingDecision(self.config.default_provider, "default")

    def select(self, job: GenerationJob) -> str:
        """Provider for a job's first attempt."""
        return self.decide(job).provider_id

    def select_fallback(self, job: GenerationJob, failed_provider_id: str) -> str:
        """
        Provider for the single retry after a failed attempt.

        Always the default provider, regardless of health. There is no
        search, so a job gets at most one fallback attempt.
        """
        fallback = self.config.default_provider
        logger.info(
            f"Fallback for job {job.job_id}: {failed_provider_id} -> {fallback}"
        )
        return fallback
