"""
Provider Selection Rules

The selection policy is an ordered decision table of predicate -> choice
pairs. The first rule whose predicate matches picks the provider, so
plan and cost guardrails are checked before quality optimization.

FREE and low-credit users always get the default provider without
consulting health. That is a business trade-off (cost predictability over
availability), not an oversight.
"""

from dataclasses import dataclass
from typing import Callable

from core.config import RoutingConfig
from services.health import ProviderHealthTracker
from services.models import GenerationJob, Priority


@dataclass(frozen=True)
class RoutingContext:
    """Everything a rule may consult besides the job itself."""
    config: RoutingConfig
    health: ProviderHealthTracker
    provider_ids: tuple[str, ...]

    @property
    def default_provider(self) -> str:
        return self.config.default_provider

    @property
    def premium_provider(self) -> str:
        return self.config.premium_provider

    def eligible(self) -> list[str]:
        return [p for p in self.provider_ids if self.health.is_eligible(p)]


Predicate = Callable[[GenerationJob, RoutingContext], bool]
Chooser = Callable[[GenerationJob, RoutingContext], str]


@dataclass(frozen=True)
class RoutingRule:
    """One row of the decision table."""
    name: str
    applies: Predicate
    choose: Chooser


def _default(job: GenerationJob, ctx: RoutingContext) -> str:
    return ctx.default_provider


def _is_low_credit(job: GenerationJob, ctx: RoutingContext) -> bool:
    return job.user_credits is not None and job.user_credits < ctx.config.low_credit_threshold


def _is_premium_urgent(job: GenerationJob, ctx: RoutingContext) -> bool:
    return job.priority == Priority.HIGH and job.user_plan == ctx.config.top_tier_plan


def _best_ranked(job: GenerationJob, ctx: RoutingContext) -> str:
    return ctx.health.rank(ctx.eligible())[0]


SELECTION_RULES: tuple[RoutingRule, ...] = (
    RoutingRule(
        name="explicit_provider",
        applies=lambda job, ctx: bool(job.explicit_provider),
        choose=lambda job, ctx: job.explicit_provider,
    ),
    RoutingRule(
        name="free_plan",
        applies=lambda job, ctx: job.user_plan == ctx.config.free_plan,
        choose=_default,
    ),
    RoutingRule(
        name="low_credit",
        applies=_is_low_credit,
        choose=_default,
    ),
    RoutingRule(
        name="premium_high_priority",
        applies=_is_premium_urgent,
        choose=lambda job, ctx: ctx.premium_provider,
    ),
    RoutingRule(
        name="no_eligible_providers",
        applies=lambda job, ctx: not ctx.eligible(),
        choose=_default,
    ),
    RoutingRule(
        name="best_health",
        applies=lambda job, ctx: True,
        choose=_best_ranked,
    ),
)
