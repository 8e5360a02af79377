"""
Provider Health Tracker

Keeps a rolling reliability/latency score per provider from observed
attempt outcomes, and answers two questions for the router:
- is this provider eligible to be offered for selection?
- which of these candidates is best right now?

Scores are exponential moving averages with smoothing factor alpha:

    success_rate' = success_rate * (1 - alpha) + outcome * alpha
    avg_latency'  = avg_latency  * (1 - alpha) + latency * alpha

A provider becomes unavailable when its success rate drops to the
availability threshold (0.5), and is only eligible for selection above the
stricter eligibility threshold (0.8). New providers start at 1.0 so they
can be selected before any evidence exists.

Each provider has its own lock so concurrent attempts never interleave a
read-modify-write of the same record.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional

from core.config import HealthConfig, get_config
from core.errors import UnknownProvider
from services.models import AttemptOutcome

logger = logging.getLogger(__name__)

# Upstream health check: returns True if the provider answered
HealthProbe = Callable[[str], Awaitable[bool]]


@dataclass
class ProviderHealth:
    """Health record for one provider."""
    provider_id: str
    success_rate: float = 1.0
    avg_response_time_ms: float = 10000.0
    last_checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    available: bool = True
    total_successes: int = 0
    total_failures: int = 0

    @property
    def score(self) -> float:
        """Ranking score: reward reliability, penalize latency."""
        return self.success_rate / (self.avg_response_time_ms + 1)


class ProviderHealthTracker:
    """
    Rolling health scores for all registered providers.

    Usage:
        tracker = ProviderHealthTracker(["runway", "stability", "veo3"])

        await tracker.record("runway", AttemptOutcome.FAILURE, latency_ms=4200)

        if tracker.is_eligible("runway"):
            ...

        best = tracker.rank(["runway", "veo3"])[0]
    """

    def __init__(
        self,
        provider_ids: Iterable[str] = (),
        config: Optional[HealthConfig] = None,
        probe: Optional[HealthProbe] = None,
    ):
        self.config = config or get_config().health
        self.probe = probe
        self._health: dict[str, ProviderHealth] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._refresh_task: Optional[asyncio.Task] = None

        for provider_id in provider_ids:
            self.add_provider(provider_id)

    def add_provider(self, provider_id: str) -> None:
        """Seed a provider with the optimistic prior. Existing records are kept."""
        if provider_id in self._health:
            return
        self._health[provider_id] = ProviderHealth(
            provider_id=provider_id,
            avg_response_time_ms=self.config.seed_response_time_ms,
        )
        self._locks[provider_id] = asyncio.Lock()

    def _record_for(self, provider_id: str) -> ProviderHealth:
        try:
            return self._health[provider_id]
        except KeyError:
            raise UnknownProvider(provider_id) from None

    async def record(
        self,
        provider_id: str,
        outcome: AttemptOutcome,
        latency_ms: float,
    ) -> ProviderHealth:
        """
        Fold one completed attempt into the provider's scores.

        Args:
            provider_id: Provider that handled the attempt
            outcome: SUCCESS or FAILURE
            latency_ms: Observed latency of the attempt

        Returns:
            Snapshot of the updated health record
        """
        if outcome == AttemptOutcome.PENDING:
            raise ValueError("Only completed attempts can be recorded")
        if latency_ms < 0:
            raise ValueError(f"latency_ms must be non-negative, got {latency_ms}")

        health = self._record_for(provider_id)
        alpha = self.config.smoothing_factor
        value = 1.0 if outcome == AttemptOutcome.SUCCESS else 0.0

        async with self._locks[provider_id]:
            rate = health.success_rate * (1 - alpha) + value * alpha
            health.success_rate = min(1.0, max(0.0, rate))
            health.avg_response_time_ms = (
                health.avg_response_time_ms * (1 - alpha) + latency_ms * alpha
            )
            health.available = health.success_rate > self.config.availability_threshold
            health.last_checked_at = datetime.now(timezone.utc)
            if value:
                health.total_successes += 1
            else:
                health.total_failures += 1
            snapshot = replace(health)

        logger.info(
            f"{provider_id} health: {snapshot.success_rate * 100:.1f}% success, "
            f"{snapshot.avg_response_time_ms:.0f}ms avg, available={snapshot.available}"
        )
        return snapshot

    def is_eligible(self, provider_id: str) -> bool:
        """Available and above the stricter selection bar."""
        health = self._record_for(provider_id)
        return health.available and health.success_rate > self.config.eligibility_threshold

    def rank(self, candidates: Iterable[str]) -> list[str]:
        """Candidates sorted best-first by success_rate / (avg_latency + 1)."""
        candidates = list(candidates)
        scores = {p: self._record_for(p).score for p in candidates}
        # sorted() is stable, so ties keep the caller's order
        return sorted(candidates, key=lambda p: scores[p], reverse=True)

    def get(self, provider_id: str) -> ProviderHealth:
        """Copy of one provider's health record."""
        return replace(self._record_for(provider_id))

    def snapshot(self) -> list[ProviderHealth]:
        """Copies of every health record, in registration order."""
        return [replace(h) for h in self._health.values()]

    def provider_ids(self) -> list[str]:
        return list(self._health)

    async def refresh_all(self) -> None:
        """
        Periodic sweep over all providers.

        Without a probe this is a liveness heartbeat that only re-stamps
        last_checked_at. With a probe, a provider that fails its check is
        marked unavailable until it passes again.
        """
        for provider_id in list(self._health):
            healthy: Optional[bool] = None
            if self.probe is not None:
                try:
                    healthy = await self.probe(provider_id)
                except Exception as e:
                    logger.warning(f"Health probe for {provider_id} failed: {e}")
                    healthy = False

            health = self._health[provider_id]
            async with self._locks[provider_id]:
                health.last_checked_at = datetime.now(timezone.utc)
                if healthy is not None:
                    health.available = healthy and (
                        health.success_rate > self.config.availability_threshold
                    )

        logger.debug(f"Refreshed health for {len(self._health)} providers")

    async def _refresh_loop(self) -> None:
        interval = self.config.refresh_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.refresh_all()
            except Exception:
                logger.exception("Provider health refresh failed")

    def start(self) -> None:
        """Start the periodic refresh in the running event loop."""
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._refresh_loop())
            logger.info(
                f"Health refresh every {self.config.refresh_interval_seconds:.0f}s"
            )

    async def stop(self) -> None:
        """Stop the periodic refresh."""
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None

    def get_stats(self) -> dict[str, dict]:
        """Display-friendly health summary per provider."""
        return {
            h.provider_id: {
                "success_rate": f"{h.success_rate * 100:.1f}%",
                "avg_response_time": f"{h.avg_response_time_ms:.0f}ms",
                "available": h.available,
                "eligible": self.is_eligible(h.provider_id),
                "last_checked": h.last_checked_at.isoformat(),
                "total_successes": h.total_successes,
                "total_failures": h.total_failures,
            }
            for h in self._health.values()
        }
