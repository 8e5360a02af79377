"""
Job Orchestrator Tests

End-to-end job flows against fake provider clients and the in-memory
ledger:
1. Happy path and charging
2. Insufficient credits
3. Fallback after submit and processing failures
4. Permanent errors
5. Timeouts
6. Prompt enhancement
7. Cancellation
8. Status queries, history, usage confirmation and startup checks

Run with:
    python -m pytest tests/test_orchestrator.py -v
"""

import asyncio
import os
import sys
from typing import Awaitable, Callable, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import (
    Config,
    HealthConfig,
    OrchestratorConfig,
    PricingConfig,
    ProviderTimeoutConfig,
    RoutingConfig,
)
from core.errors import (
    AccountNotFound,
    InsufficientCredits,
    InvalidTransition,
    JobNotFound,
    ProviderError,
    UnknownProvider,
)
from services.ledger import InMemoryCreditLedger, TransactionKind
from services.models import FailureKind, GenerationJob, JobStatus
from services.orchestrator import JobOrchestrator, JobRecord
from services.providers import ProviderClient, ProviderRegistry, ProviderTaskStatus, TaskState


class FakeProvider(ProviderClient):
    """Scripted provider: optional submit error, then a sequence of poll states."""

    def __init__(
        self,
        provider_id: str,
        statuses: Optional[list[TaskState]] = None,
        submit_error: Optional[Exception] = None,
        submit_delay: float = 0,
        on_submit: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.provider_id = provider_id
        self.statuses = list(statuses or [TaskState.COMPLETED])
        self.submit_error = submit_error
        self.submit_delay = submit_delay
        self.on_submit = on_submit
        self.submitted: list[str] = []
        self.cancelled: list[str] = []

    async def submit(self, prompt: str, duration_seconds: float, resolution: str) -> str:
        if self.submit_delay:
            await asyncio.sleep(self.submit_delay)
        if self.submit_error:
            raise self.submit_error
        self.submitted.append(prompt)
        if self.on_submit:
            await self.on_submit()
        return f"{self.provider_id}-task-{len(self.submitted)}"

    async def poll(self, task_id: str) -> ProviderTaskStatus:
        state = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return ProviderTaskStatus(
            task_id=task_id,
            status=state,
            result_url=f"https://cdn.test/{task_id}.mp4" if state == TaskState.COMPLETED else None,
            progress=50 if state == TaskState.PROCESSING else None,
            error="render failed" if state == TaskState.FAILED else None,
        )

    async def cancel(self, task_id: str) -> None:
        self.cancelled.append(task_id)


class GatedLedger(InMemoryCreditLedger):
    """In-memory ledger whose deduct() waits for the test to release it."""

    def __init__(self):
        super().__init__()
        self.deducting = asyncio.Event()
        self.release = asyncio.Event()

    async def deduct(self, user_id, amount, reason, related_job_id=None):
        self.deducting.set()
        await self.release.wait()
        return await super().deduct(user_id, amount, reason, related_job_id=related_job_id)


@pytest.fixture
def config():
    config = Config()
    config.pricing = PricingConfig(credits_per_minute=10)
    config.routing = RoutingConfig(
        default_provider="stability",
        premium_provider="veo3",
        top_tier_plan="ENTERPRISE",
        low_credit_threshold=50,
    )
    config.health = HealthConfig(refresh_interval_seconds=300)
    config.orchestrator = OrchestratorConfig(poll_interval_seconds=0, max_processing_seconds=60)
    config.timeouts = {}
    return config


@pytest.fixture
def ledger():
    return InMemoryCreditLedger()


def make_job(job_id="job-1", **overrides) -> GenerationJob:
    fields = dict(
        job_id=job_id,
        user_id="user-1",
        prompt="A hummingbird in slow motion",
        duration_seconds=30,
        user_plan="PRO",
    )
    fields.update(overrides)
    return GenerationJob(**fields)


def build(config, ledger, runway=None, stability=None, veo3=None, **kwargs):
    providers = {
        "runway": runway or FakeProvider("runway"),
        "stability": stability or FakeProvider("stability"),
        "veo3": veo3 or FakeProvider("veo3"),
    }
    registry = ProviderRegistry(list(providers.values()))
    orchestrator = JobOrchestrator(registry, ledger, config=config, **kwargs)
    return orchestrator, providers


class TestHappyPath:
    """A job that completes on its first provider."""

    @pytest.mark.asyncio
    async def test_free_plan_job(self, config, ledger):
        """FREE, 30s, 720p: routed to the default provider and charged 5 credits."""
        await ledger.open_account("user-1", "FREE", initial_balance=100)
        orchestrator, providers = build(config, ledger)

        submitted = await orchestrator.submit_job(make_job(user_plan="FREE"))
        assert submitted.status == JobStatus.PROCESSING
        assert submitted.provider == "stability"
        assert submitted.estimated_cost == 5

        result = await orchestrator.wait_for_job("job-1", timeout=5)

        assert result.status == JobStatus.COMPLETED
        assert result.credits_used == 5
        assert result.result_url == "https://cdn.test/stability-task-1.mp4"
        assert result.progress == 100
        assert not result.fallback_used
        assert (await orchestrator.get_balance("user-1")).balance == 95

        health = orchestrator.health.get("stability")
        assert health.total_successes == 1

    @pytest.mark.asyncio
    async def test_deduction_linked_to_job(self, config, ledger):
        await ledger.open_account("user-1", "PRO", initial_balance=500)
        orchestrator, _ = build(config, ledger)

        await orchestrator.run_job(make_job(explicit_provider="runway"), timeout=5)

        history = await orchestrator.get_history("user-1")
        assert len(history) == 1
        assert history[0].kind == TransactionKind.DEDUCTION
        assert history[0].amount == -6
        assert history[0].related_job_id == "job-1"

    @pytest.mark.asyncio
    async def test_progress_reported_while_processing(self, config, ledger):
        await ledger.open_account("user-1", "PRO", initial_balance=500)
        config.orchestrator.poll_interval_seconds = 0.01
        runway = FakeProvider("runway", statuses=[TaskState.PROCESSING])
        orchestrator, _ = build(config, ledger, runway=runway)

        await orchestrator.submit_job(make_job(explicit_provider="runway"))
        await asyncio.sleep(0.05)

        status = await orchestrator.get_job_status("job-1")
        assert status.status == JobStatus.PROCESSING
        assert status.progress == 50
        await orchestrator.close()


class TestInsufficientCredits:
    """Jobs the user cannot afford never reach a provider."""

    @pytest.mark.asyncio
    async def test_rejected_before_submit(self, config, ledger):
        await ledger.open_account("user-1", "FREE", initial_balance=3)
        orchestrator, providers = build(config, ledger)

        result = await orchestrator.submit_job(make_job(user_plan="FREE"))

        assert result.status == JobStatus.FAILED
        assert result.failure.kind == FailureKind.INSUFFICIENT_CREDITS
        assert result.provider is None
        assert all(not p.submitted for p in providers.values())
        assert (await ledger.get_balance("user-1")).balance == 3

    @pytest.mark.asyncio
    async def test_balance_drained_between_check_and_deduct(self, config, ledger):
        """The deduction re-checks: a concurrent drain fails the job and cancels the task."""
        await ledger.open_account("user-1", "PRO", initial_balance=100)

        async def drain():
            await ledger.deduct("user-1", 100, "another job")

        runway = FakeProvider("runway", on_submit=drain)
        orchestrator, _ = build(config, ledger, runway=runway)

        result = await orchestrator.submit_job(make_job(explicit_provider="runway"))

        assert result.status == JobStatus.FAILED
        assert result.failure.kind == FailureKind.INSUFFICIENT_CREDITS
        assert runway.cancelled == ["runway-task-1"]
        assert orchestrator.health.get("runway").total_failures == 0
        assert (await ledger.get_balance("user-1")).balance == 0

    @pytest.mark.asyncio
    async def test_concurrent_jobs_never_overdraw(self, config, ledger):
        """Five 5-credit jobs against 12 credits: two run, balance stays non-negative."""
        await ledger.open_account("user-1", "FREE", initial_balance=12)
        orchestrator, _ = build(config, ledger)

        results = await asyncio.gather(*[
            orchestrator.run_job(make_job(f"job-{i}", user_plan="FREE"), timeout=5)
            for i in range(5)
        ])

        completed = [r for r in results if r.status == JobStatus.COMPLETED]
        failed = [r for r in results if r.status == JobStatus.FAILED]
        assert len(completed) == 2
        assert all(r.failure.kind == FailureKind.INSUFFICIENT_CREDITS for r in failed)
        assert (await ledger.get_balance("user-1")).balance == 2


class TestFallback:
    """One retry on the default provider, never a second charge."""

    @pytest.mark.asyncio
    async def test_processing_failure_falls_back_without_second_charge(self, config, ledger):
        """Provider A accepts then fails; B completes; one deduction; one failure for A."""
        await ledger.open_account("user-1", "PRO", initial_balance=500)
        runway = FakeProvider("runway", statuses=[TaskState.FAILED])
        orchestrator, providers = build(config, ledger, runway=runway)

        await orchestrator.submit_job(make_job(explicit_provider="runway"))
        result = await orchestrator.wait_for_job("job-1", timeout=5)

        assert result.status == JobStatus.COMPLETED
        assert result.provider == "stability"
        assert result.fallback_used
        assert result.credits_used == 6

        history = await ledger.history("user-1")
        assert [tx.kind for tx in history] == [TransactionKind.DEDUCTION]
        assert (await ledger.get_balance("user-1")).balance == 494

        assert orchestrator.health.get("runway").total_failures == 1
        assert orchestrator.health.get("stability").total_successes == 1

        attempts = orchestrator.get_attempts("job-1")
        assert [a.provider_id for a in attempts] == ["runway", "stability"]
        assert attempts[1].fallback

    @pytest.mark.asyncio
    async def test_submit_failure_falls_back(self, config, ledger):
        await ledger.open_account("user-1", "PRO", initial_balance=500)
        runway = FakeProvider(
            "runway",
            submit_error=ProviderError("overloaded", provider="runway", error_code="HTTP_503"),
        )
        orchestrator, providers = build(config, ledger, runway=runway)

        submitted = await orchestrator.submit_job(make_job(explicit_provider="runway"))
        assert submitted.provider == "stability"
        assert submitted.status == JobStatus.PROCESSING

        result = await orchestrator.wait_for_job("job-1", timeout=5)
        assert result.status == JobStatus.COMPLETED
        assert orchestrator.health.get("runway").total_failures == 1
        assert len(await ledger.history("user-1")) == 1

    @pytest.mark.asyncio
    async def test_default_provider_retried_once(self, config, ledger):
        """When the default provider fails it is also the fallback."""
        await ledger.open_account("user-1", "FREE", initial_balance=100)
        stability = FakeProvider("stability", statuses=[TaskState.FAILED, TaskState.COMPLETED])
        orchestrator, _ = build(config, ledger, stability=stability)

        result = await orchestrator.run_job(make_job(user_plan="FREE"), timeout=5)

        assert result.status == JobStatus.COMPLETED
        assert result.fallback_used
        assert len(stability.submitted) == 2

    @pytest.mark.asyncio
    async def test_both_attempts_fail(self, config, ledger):
        """Two failures end the job; the charge is kept."""
        await ledger.open_account("user-1", "PRO", initial_balance=500)
        runway = FakeProvider("runway", statuses=[TaskState.FAILED])
        stability = FakeProvider("stability", statuses=[TaskState.FAILED])
        orchestrator, _ = build(config, ledger, runway=runway, stability=stability)

        result = await orchestrator.run_job(make_job(explicit_provider="runway"), timeout=5)

        assert result.status == JobStatus.FAILED
        assert result.failure.kind == FailureKind.PROVIDER_FAILURE
        assert len(result.failure.attempt_errors) == 2
        assert len(orchestrator.get_attempts("job-1")) == 2
        assert (await ledger.get_balance("user-1")).balance == 494

    @pytest.mark.asyncio
    async def test_both_submits_fail_without_charge(self, config, ledger):
        await ledger.open_account("user-1", "PRO", initial_balance=500)
        error = ProviderError("down", error_code="REQUEST_ERROR")
        runway = FakeProvider("runway", submit_error=error)
        stability = FakeProvider("stability", submit_error=error)
        orchestrator, _ = build(config, ledger, runway=runway, stability=stability)

        result = await orchestrator.submit_job(make_job(explicit_provider="runway"))

        assert result.status == JobStatus.FAILED
        assert result.credits_used == 0
        assert (await ledger.get_balance("user-1")).balance == 500


class TestPermanentErrors:
    """Rejections are not retried and do not hurt provider health."""

    @pytest.mark.asyncio
    async def test_permanent_submit_error(self, config, ledger):
        await ledger.open_account("user-1", "PRO", initial_balance=500)
        runway = FakeProvider(
            "runway",
            submit_error=ProviderError(
                "prompt rejected",
                provider="runway",
                error_code="HTTP_422",
                permanent=True,
            ),
        )
        orchestrator, providers = build(config, ledger, runway=runway)

        result = await orchestrator.submit_job(make_job(explicit_provider="runway"))

        assert result.status == JobStatus.FAILED
        assert result.failure.kind == FailureKind.PROVIDER_FAILURE
        assert "prompt rejected" in result.error
        assert not providers["stability"].submitted
        assert orchestrator.health.get("runway").total_failures == 0
        assert (await ledger.get_balance("user-1")).balance == 500


class TestTimeouts:
    """Per-provider time limits count as failures."""

    @pytest.mark.asyncio
    async def test_submit_timeout_falls_back(self, config, ledger):
        await ledger.open_account("user-1", "PRO", initial_balance=500)
        config.timeouts["runway"] = ProviderTimeoutConfig(submit_timeout=0.01)
        runway = FakeProvider("runway", submit_delay=1)
        orchestrator, _ = build(config, ledger, runway=runway)

        result = await orchestrator.run_job(make_job(explicit_provider="runway"), timeout=5)

        assert result.status == JobStatus.COMPLETED
        assert result.provider == "stability"
        assert orchestrator.health.get("runway").total_failures == 1
        assert "timed out" in orchestrator.get_attempts("job-1")[0].error

    @pytest.mark.asyncio
    async def test_processing_time_limit(self, config, ledger):
        await ledger.open_account("user-1", "PRO", initial_balance=500)
        config.orchestrator = OrchestratorConfig(poll_interval_seconds=0.01, max_processing_seconds=0.02)
        runway = FakeProvider("runway", statuses=[TaskState.PROCESSING])
        stability = FakeProvider("stability", statuses=[TaskState.PROCESSING])
        orchestrator, _ = build(config, ledger, runway=runway, stability=stability)

        result = await orchestrator.run_job(make_job(explicit_provider="runway"), timeout=5)

        assert result.status == JobStatus.FAILED
        assert result.failure.kind == FailureKind.PROVIDER_FAILURE
        assert all("Processing exceeded" in a.error for a in orchestrator.get_attempts("job-1"))


class TestEnhancement:
    """Optional prompt rewriting before the first submit."""

    @pytest.mark.asyncio
    async def test_enhanced_prompt_is_submitted(self, config, ledger):
        await ledger.open_account("user-1", "FREE", initial_balance=100)
        enhancer = MagicMock()
        enhancer.enhance = AsyncMock(return_value="Cinematic slow-motion hummingbird, golden hour")
        orchestrator, providers = build(config, ledger, enhancer=enhancer)

        await orchestrator.run_job(make_job(user_plan="FREE"), timeout=5)

        assert providers["stability"].submitted == ["Cinematic slow-motion hummingbird, golden hour"]
        enhancer.enhance.assert_awaited_once_with("A hummingbird in slow motion", 30, "FREE")

    @pytest.mark.asyncio
    async def test_enhancement_failure_uses_raw_prompt(self, config, ledger):
        await ledger.open_account("user-1", "FREE", initial_balance=100)
        enhancer = MagicMock()
        enhancer.enhance = AsyncMock(side_effect=RuntimeError("quota exceeded"))
        orchestrator, providers = build(config, ledger, enhancer=enhancer)

        result = await orchestrator.run_job(make_job(user_plan="FREE"), timeout=5)

        assert result.status == JobStatus.COMPLETED
        assert providers["stability"].submitted == ["A hummingbird in slow motion"]

    @pytest.mark.asyncio
    async def test_not_called_for_unaffordable_job(self, config, ledger):
        await ledger.open_account("user-1", "FREE", initial_balance=1)
        enhancer = MagicMock()
        enhancer.enhance = AsyncMock(return_value="x")
        orchestrator, _ = build(config, ledger, enhancer=enhancer)

        await orchestrator.submit_job(make_job(user_plan="FREE"))

        enhancer.enhance.assert_not_awaited()


class TestCancel:
    """User cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_processing_job(self, config, ledger):
        """Cancelling calls the provider and keeps the charge."""
        await ledger.open_account("user-1", "PRO", initial_balance=500)
        config.orchestrator.poll_interval_seconds = 0.01
        runway = FakeProvider("runway", statuses=[TaskState.PROCESSING])
        orchestrator, _ = build(config, ledger, runway=runway)

        await orchestrator.submit_job(make_job(explicit_provider="runway"))
        result = await orchestrator.cancel_job("job-1")

        assert result.status == JobStatus.FAILED
        assert result.failure.kind == FailureKind.CANCELLED
        assert runway.cancelled == ["runway-task-1"]
        assert (await ledger.get_balance("user-1")).balance == 494

        final = await orchestrator.wait_for_job("job-1", timeout=1)
        assert final.status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_cancel_terminal_job_is_noop(self, config, ledger):
        await ledger.open_account("user-1", "FREE", initial_balance=100)
        orchestrator, providers = build(config, ledger)

        completed = await orchestrator.run_job(make_job(user_plan="FREE"), timeout=5)
        result = await orchestrator.cancel_job("job-1")

        assert result == completed
        assert not providers["stability"].cancelled

    @pytest.mark.asyncio
    async def test_cancel_while_deducting(self, config):
        """A cancel that lands during the deduction stops the job and refunds it."""
        ledger = GatedLedger()
        await ledger.open_account("user-1", "PRO", initial_balance=500)
        orchestrator, providers = build(config, ledger)

        submit = asyncio.create_task(orchestrator.submit_job(make_job(explicit_provider="runway")))
        await ledger.deducting.wait()

        requested = await orchestrator.cancel_job("job-1")
        assert requested.status == JobStatus.SUBMITTING

        ledger.release.set()
        result = await submit

        assert result.status == JobStatus.FAILED
        assert result.failure.kind == FailureKind.CANCELLED
        assert result.credits_used == 0
        assert providers["runway"].cancelled == ["runway-task-1"]
        assert "job-1" not in orchestrator._monitors

        history = await ledger.history("user-1")
        assert [tx.kind for tx in history] == [TransactionKind.REFUND, TransactionKind.DEDUCTION]
        assert all(tx.related_job_id == "job-1" for tx in history)
        assert (await ledger.get_balance("user-1")).balance == 500

    @pytest.mark.asyncio
    async def test_cancel_before_submit_returns(self, config, ledger):
        """Cancelled while the provider call is in flight: never charged."""
        await ledger.open_account("user-1", "PRO", initial_balance=500)
        runway = FakeProvider("runway", submit_delay=0.05)
        orchestrator, _ = build(config, ledger, runway=runway)

        submit = asyncio.create_task(orchestrator.submit_job(make_job(explicit_provider="runway")))
        await asyncio.sleep(0.01)
        await orchestrator.cancel_job("job-1")
        result = await submit

        assert result.failure.kind == FailureKind.CANCELLED
        assert runway.cancelled == ["runway-task-1"]
        assert await ledger.history("user-1") == []


class TestStatusAndStartup:
    """Queries, validation and configuration errors."""

    @pytest.mark.asyncio
    async def test_status_is_idempotent(self, config, ledger):
        await ledger.open_account("user-1", "FREE", initial_balance=100)
        orchestrator, _ = build(config, ledger)
        await orchestrator.run_job(make_job(user_plan="FREE"), timeout=5)

        first = await orchestrator.get_job_status("job-1")
        second = await orchestrator.get_job_status("job-1")
        assert first == second
        assert first.to_dict()["status"] == "completed"

    @pytest.mark.asyncio
    async def test_unknown_job(self, config, ledger):
        orchestrator, _ = build(config, ledger)
        with pytest.raises(JobNotFound):
            await orchestrator.get_job_status("missing")

    @pytest.mark.asyncio
    async def test_unknown_explicit_provider_rejected(self, config, ledger):
        await ledger.open_account("user-1", "PRO", initial_balance=500)
        orchestrator, _ = build(config, ledger)

        with pytest.raises(UnknownProvider):
            await orchestrator.submit_job(make_job(explicit_provider="sora"))
        with pytest.raises(JobNotFound):
            await orchestrator.get_job_status("job-1")

    @pytest.mark.asyncio
    async def test_unknown_account(self, config, ledger):
        orchestrator, _ = build(config, ledger)
        with pytest.raises(AccountNotFound):
            await orchestrator.submit_job(make_job())

    @pytest.mark.asyncio
    async def test_duplicate_job_id(self, config, ledger):
        await ledger.open_account("user-1", "FREE", initial_balance=100)
        orchestrator, _ = build(config, ledger)
        await orchestrator.submit_job(make_job(user_plan="FREE"))

        with pytest.raises(ValueError):
            await orchestrator.submit_job(make_job(user_plan="FREE"))
        await orchestrator.close()

    @pytest.mark.asyncio
    async def test_non_positive_duration(self, config, ledger):
        await ledger.open_account("user-1", "FREE", initial_balance=100)
        orchestrator, _ = build(config, ledger)
        with pytest.raises(ValueError):
            await orchestrator.submit_job(make_job(duration_seconds=0))

    def test_missing_default_provider_fails_at_startup(self, config, ledger):
        registry = ProviderRegistry([FakeProvider("runway"), FakeProvider("veo3")])
        with pytest.raises(UnknownProvider):
            JobOrchestrator(registry, ledger, config=config)

    def test_unpriced_provider_fails_at_startup(self, config, ledger):
        """Every registered provider needs a price multiplier."""
        registry = ProviderRegistry([
            FakeProvider("runway"),
            FakeProvider("stability"),
            FakeProvider("veo3"),
            FakeProvider("kling"),
        ])
        with pytest.raises(UnknownProvider):
            JobOrchestrator(registry, ledger, config=config)

    @pytest.mark.asyncio
    async def test_pricing_error_leaves_no_record(self, config, ledger):
        """A job that cannot be priced is rejected and its id stays usable."""
        await ledger.open_account("user-1", "PRO", initial_balance=500)
        orchestrator, _ = build(config, ledger)
        multiplier = config.pricing.provider_multipliers.pop("runway")

        job = make_job(explicit_provider="runway")
        with pytest.raises(UnknownProvider):
            await orchestrator.submit_job(job)
        with pytest.raises(JobNotFound):
            await orchestrator.get_job_status("job-1")
        assert job.status == JobStatus.QUEUED

        config.pricing.provider_multipliers["runway"] = multiplier
        result = await orchestrator.run_job(job, timeout=5)
        assert result.status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_finished_monitors_are_released(self, config, ledger):
        await ledger.open_account("user-1", "PRO", initial_balance=500)
        orchestrator, _ = build(config, ledger)

        for i in range(3):
            await orchestrator.run_job(make_job(f"job-{i}"), timeout=5)

        assert orchestrator._monitors == {}

    @pytest.mark.asyncio
    async def test_history_filtered_by_kind(self, config, ledger):
        await ledger.open_account("user-1", "PRO", initial_balance=500)
        orchestrator, _ = build(config, ledger)
        await orchestrator.run_job(make_job(explicit_provider="runway"), timeout=5)
        await ledger.credit("user-1", 100, TransactionKind.PURCHASE, "Top-up", related_payment_id="pay-1")

        everything = await orchestrator.get_history("user-1")
        purchases = await orchestrator.get_history("user-1", kind=TransactionKind.PURCHASE)
        deductions = await orchestrator.get_history("user-1", 1, 20, TransactionKind.DEDUCTION)

        assert [tx.kind for tx in everything] == [TransactionKind.PURCHASE, TransactionKind.DEDUCTION]
        assert [tx.related_payment_id for tx in purchases] == ["pay-1"]
        assert [tx.related_job_id for tx in deductions] == ["job-1"]

    @pytest.mark.asyncio
    async def test_confirm_credit_usage(self, config, ledger):
        """Operations above the configured threshold must be affordable up front."""
        await ledger.open_account("user-1", "PRO", initial_balance=60)
        config.pricing.confirmation_threshold = 50
        orchestrator, _ = build(config, ledger)

        small = await orchestrator.confirm_credit_usage("user-1", 10, "thumbnail")
        assert small.confirmed
        assert not small.requires_confirmation

        large = await orchestrator.confirm_credit_usage("user-1", 55, "4K video")
        assert large.confirmed
        assert large.requires_confirmation

        with pytest.raises(InsufficientCredits):
            await orchestrator.confirm_credit_usage("user-1", 61, "4K video")

    @pytest.mark.asyncio
    async def test_provider_stats(self, config, ledger):
        orchestrator, _ = build(config, ledger)
        stats = orchestrator.get_provider_stats()
        assert [h.provider_id for h in stats] == ["runway", "stability", "veo3"]


class TestStateMachine:
    """Allowed and forbidden transitions."""

    def test_forward_path(self):
        record = JobRecord(job=make_job())
        for status in (
            JobStatus.ESTIMATING,
            JobStatus.CREDIT_CHECKED,
            JobStatus.SUBMITTING,
            JobStatus.PROCESSING,
            JobStatus.COMPLETED,
        ):
            record.transition(status)
        assert record.status == JobStatus.COMPLETED

    def test_cannot_skip_credit_check(self):
        record = JobRecord(job=make_job())
        record.transition(JobStatus.ESTIMATING)
        with pytest.raises(InvalidTransition):
            record.transition(JobStatus.SUBMITTING)

    def test_single_fallback(self):
        record = JobRecord(job=make_job())
        for status in (JobStatus.ESTIMATING, JobStatus.CREDIT_CHECKED, JobStatus.SUBMITTING):
            record.transition(status)

        with pytest.raises(InvalidTransition):
            record.transition(JobStatus.SUBMITTING)

        record.transition(JobStatus.SUBMITTING, fallback=True)
        assert record.fallback_used
        record.transition(JobStatus.PROCESSING)

        with pytest.raises(InvalidTransition):
            record.transition(JobStatus.SUBMITTING, fallback=True)

    def test_terminal_states_are_final(self):
        record = JobRecord(job=make_job())
        record.transition(JobStatus.FAILED)
        with pytest.raises(InvalidTransition):
            record.transition(JobStatus.ESTIMATING)
