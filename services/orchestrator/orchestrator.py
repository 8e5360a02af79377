"""
Job Orchestrator

Drives each job through the state machine in state.py:

1. Snapshot the user's balance and route the job
2. Price it for the chosen provider and check affordability
3. Enhance the prompt (optional, falls back to the raw prompt)
4. Submit, and deduct credits once the provider accepts
5. Poll in a background task until the provider reports a result
6. On a transient failure, retry once on the fallback provider

Credits are deducted at most once per job, and only after a provider has
accepted it. The fallback attempt never charges again. A job cancelled
while its submission is still in flight is refunded.

Usage:
    orchestrator = JobOrchestrator(registry, ledger)
    result = await orchestrator.submit_job(job)
    result = await orchestrator.wait_for_job(job.job_id)
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from core.config import Config, get_config
from core.errors import InsufficientCredits, JobNotFound, ProviderError, UnknownProvider
from services.enhancement import PromptEnhancer
from services.health import ProviderHealth, ProviderHealthTracker
from services.ledger import (
    CreditBalance,
    CreditConfirmation,
    CreditLedger,
    CreditTransaction,
    TransactionKind,
)
from services.models import (
    AttemptOutcome,
    FailureKind,
    GenerationJob,
    JobAttempt,
    JobFailure,
    JobResult,
    JobStatus,
)
from services.pricing import CostEstimator
from services.providers import ProviderRegistry, TaskState
from services.routing import JobRouter

from .state import JobRecord

logger = logging.getLogger(__name__)


def _elapsed_ms(attempt: JobAttempt) -> float:
    return max(0.0, (datetime.now(timezone.utc) - attempt.started_at).total_seconds() * 1000)


class JobOrchestrator:
    """
    Runs generation jobs against the provider pool.

    Each job is owned by one logical task: submission runs in the caller's
    coroutine, monitoring in a background task. Only this class mutates
    job records.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        ledger: CreditLedger,
        estimator: Optional[CostEstimator] = None,
        health: Optional[ProviderHealthTracker] = None,
        router: Optional[JobRouter] = None,
        enhancer: Optional[PromptEnhancer] = None,
        config: Optional[Config] = None,
    ):
        self.config = config or get_config()
        self.registry = registry
        self.ledger = ledger
        self.estimator = estimator or CostEstimator(self.config.pricing)
        self.health = health or ProviderHealthTracker(registry.ids(), self.config.health)
        for provider_id in registry.ids():
            self.health.add_provider(provider_id)

        # Raises UnknownProvider when the default or premium provider is missing
        self.router = router or JobRouter(registry.ids(), self.health, self.config.routing)
        self.registry.require(
            self.config.routing.default_provider,
            self.config.routing.premium_provider,
        )
        # Every provider the router may pick must have a price
        for provider_id in registry.ids():
            if provider_id not in self.estimator.pricing.provider_multipliers:
                raise UnknownProvider(provider_id)

        self.enhancer = enhancer
        self._jobs: dict[str, JobRecord] = {}
        self._monitors: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start background health refresh."""
        self.health.start()

    async def close(self) -> None:
        """Stop monitors and health refresh, and release provider clients."""
        monitors = [task for task in self._monitors.values() if not task.done()]
        for task in monitors:
            task.cancel()
        if monitors:
            await asyncio.gather(*monitors, return_exceptions=True)

        await self.health.stop()
        await self.registry.close_all()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit_job(self, job: GenerationJob) -> JobResult:
        """
        Accept a job and run it up to provider acceptance.

        Returns once the job is PROCESSING or has already FAILED; polling
        continues in the background.

        Raises:
            ValueError: Duplicate job id or non-positive duration
            UnknownProvider: Explicit provider is not registered, or the
                chosen provider has no price
            AccountNotFound: User has no credit account
        """
        if job.job_id in self._jobs:
            raise ValueError(f"Job {job.job_id} already submitted")
        if job.duration_seconds <= 0:
            raise ValueError(f"duration_seconds must be positive, got {job.duration_seconds}")
        if job.explicit_provider and job.explicit_provider not in self.registry:
            raise UnknownProvider(job.explicit_provider)

        balance = await self.ledger.get_balance(job.user_id)

        # The router reads the balance snapshot, the price depends on the provider.
        # Nothing is stored until the job is priced, so a pricing error leaves no record.
        job.user_credits = balance.balance
        provider_id = self.router.select(job)
        cost = self.estimator.estimate(
            job.duration_seconds,
            job.resolution,
            provider_id,
        )

        if job.job_id in self._jobs:
            raise ValueError(f"Job {job.job_id} already submitted")
        record = JobRecord(job=job)
        self._jobs[job.job_id] = record
        record.transition(JobStatus.ESTIMATING)
        job.estimated_cost = cost
        logger.info(
            f"Job {job.job_id} accepted for user {job.user_id} "
            f"({job.duration_seconds}s, {job.resolution.value}, {job.estimated_cost} credits)"
        )

        if not await self.ledger.check(job.user_id, job.estimated_cost):
            error = InsufficientCredits(job.user_id, balance.balance, job.estimated_cost)
            self._fail(record, FailureKind.INSUFFICIENT_CREDITS, str(error))
            return record.to_result()

        record.transition(JobStatus.CREDIT_CHECKED)

        await self._enhance(record)
        await self._submit_attempt(record, provider_id)

        if record.status == JobStatus.PROCESSING:
            monitor = asyncio.create_task(self._monitor(record))
            monitor.add_done_callback(lambda task: self._monitor_done(job.job_id, task))
            self._monitors[job.job_id] = monitor

        return record.to_result()

    async def run_job(self, job: GenerationJob, timeout: Optional[float] = None) -> JobResult:
        """Submit a job and wait for its terminal result."""
        await self.submit_job(job)
        return await self.wait_for_job(job.job_id, timeout=timeout)

    async def get_job_status(self, job_id: str) -> JobResult:
        """Current view of a job. Safe to call repeatedly."""
        return self._record(job_id).to_result()

    def get_attempts(self, job_id: str) -> list[JobAttempt]:
        return list(self._record(job_id).attempts)

    async def wait_for_job(self, job_id: str, timeout: Optional[float] = None) -> JobResult:
        """Wait for a job's background monitor to finish."""
        record = self._record(job_id)
        monitor = self._monitors.get(job_id)

        if monitor is not None:
            await asyncio.wait({monitor}, timeout=timeout)
            if monitor.done() and not monitor.cancelled() and monitor.exception():
                raise monitor.exception()

        return record.to_result()

    async def cancel_job(self, job_id: str) -> JobResult:
        """
        Cancel a job.

        A PROCESSING job is cancelled at the provider (best effort) and
        marked FAILED. Credits already deducted are not refunded. A job
        still being submitted is cancelled once submission returns, and any
        charge taken during submission is refunded. Terminal jobs are left
        as they are.
        """
        record = self._record(job_id)

        if record.status.is_terminal:
            return record.to_result()

        if record.status != JobStatus.PROCESSING:
            record.cancel_requested = True
            logger.info(f"Job {job_id}: cancellation requested during {record.status.value}")
            return record.to_result()

        attempt = record.current_attempt
        self._fail(record, FailureKind.CANCELLED, "Cancelled by user")

        monitor = self._monitors.get(job_id)
        if monitor is not None and not monitor.done() and monitor is not asyncio.current_task():
            monitor.cancel()

        await self._cancel_remote(attempt)
        return record.to_result()

    async def get_balance(self, user_id: str) -> CreditBalance:
        return await self.ledger.get_balance(user_id)

    async def get_history(
        self,
        user_id: str,
        page: int = 1,
        page_size: int = 20,
        kind: Optional[TransactionKind] = None,
    ) -> list[CreditTransaction]:
        """A user's transactions, newest first, optionally of one kind."""
        return await self.ledger.history(user_id, page, page_size, kind)

    async def confirm_credit_usage(
        self,
        user_id: str,
        estimated_cost: int,
        operation: str,
    ) -> CreditConfirmation:
        """Check a large operation against the user's balance before running it."""
        return await self.ledger.confirm_usage(
            user_id,
            estimated_cost,
            operation,
            threshold=self.config.pricing.confirmation_threshold,
        )

    def get_provider_stats(self) -> list[ProviderHealth]:
        return self.health.snapshot()

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _record(self, job_id: str) -> JobRecord:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise JobNotFound(job_id) from None

    def _monitor_done(self, job_id: str, task: asyncio.Task) -> None:
        if self._monitors.get(job_id) is task:
            del self._monitors[job_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Job {job_id}: monitor crashed: {task.exception()!r}")

    async def _enhance(self, record: JobRecord) -> None:
        job = record.job
        if self.enhancer is None or job.enhanced_prompt:
            return

        try:
            job.enhanced_prompt = await self.enhancer.enhance(
                job.prompt,
                job.duration_seconds,
                job.user_plan,
            )
            logger.info(f"Job {job.job_id}: prompt enhanced")
        except Exception as e:
            logger.warning(f"Job {job.job_id}: prompt enhancement failed, using raw prompt: {e}")

    async def _submit_attempt(
        self,
        record: JobRecord,
        provider_id: str,
        fallback: bool = False,
    ) -> None:
        """Submit to one provider. Leaves the job PROCESSING or FAILED."""
        job = record.job
        record.transition(JobStatus.SUBMITTING, fallback=fallback)

        if record.cancel_requested:
            self._fail(record, FailureKind.CANCELLED, "Cancelled by user")
            return

        client = self.registry.get(provider_id)
        timeouts = self.config.timeouts_for(provider_id)
        attempt = JobAttempt(job_id=job.job_id, provider_id=provider_id, fallback=fallback)
        record.attempts.append(attempt)
        record.progress = None

        logger.info(f"Job {job.job_id}: submitting to {provider_id}{' (fallback)' if fallback else ''}")

        error: Optional[ProviderError] = None
        try:
            task_id = await asyncio.wait_for(
                client.submit(
                    job.enhanced_prompt or job.prompt,
                    job.duration_seconds,
                    job.resolution.value,
                ),
                timeout=timeouts.submit_timeout,
            )
        except asyncio.TimeoutError:
            error = ProviderError(
                f"Submit timed out after {timeouts.submit_timeout}s",
                provider=provider_id,
                error_code="TIMEOUT",
            )
        except ProviderError as e:
            error = e
        except Exception as e:
            error = ProviderError(str(e), provider=provider_id, error_code="UNEXPECTED_ERROR")

        if error is not None:
            await self._attempt_failed(record, attempt, error)
            return

        attempt.task_id = task_id

        if record.cancel_requested:
            await self._cancel_remote(attempt)
            self._fail(record, FailureKind.CANCELLED, "Cancelled by user")
            return

        if not record.charged:
            try:
                tx = await self.ledger.deduct(
                    job.user_id,
                    job.estimated_cost,
                    reason=f"Video generation ({job.duration_seconds}s, {job.resolution.value})",
                    related_job_id=job.job_id,
                )
            except InsufficientCredits as e:
                # Balance moved since the check; the provider is not at fault
                attempt.outcome = AttemptOutcome.FAILURE
                attempt.error = str(e)
                await self._cancel_remote(attempt)
                self._fail(record, FailureKind.INSUFFICIENT_CREDITS, str(e))
                return

            record.charge_transaction_id = tx.transaction_id
            record.credits_used = -tx.amount

            # A cancel that arrived while the deduction was in flight
            if record.cancel_requested:
                await self._cancel_remote(attempt)
                await self._refund(record, "Cancelled during submission")
                self._fail(record, FailureKind.CANCELLED, "Cancelled by user")
                return

        record.transition(JobStatus.PROCESSING)
        logger.info(f"Job {job.job_id}: {provider_id} accepted task {task_id}")

    async def _monitor(self, record: JobRecord) -> None:
        """Poll the current attempt until the job is terminal."""
        interval = self.config.orchestrator.poll_interval_seconds

        while record.status == JobStatus.PROCESSING:
            await asyncio.sleep(interval)
            if record.status != JobStatus.PROCESSING:
                break
            await self._poll_once(record, record.current_attempt)

    async def _poll_once(self, record: JobRecord, attempt: JobAttempt) -> None:
        job = record.job
        provider_id = attempt.provider_id
        timeouts = self.config.timeouts_for(provider_id)
        max_seconds = self.config.orchestrator.max_processing_seconds

        if _elapsed_ms(attempt) > max_seconds * 1000:
            await self._attempt_failed(
                record,
                attempt,
                ProviderError(
                    f"Processing exceeded {max_seconds}s",
                    provider=provider_id,
                    error_code="PROCESSING_TIMEOUT",
                ),
            )
            return

        error: Optional[ProviderError] = None
        status = None
        try:
            status = await asyncio.wait_for(
                self.registry.get(provider_id).poll(attempt.task_id),
                timeout=timeouts.poll_timeout,
            )
        except asyncio.TimeoutError:
            error = ProviderError(
                f"Status poll timed out after {timeouts.poll_timeout}s",
                provider=provider_id,
                error_code="TIMEOUT",
            )
        except ProviderError as e:
            error = e
        except Exception as e:
            error = ProviderError(str(e), provider=provider_id, error_code="UNEXPECTED_ERROR")

        # Cancelled or superseded while the poll was in flight
        if record.status != JobStatus.PROCESSING or record.current_attempt is not attempt:
            return

        if error is not None:
            await self._attempt_failed(record, attempt, error)
            return

        if status.progress is not None:
            record.progress = status.progress

        if status.status == TaskState.COMPLETED:
            attempt.outcome = AttemptOutcome.SUCCESS
            attempt.latency_ms = _elapsed_ms(attempt)
            await self.health.record(provider_id, AttemptOutcome.SUCCESS, attempt.latency_ms)

            record.result_url = status.result_url
            record.progress = 100
            record.transition(JobStatus.COMPLETED)
            logger.info(f"Job {job.job_id}: completed on {provider_id} in {attempt.latency_ms:.0f}ms")

        elif status.status == TaskState.FAILED:
            await self._attempt_failed(
                record,
                attempt,
                ProviderError(
                    status.error or "Provider reported failure",
                    provider=provider_id,
                    error_code="JOB_FAILED",
                ),
            )

    async def _attempt_failed(
        self,
        record: JobRecord,
        attempt: JobAttempt,
        error: ProviderError,
    ) -> None:
        """Close out a failed attempt, then fall back once or fail the job."""
        job = record.job
        attempt.outcome = AttemptOutcome.FAILURE
        attempt.latency_ms = _elapsed_ms(attempt)
        attempt.error = str(error)

        if error.permanent:
            # The request was bad, not the provider
            logger.warning(f"Job {job.job_id}: {attempt.provider_id} rejected the job: {error}")
            self._fail(record, FailureKind.PROVIDER_FAILURE, f"Provider rejected the job: {error}")
            return

        logger.warning(f"Job {job.job_id}: attempt on {attempt.provider_id} failed: {error}")
        await self.health.record(attempt.provider_id, AttemptOutcome.FAILURE, attempt.latency_ms)

        if record.fallback_used:
            self._fail(record, FailureKind.PROVIDER_FAILURE, "All provider attempts failed")
            return

        fallback = self.router.select_fallback(job, attempt.provider_id)
        await self._submit_attempt(record, fallback, fallback=True)

    async def _cancel_remote(self, attempt: Optional[JobAttempt]) -> None:
        """Best-effort provider cancellation. Never raises."""
        if attempt is None or attempt.task_id is None:
            return

        timeout = self.config.timeouts_for(attempt.provider_id).cancel_timeout
        try:
            await asyncio.wait_for(
                self.registry.get(attempt.provider_id).cancel(attempt.task_id),
                timeout=timeout,
            )
        except Exception as e:
            logger.warning(f"Failed to cancel task {attempt.task_id} on {attempt.provider_id}: {e}")

    async def _refund(self, record: JobRecord, reason: str) -> None:
        """Return a job's charge. Only used before the job ever reached PROCESSING."""
        job = record.job
        await self.ledger.credit(
            job.user_id,
            record.credits_used,
            TransactionKind.REFUND,
            reason=f"{reason} ({job.job_id})",
            related_job_id=job.job_id,
        )
        logger.info(f"Job {job.job_id}: refunded {record.credits_used} credits")
        record.credits_used = 0

    def _fail(self, record: JobRecord, kind: FailureKind, message: str) -> None:
        record.failure = JobFailure(
            kind=kind,
            message=message,
            attempt_errors=[a.error for a in record.attempts if a.error],
        )
        record.transition(JobStatus.FAILED)

        log = logger.error if kind == FailureKind.PROVIDER_FAILURE else logger.info
        log(f"Job {record.job.job_id}: failed ({kind.value}): {message}")
