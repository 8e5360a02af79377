"""
Job State Machine

    QUEUED -> ESTIMATING -> CREDIT_CHECKED -> SUBMITTING -> PROCESSING -> COMPLETED
                  |               |               |              |
                  +---------------+---------------+--------------+--> FAILED

SUBMITTING is re-entered at most once, for the fallback attempt, either
straight after a failed submit or after a PROCESSING attempt fails.
COMPLETED and FAILED are terminal.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from core.errors import InvalidTransition
from services.models import (
    GenerationJob,
    JobAttempt,
    JobFailure,
    JobResult,
    JobStatus,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.ESTIMATING, JobStatus.FAILED}),
    JobStatus.ESTIMATING: frozenset({JobStatus.CREDIT_CHECKED, JobStatus.FAILED}),
    JobStatus.CREDIT_CHECKED: frozenset({JobStatus.SUBMITTING, JobStatus.FAILED}),
    JobStatus.SUBMITTING: frozenset({
        JobStatus.PROCESSING,
        JobStatus.SUBMITTING,  # fallback after a failed submit
        JobStatus.FAILED,
    }),
    JobStatus.PROCESSING: frozenset({
        JobStatus.COMPLETED,
        JobStatus.SUBMITTING,  # fallback after a failed first attempt
        JobStatus.FAILED,
    }),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


@dataclass
class JobRecord:
    """Mutable orchestration state for one job."""
    job: GenerationJob
    attempts: list[JobAttempt] = field(default_factory=list)
    fallback_used: bool = False
    failure: Optional[JobFailure] = None
    charge_transaction_id: Optional[str] = None
    credits_used: int = 0
    result_url: Optional[str] = None
    progress: Optional[int] = None
    cancel_requested: bool = False

    @property
    def status(self) -> JobStatus:
        return self.job.status

    @property
    def current_attempt(self) -> Optional[JobAttempt]:
        return self.attempts[-1] if self.attempts else None

    @property
    def charged(self) -> bool:
        return self.charge_transaction_id is not None

    def transition(self, target: JobStatus, fallback: bool = False) -> None:
        """Move to a new state, rejecting edges the machine does not have."""
        current = self.job.status
        allowed = target in ALLOWED_TRANSITIONS[current]

        if target == JobStatus.SUBMITTING and current in (
            JobStatus.SUBMITTING,
            JobStatus.PROCESSING,
        ):
            # Only the single fallback attempt may re-enter SUBMITTING
            allowed = allowed and fallback and not self.fallback_used

        if not allowed:
            raise InvalidTransition(self.job.job_id, current.value, target.value)

        if fallback:
            self.fallback_used = True
        self.job.status = target
        logger.info(f"Job {self.job.job_id}: {current.value} -> {target.value}")

    def to_result(self) -> JobResult:
        attempt = self.current_attempt
        return JobResult(
            job_id=self.job.job_id,
            status=self.job.status,
            provider=attempt.provider_id if attempt else None,
            task_id=attempt.task_id if attempt else None,
            result_url=self.result_url,
            progress=self.progress,
            credits_used=self.credits_used,
            estimated_cost=self.job.estimated_cost,
            fallback_used=self.fallback_used,
            failure=self.failure,
        )
