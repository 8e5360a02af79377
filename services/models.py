"""
Generation Job Models

Shared vocabulary for jobs, attempts and outcomes. The orchestrator owns
mutation of these records; routers and estimators only read them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class Resolution(str, Enum):
    """Output resolutions, ordered by price tier."""
    HD = "720p"
    FULL_HD = "1080p"
    UHD_4K = "4K"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class UserPlan(str, Enum):
    """Subscription plans."""
    FREE = "FREE"
    BASIC = "BASIC"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class JobStatus(str, Enum):
    """Lifecycle of a generation job."""
    QUEUED = "queued"
    ESTIMATING = "estimating"
    CREDIT_CHECKED = "credit_checked"
    SUBMITTING = "submitting"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class AttemptOutcome(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


class FailureKind(str, Enum):
    """Structured reason attached to a failed job."""
    INSUFFICIENT_CREDITS = "insufficient_credits"
    PROVIDER_FAILURE = "provider_failure"
    CANCELLED = "cancelled"


@dataclass
class GenerationJob:
    """A paid generation request as submitted by the caller."""
    job_id: str
    user_id: str
    prompt: str
    duration_seconds: float
    resolution: Resolution = Resolution.HD
    priority: Priority = Priority.NORMAL
    user_plan: str = UserPlan.FREE.value
    enhanced_prompt: Optional[str] = None
    explicit_provider: Optional[str] = None

    # Filled in by the orchestrator
    user_credits: Optional[int] = None  # balance snapshot consulted by the router
    estimated_cost: Optional[int] = None
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        self.resolution = Resolution(self.resolution)
        self.priority = Priority(self.priority)


@dataclass
class JobAttempt:
    """One provider attempt for a job. A job has at most two."""
    job_id: str
    provider_id: str
    fallback: bool = False
    task_id: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    outcome: AttemptOutcome = AttemptOutcome.PENDING
    latency_ms: Optional[float] = None
    error: Optional[str] = None


@dataclass
class JobFailure:
    """Why a job ended in FAILED."""
    kind: FailureKind
    message: str
    attempt_errors: list[str] = field(default_factory=list)


@dataclass
class JobResult:
    """Caller-facing view of a job."""
    job_id: str
    status: JobStatus
    provider: Optional[str] = None
    task_id: Optional[str] = None
    result_url: Optional[str] = None
    progress: Optional[int] = None
    credits_used: int = 0
    estimated_cost: Optional[int] = None
    fallback_used: bool = False
    failure: Optional[JobFailure] = None

    @property
    def error(self) -> Optional[str]:
        return self.failure.message if self.failure else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "provider": self.provider,
            "task_id": self.task_id,
            "result_url": self.result_url,
            "progress": self.progress,
            "credits_used": self.credits_used,
            "estimated_cost": self.estimated_cost,
            "fallback_used": self.fallback_used,
            "error": self.error,
            "failure_kind": self.failure.kind.value if self.failure else None,
        }
