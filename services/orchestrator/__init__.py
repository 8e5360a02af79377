"""
Job Orchestrator

State machine that takes a generation job from submission to a terminal
result, charging credits once and falling back once.
"""

from .orchestrator import JobOrchestrator
from .state import ALLOWED_TRANSITIONS, JobRecord

__all__ = ["JobOrchestrator", "JobRecord", "ALLOWED_TRANSITIONS"]
