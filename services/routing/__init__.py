"""
Job Routing

Provider selection as an auditable decision table.
"""

from .router import JobRouter, RoutingDecision
from .rules import SELECTION_RULES, RoutingContext, RoutingRule

__all__ = [
    "JobRouter",
    "RoutingDecision",
    "SELECTION_RULES",
    "RoutingContext",
    "RoutingRule",
]
