"""
Credit Pricing

Pure credit cost estimation for generation jobs.
"""

from .estimator import CostEstimator

__all__ = ["CostEstimator"]
