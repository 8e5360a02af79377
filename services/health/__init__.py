"""
Provider Health

Rolling success-rate and latency tracking used to steer routing away from
failing providers.
"""

from .tracker import HealthProbe, ProviderHealth, ProviderHealthTracker

__all__ = ["HealthProbe", "ProviderHealth", "ProviderHealthTracker"]
