"""Monte Carlo updaters for gauge fields."""

from .base import GaugeUpdater, Phase, SweepStats
from .metropolis import MetropolisUpdater, run_replicas

__all__ = ["GaugeUpdater", "Phase", "SweepStats", "MetropolisUpdater", "run_replicas"]
