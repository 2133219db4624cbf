"""
Base class for sweep-based gauge field updaters.

An updater owns the field exclusively while it sweeps. It runs two phases:
thermalization (sweeps are discarded) and measurement (observables are
recorded every `measurement_interval` sweeps). Every sweep boundary leaves
the field valid, so the state can be checkpointed between any two sweeps.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

import numpy as np
import pandas as pd
from tqdm import tqdm

from ..core.config import MonteCarloConfig
from ..models.sources import CoupledSource
from ..observables.wilson import average_plaquette

logger = logging.getLogger(__name__)

Observable = Callable[[Any], float]

DEFAULT_OBSERVABLES: Dict[str, Observable] = {"plaquette": average_plaquette}


class Phase(Enum):
    IDLE = "idle"
    THERMALIZATION = "thermalization"
    MEASUREMENT = "measurement"
    DONE = "done"


@dataclass
class SweepStats:
    """Counters accumulated over sweeps."""
    sweeps: int = 0
    proposals: int = 0
    accepted: int = 0
    retries: int = 0
    skipped: int = 0
    resets: int = 0
    time_elapsed: float = 0.0

    @property
    def acceptance_rate(self) -> float:
        if self.proposals == 0:
            return 0.0
        return self.accepted / self.proposals

    def merge(self, other: "SweepStats"):
        self.sweeps += other.sweeps
        self.proposals += other.proposals
        self.accepted += other.accepted
        self.retries += other.retries
        self.skipped += other.skipped
        self.resets += other.resets
        self.time_elapsed += other.time_elapsed

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class GaugeUpdater(ABC):
    """
    Abstract Monte Carlo updater for a LatticeGaugeField.

    Subclasses implement `update_links`, one pass proposing a new value
    for every link.

    Args:
        field: Field to update in place
        config: Sweep schedule and proposal parameters
        rng: Random generator or seed (default: config.seed)
    """

    def __init__(self, field, config: Optional[MonteCarloConfig] = None,
                 rng: Union[None, int, np.random.Generator] = None):
        self.field = field
        self.config = config if config is not None else MonteCarloConfig()
        self.rng = np.random.default_rng(self.config.seed if rng is None else rng)

        self.phase = Phase.IDLE
        self.sweep_count = 0
        self.stats = SweepStats()
        self.acceptance_history = []

        logger.info(
            f"Initialized {self.__class__.__name__} for {field.group.name} "
            f"on {field.lattice} at beta={field.beta}"
        )

    @abstractmethod
    def update_links(self) -> SweepStats:
        """
        Propose a new value for every link once.

        Returns:
            Counters for this pass (sweeps and time are filled in by `sweep`)
        """
        pass

    def sweep(self) -> SweepStats:
        """One full sweep: links, coupled source, then periodic reprojection."""
        start = time.time()
        delta = self.update_links()

        source = self.field.source
        if isinstance(source, CoupledSource):
            with self.field.borrow_source() as borrowed:
                borrowed.evolve(self.field, self.rng)

        self.sweep_count += 1
        if self.sweep_count % self.config.reproject_interval == 0:
            delta.resets += self.field.reproject()

        delta.sweeps = 1
        delta.time_elapsed = time.time() - start
        self.stats.merge(delta)
        self.acceptance_history.append(delta.acceptance_rate)

        logger.debug(
            f"Sweep {self.sweep_count}: acceptance={delta.acceptance_rate:.3f} "
            f"skipped={delta.skipped} resets={delta.resets}"
        )
        return delta

    def thermalize(self, n_sweeps: Optional[int] = None, progress: bool = False) -> SweepStats:
        """Run and discard `n_sweeps` sweeps (default: config.n_therm)."""
        n_sweeps = self.config.n_therm if n_sweeps is None else n_sweeps
        self.phase = Phase.THERMALIZATION
        total = SweepStats()

        iterator = range(n_sweeps)
        if progress:
            iterator = tqdm(iterator, desc="Thermalization")
        for _ in iterator:
            total.merge(self.sweep())

        logger.info(
            f"Thermalized {n_sweeps} sweeps, acceptance={total.acceptance_rate:.3f}, "
            f"plaquette={float(average_plaquette(self.field)):.6f}"
        )
        return total

    def measure(self, n_measurements: Optional[int] = None,
                observables: Optional[Dict[str, Observable]] = None,
                interval: Optional[int] = None, progress: bool = False) -> pd.DataFrame:
        """
        Record observables every `interval` sweeps.

        Args:
            n_measurements: Number of records (default: config.n_measurements)
            observables: Mapping of column name to callable(field)
                (default: average plaquette)
            interval: Sweeps between records (default:
                config.measurement_interval)
            progress: Show a progress bar

        Returns:
            One row per measurement with the sweep index, the acceptance
            rate since the previous record and every observable
        """
        n_measurements = self.config.n_measurements if n_measurements is None else n_measurements
        interval = self.config.measurement_interval if interval is None else interval
        if interval < 1:
            raise ValueError(f"interval must be at least 1, got {interval}")
        observables = DEFAULT_OBSERVABLES if observables is None else observables
        self.phase = Phase.MEASUREMENT

        rows = []
        iterator = range(n_measurements)
        if progress:
            iterator = tqdm(iterator, desc="Measurement")
        for _ in iterator:
            block = SweepStats()
            for _ in range(interval):
                block.merge(self.sweep())
            row = {"sweep": self.sweep_count, "acceptance": block.acceptance_rate}
            for name, observable in observables.items():
                row[name] = observable(self.field)
            rows.append(row)

        return pd.DataFrame(rows, columns=["sweep", "acceptance"] + list(observables))

    def run(self, observables: Optional[Dict[str, Observable]] = None,
            progress: bool = False) -> pd.DataFrame:
        """Thermalize, then measure, following the configured schedule."""
        self.thermalize(progress=progress)
        history = self.measure(observables=observables, progress=progress)
        self.phase = Phase.DONE
        logger.info(
            f"Finished {self.sweep_count} sweeps in {self.stats.time_elapsed:.2f}s, "
            f"acceptance={self.acceptance_rate:.3f}"
        )
        return history

    @property
    def acceptance_rate(self) -> float:
        return self.stats.acceptance_rate

    def reset_stats(self):
        """Reset statistics."""
        self.stats = SweepStats()
        self.acceptance_history = []

    def get_state(self) -> Dict[str, Any]:
        """Serializable updater state (everything except the field)."""
        return {
            "sweep_count": self.sweep_count,
            "phase": self.phase.value,
            "stats": self.stats.to_dict(),
            "rng_state": self.rng.bit_generator.state,
        }

    def set_state(self, state: Dict[str, Any]):
        self.sweep_count = int(state["sweep_count"])
        self.phase = Phase(state["phase"])
        self.stats = SweepStats(**state["stats"])
        self.rng.bit_generator.state = state["rng_state"]

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(group={self.field.group.name}, "
                f"beta={self.field.beta}, sweeps={self.sweep_count})")
