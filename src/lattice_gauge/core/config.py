"""
Run configuration.

Each section is a dataclass that validates itself on construction. A
SimulationConfig bundles the sections and round-trips through JSON so runs
can be reproduced from their saved metadata.
"""

import dataclasses
import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .groups import GROUPS
from .numerics import Precision

logger = logging.getLogger(__name__)

START_MODES = ("cold", "hot")


@dataclass
class LatticeConfig:
    """Lattice extents and boundary flags."""
    extents: List[int] = field(default_factory=lambda: [8, 8])
    periodic: Union[bool, List[bool]] = True

    def __post_init__(self):
        self.extents = [int(n) for n in self.extents]
        if not self.extents:
            raise ValueError("extents must not be empty")
        if any(n < 1 for n in self.extents):
            raise ValueError(f"extents must be positive, got {self.extents}")
        if not isinstance(self.periodic, bool):
            self.periodic = [bool(p) for p in self.periodic]
            if len(self.periodic) != len(self.extents):
                raise ValueError(
                    f"periodic has {len(self.periodic)} flags for "
                    f"{len(self.extents)} dimensions"
                )

    def build(self):
        from .lattice import Lattice
        return Lattice(self.extents, self.periodic)


@dataclass
class FieldConfig:
    """Gauge group, precision, coupling and initial configuration."""
    group: str = "U1"
    precision: str = "double"
    beta: float = 1.0
    start: str = "cold"
    seed: Optional[int] = None

    def __post_init__(self):
        self.group = str(self.group).upper()
        if self.group not in GROUPS:
            raise ValueError(f"Unknown gauge group '{self.group}', expected one of {list(GROUPS)}")
        self.precision = Precision.parse(self.precision).value
        if self.beta < 0:
            raise ValueError(f"beta must be non-negative, got {self.beta}")
        if self.start not in START_MODES:
            raise ValueError(f"start must be one of {START_MODES}, got '{self.start}'")


@dataclass
class MonteCarloConfig:
    """Sweep schedule and Metropolis proposal parameters."""
    n_therm: int = 100
    n_measurements: int = 100
    measurement_interval: int = 1
    epsilon: float = 0.5
    n_hits: int = 1
    reproject_interval: int = 1
    max_retries: int = 3
    n_jobs: int = 1
    seed: Optional[int] = None

    def __post_init__(self):
        if self.n_therm < 0:
            raise ValueError(f"n_therm must be non-negative, got {self.n_therm}")
        if self.n_measurements < 0:
            raise ValueError(f"n_measurements must be non-negative, got {self.n_measurements}")
        if self.measurement_interval < 1:
            raise ValueError(
                f"measurement_interval must be at least 1, got {self.measurement_interval}"
            )
        if not self.epsilon > 0:
            raise ValueError(f"epsilon must be positive, got {self.epsilon}")
        if self.n_hits < 1:
            raise ValueError(f"n_hits must be at least 1, got {self.n_hits}")
        if self.reproject_interval < 1:
            raise ValueError(
                f"reproject_interval must be at least 1, got {self.reproject_interval}"
            )
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got {self.max_retries}")
        if self.n_jobs == 0:
            raise ValueError("n_jobs must be non-zero")


@dataclass
class FlowConfig:
    """
    Gradient-flow integration parameters.

    The step size is deliberately not validated here: a non-positive step
    is reported by the integrator as ConvergenceFailure.
    """
    step_size: float = 0.01
    t_max: float = 5.0
    sample_interval: int = 1
    target: float = 0.3


@dataclass
class SimulationConfig:
    """Complete description of a run."""
    lattice: LatticeConfig = dataclasses.field(default_factory=LatticeConfig)
    field: FieldConfig = dataclasses.field(default_factory=FieldConfig)
    monte_carlo: MonteCarloConfig = dataclasses.field(default_factory=MonteCarloConfig)
    flow: FlowConfig = dataclasses.field(default_factory=FlowConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimulationConfig":
        unknown = set(data) - {"lattice", "field", "monte_carlo", "flow"}
        if unknown:
            raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")
        return cls(
            lattice=LatticeConfig(**data.get("lattice", {})),
            field=FieldConfig(**data.get("field", {})),
            monte_carlo=MonteCarloConfig(**data.get("monte_carlo", {})),
            flow=FlowConfig(**data.get("flow", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "SimulationConfig":
        with open(path, "r") as f:
            data = json.load(f)
        logger.info(f"Loaded configuration from {path}")
        return cls.from_dict(data)

    def save_json(self, path: Union[str, Path]):
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
