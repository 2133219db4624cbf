"""Core building blocks: topology, gauge groups, link storage and errors."""

from .config import (FieldConfig, FlowConfig, LatticeConfig, MonteCarloConfig,
                     SimulationConfig)
from .errors import (ConvergenceFailure, GroupManifoldViolation, LatticeGaugeError,
                     MissingLink, NumericInstability, TopologyError)
from .groups import SU2, SU3, U1, GaugeGroup, get_group
from .lattice import Edge, Lattice, OrientedEdge
from .links import LinkMap
from .numerics import NUMPY_BACKEND, NumericBackend, Precision

__all__ = [
    "Lattice", "Edge", "OrientedEdge",
    "GaugeGroup", "U1", "SU2", "SU3", "get_group",
    "LinkMap",
    "Precision", "NumericBackend", "NUMPY_BACKEND",
    "LatticeConfig", "FieldConfig", "MonteCarloConfig", "FlowConfig", "SimulationConfig",
    "LatticeGaugeError", "TopologyError", "MissingLink", "GroupManifoldViolation",
    "NumericInstability", "ConvergenceFailure",
]
