"""Gauge-invariant observables, actions and the gradient flow."""

from .continuum import (field_strength, field_strength_array, topological_charge,
                        topological_charge_density)
from .flow import FlowTrajectory, GradientFlow, energy_density, find_t0, flow
from .measurement import Measurement, measure, t0_measurement
from .wilson import (IMPROVED_ACTIONS, average_plaquette, average_polyakov_loop,
                     average_rectangle, average_wilson_loop, creutz_ratio, improved_action,
                     plaquette, plaquette_action, polyakov_loop, rectangle, wilson_action,
                     wilson_loop)

__all__ = [
    "plaquette", "wilson_loop", "rectangle", "polyakov_loop", "plaquette_action",
    "average_plaquette", "average_wilson_loop", "average_rectangle",
    "average_polyakov_loop", "creutz_ratio", "wilson_action", "improved_action",
    "IMPROVED_ACTIONS",
    "field_strength", "field_strength_array", "topological_charge",
    "topological_charge_density",
    "GradientFlow", "FlowTrajectory", "energy_density", "flow", "find_t0",
    "Measurement", "measure", "t0_measurement",
]
