"""Scalar measurements paired with the tolerance they can be compared at."""

import logging
from collections import namedtuple
from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from ..core.errors import ConvergenceFailure, NumericInstability, TopologyError
from . import wilson

logger = logging.getLogger(__name__)

Measurement = namedtuple("Measurement", ["value", "tolerance"])


def t0_measurement(field, flow) -> Measurement:
    """
    t0 of `field` under the GradientFlow `flow`, with its tolerance.

    The tolerance is the squared spacing between sampled flow times,
    bounding the interpolation error of the crossing, and never less than
    the precision's working tolerance.

    Raises:
        ConvergenceFailure: If the flow cannot be run or t0 is not bracketed
    """
    spacing = flow.step_size * flow.sample_interval
    tolerance = max(spacing ** 2, field.tolerance)
    return Measurement(flow.t0(field), tolerance)


def measure(field, loops: Iterable[Tuple[int, int]] = (),
            creutz: Iterable[Tuple[int, int]] = (),
            temporal_dir: Optional[int] = None,
            flow=None) -> Dict[str, Measurement]:
    """
    Standard set of scalar observables for one configuration.

    Args:
        field: Gauge field
        loops: (r, t) sizes of additional Wilson loops to average
        creutz: (r, t) arguments of Creutz ratios to evaluate
        temporal_dir: Time direction for the Polyakov loop (skipped if None)
        flow: GradientFlow used to add t0 (skipped if None); NaN when the
            flow fails or does not reach the target

    Returns:
        Mapping of observable name to Measurement(value, tolerance). The
        tolerance is the precision's working tolerance scaled by the number
        of terms averaged.
    """
    tolerance = field.tolerance
    results = {
        "plaquette": Measurement(float(wilson.average_plaquette(field)), tolerance),
        "action": Measurement(float(wilson.wilson_action(field)),
                              tolerance * max(1, field.lattice.num_plaquettes)),
    }
    for r, t in loops:
        results[f"wilson_{r}x{t}"] = Measurement(
            float(wilson.average_wilson_loop(field, r, t)), tolerance * r * t)
    for r, t in creutz:
        try:
            value = wilson.creutz_ratio(field, r, t)
        except NumericInstability:
            value = np.nan
        results[f"creutz_{r}x{t}"] = Measurement(value, tolerance * 4 * r * t)
    if temporal_dir is not None:
        try:
            value = abs(wilson.average_polyakov_loop(field, temporal_dir))
        except TopologyError:
            value = np.nan
        results["polyakov"] = Measurement(
            value, tolerance * field.lattice.extents[temporal_dir])
    if flow is not None:
        try:
            results["t0"] = t0_measurement(field, flow)
        except ConvergenceFailure as e:
            logger.warning(f"No t0 for this configuration: {e}")
            results["t0"] = Measurement(np.nan, tolerance)
    return results
