"""
Checkerboard Metropolis updater.

Proposal: U' = R U with R = exp(X) and X a random algebra element of size
epsilon. The proposal density is symmetric because X and -X are equally
likely, so the acceptance probability is min(1, exp(-dS)) with

    dS = -(beta / N) ReTr[(U' - U) A],    A the staple sum of U.

Links are partitioned into classes (direction mu, site parity). Two links
in the same class never share a plaquette, so each class is updated in one
vectorized pass. A sweep visits the even classes for every direction, then
the odd ones; each pass reads the links written by the previous pass.
"""

import logging
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from ..core.config import MonteCarloConfig, SimulationConfig
from ..core.errors import NumericInstability
from ..models.gauge_field import LatticeGaugeField
from ..observables.wilson import staple, staple_array
from .base import DEFAULT_OBSERVABLES, GaugeUpdater, Observable, SweepStats

logger = logging.getLogger(__name__)

MIN_CHUNK = 256


class MetropolisUpdater(GaugeUpdater):
    """
    Multi-hit Metropolis updater with a parity-partitioned sweep.

    Args:
        field: Field to update in place
        config: Monte Carlo parameters (epsilon, n_hits, n_jobs, ...)
        rng: Random generator or seed
    """

    def __init__(self, field, config: Optional[MonteCarloConfig] = None,
                 rng: Union[None, int, np.random.Generator] = None):
        super().__init__(field, config, rng)
        self.checkerboard = field.lattice.is_checkerboard_safe()
        if not self.checkerboard:
            logger.warning(
                f"{field.lattice} has an odd periodic extent; parity classes would "
                f"share plaquettes, falling back to sequential link updates"
            )
        self._classes = self._build_classes() if self.checkerboard else []

    def _build_classes(self) -> List[Tuple[int, Tuple[np.ndarray, ...]]]:
        lattice = self.field.lattice
        parity = lattice.parity_array()
        classes = []
        for p in (0, 1):
            for mu in range(lattice.dimension):
                mask = (parity == p) & lattice.edge_mask(mu)
                if mask.any():
                    classes.append((mu, np.nonzero(mask)))
        return classes

    # Acceptance

    def acceptance_probability(self, delta_s: float) -> float:
        """
        min(1, exp(-dS)) for a single proposal.

        Raises:
            NumericInstability: If dS or the probability is not finite
        """
        if not np.isfinite(delta_s):
            raise NumericInstability(f"Non-finite action difference {delta_s}")
        if delta_s <= 0:
            return 1.0
        prob = float(self.field.group.backend.exp(-delta_s))
        if not np.isfinite(prob):
            raise NumericInstability(f"Non-finite acceptance probability for dS={delta_s}")
        return prob

    def _propose(self, u: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        group = self.field.group
        x = group.random_algebra(rng, u.shape[:-2], self.config.epsilon, dtype=u.dtype)
        return group.multiply(group.exp(x), u)

    # Vectorized pass over one class

    def _metropolis_block(self, u: np.ndarray, staples: np.ndarray,
                          rng: np.random.Generator) -> Tuple[np.ndarray, SweepStats]:
        """Multi-hit Metropolis on a batch of mutually independent links."""
        group = self.field.group
        beta = self.field.beta
        scale = beta / group.n
        exp = group.backend.exp
        stats = SweepStats()

        re_old = group.re_trace(group.multiply(u, staples))
        for _ in range(self.config.n_hits):
            with np.errstate(all="ignore"):
                proposal = self._propose(u, rng)
                re_new = group.re_trace(group.multiply(proposal, staples))
                delta = -scale * (re_new - re_old)
                bad = ~np.isfinite(delta)
                for _ in range(self.config.max_retries):
                    if not bad.any():
                        break
                    stats.retries += int(bad.sum())
                    redraw = self._propose(u[bad], rng)
                    proposal[bad] = redraw
                    re_new[bad] = group.re_trace(group.multiply(redraw, staples[bad]))
                    delta[bad] = -scale * (re_new[bad] - re_old[bad])
                    bad = ~np.isfinite(delta)

            stats.skipped += int(bad.sum())
            if beta == 0:
                # No interaction term: every proposal is taken
                accept = ~bad
            else:
                prob = exp(-np.maximum(np.where(bad, 0, delta), 0))
                accept = ~bad & (rng.random(delta.shape) < prob)

            u = np.where(accept[..., None, None], proposal, u)
            re_old = np.where(accept, re_new, re_old)
            stats.proposals += delta.size
            stats.accepted += int(accept.sum())
        return u, stats

    def _update_class(self, mu: int, index: Tuple[np.ndarray, ...]) -> SweepStats:
        field = self.field
        links = field.link_array
        staples = staple_array(field.lattice, field.group, links, mu)[index]
        u = links[mu][index]

        n_jobs = self.config.n_jobs
        if n_jobs == 1 or len(u) < 2 * MIN_CHUNK:
            new_u, stats = self._metropolis_block(u, staples, self.rng)
        else:
            n_chunks = max(1, min(len(u) // MIN_CHUNK, 4 * abs(n_jobs)))
            bounds = np.linspace(0, len(u), n_chunks + 1).astype(int)
            seeds = self.rng.integers(0, 2 ** 63 - 1, size=n_chunks)
            results = Parallel(n_jobs=n_jobs, prefer="threads")(
                delayed(self._metropolis_block)(
                    u[lo:hi], staples[lo:hi], np.random.default_rng(seed))
                for lo, hi, seed in zip(bounds[:-1], bounds[1:], seeds)
            )
            new_u = np.concatenate([r[0] for r in results])
            stats = SweepStats()
            for _, chunk_stats in results:
                stats.merge(chunk_stats)

        links[mu][index] = new_u
        return stats

    # Sequential fallback, one link at a time

    def update_link(self, cell, mu: int) -> Tuple[bool, SweepStats]:
        """
        Multi-hit Metropolis update of a single link using its local staple.

        A proposal with a non-finite action difference is redrawn up to
        `max_retries` times and then skipped.

        Returns:
            (changed, stats) where `changed` tells whether any hit was accepted
        """
        field = self.field
        group = field.group
        a = staple(field, cell, mu)
        u = field.link(cell, mu)
        stats = SweepStats()
        changed = False
        re_old = float(group.re_trace(group.multiply(u, a)))

        for _ in range(self.config.n_hits):
            stats.proposals += 1
            for attempt in range(self.config.max_retries + 1):
                with np.errstate(all="ignore"):
                    proposal = self._propose(u, self.rng)
                    re_new = float(group.re_trace(group.multiply(proposal, a)))
                delta = -(field.beta / group.n) * (re_new - re_old)
                try:
                    prob = self.acceptance_probability(delta)
                    break
                except NumericInstability as e:
                    if attempt == self.config.max_retries:
                        stats.skipped += 1
                        logger.warning(f"Skipping update of link {(tuple(cell), mu)}: {e}")
                        prob = None
                    else:
                        stats.retries += 1
            if prob is None:
                continue
            if field.beta == 0 or prob >= 1.0 or self.rng.random() < prob:
                u, re_old = proposal, re_new
                stats.accepted += 1
                changed = True

        if changed:
            field.links[(field.lattice.normalize(cell), mu)] = u
        return changed, stats

    def update_links(self) -> SweepStats:
        total = SweepStats()
        if self.checkerboard:
            for mu, index in self._classes:
                total.merge(self._update_class(mu, index))
        else:
            for edge in self.field.lattice.all_oriented_edges():
                _, stats = self.update_link(edge.cell, edge.direction)
                total.merge(stats)

        if total.skipped:
            logger.warning(f"Skipped {total.skipped} proposal(s) with non-finite action difference")
        return total


def _run_replica(config: SimulationConfig, replica: int,
                 observables: Dict[str, Observable]) -> pd.DataFrame:
    lattice = config.lattice.build()
    base_seed = config.monte_carlo.seed
    seed = None if base_seed is None else base_seed + replica
    if config.field.start == "hot":
        field_seed = None if config.field.seed is None else config.field.seed + replica
        field = LatticeGaugeField.random(lattice, config.field.group, config.field.beta,
                                         rng=field_seed, precision=config.field.precision)
    else:
        field = LatticeGaugeField.from_config(config.field, lattice)
    updater = MetropolisUpdater(field, config.monte_carlo, rng=seed)
    history = updater.run(observables)
    history.insert(0, "replica", replica)
    return history


def run_replicas(config: SimulationConfig, n_replicas: int, n_jobs: int = 1,
                 observables: Optional[Dict[str, Observable]] = None) -> pd.DataFrame:
    """
    Independent Markov chains from the same configuration.

    Replica i uses seeds offset by i, so runs are reproducible.

    Returns:
        Concatenated measurement histories with a `replica` column
    """
    if n_replicas < 1:
        raise ValueError(f"n_replicas must be positive, got {n_replicas}")
    observables = DEFAULT_OBSERVABLES if observables is None else observables
    histories = Parallel(n_jobs=n_jobs)(
        delayed(_run_replica)(config, i, observables) for i in range(n_replicas)
    )
    logger.info(f"Completed {n_replicas} replica chains")
    return pd.concat(histories, ignore_index=True)
